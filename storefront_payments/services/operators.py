import re
from typing import List, Optional

from storefront_payments.domain import Operator
from storefront_payments.services.provider import ProviderClient

COUNTRY_CODE = "265"

# national number prefix -> operator short code
PREFIX_SHORT_CODES = {
    "88": "tnm",
    "89": "tnm",
    "97": "airtel",
    "98": "airtel",
    "99": "airtel",
}

def national_number(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith(COUNTRY_CODE) and len(digits) > 9:
        digits = digits[len(COUNTRY_CODE):]
    return digits.lstrip("0")

def guess_short_code(phone: str) -> Optional[str]:
    return PREFIX_SHORT_CODES.get(national_number(phone)[:2])

def match_operator(operators: List[Operator], identifier: str) -> Optional[Operator]:
    ident = str(identifier).strip()
    for op in operators:
        if ident in (op.short_code, op.id, op.ref_id, op.name):
            return op
    lowered = ident.lower()
    for op in operators:
        if lowered in (op.short_code.lower(), op.name.lower()):
            return op
    return None

def operator_for_phone(operators: List[Operator], phone: str) -> Optional[Operator]:
    code = guess_short_code(phone)
    if not code:
        return None
    for op in operators:
        if op.short_code.lower() == code or code in op.name.lower():
            return op
    return None

def resolve_operator_ref(provider: ProviderClient, operator: str | None = None, phone: str | None = None) -> Optional[str]:
    """Explicit operator choice first, then the phone-prefix heuristic."""
    if not operator and not phone:
        return None
    operators = provider.list_operators()
    if operator:
        match = match_operator(operators, operator)
        if match:
            return match.ref_id
    if phone:
        match = operator_for_phone(operators, phone)
        if match:
            return match.ref_id
    return None
