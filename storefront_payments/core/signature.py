import hmac, hashlib

def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()

def verify(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    """Check a hex HMAC-SHA256 of the exact raw body against the header.

    Never raises: a missing header, empty secret, non-ASCII header or length
    mismatch all return False.
    """
    if not signature_header or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    try:
        given = signature_header.encode("ascii")
    except UnicodeEncodeError:
        return False
    if len(given) != len(expected):
        return False
    return hmac.compare_digest(given, expected.encode("ascii"))

def verify_shared_secret(header_value: str | None, secret: str) -> bool:
    # X-Webhook-Signature variant: the header carries the secret itself
    if not header_value or not secret:
        return False
    return hmac.compare_digest(header_value.encode("utf-8"), secret.encode("utf-8"))
