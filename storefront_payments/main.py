from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from storefront_payments.version import VERSION
from storefront_payments.api import addresses, orders, payments
from storefront_payments.core.config import settings
from storefront_payments.core.errors import ConfigurationError, PaymentServiceError
from storefront_payments.core.logging import get_logger, setup_logging
from storefront_payments.services.provider import ProviderClient
from prometheus_fastapi_instrumentator import Instrumentator

setup_logging(settings.LOG_LEVEL)
log = get_logger("main")

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Payment Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/payments/metrics",
    should_gzip=True,
)

@app.exception_handler(PaymentServiceError)
async def payment_service_error(request: Request, exc: PaymentServiceError):
    if isinstance(exc, ConfigurationError):
        log.error("Configuration error on %s %s: %s", request.method, request.url.path, exc.message)
    elif exc.status_code >= 500:
        log.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    else:
        log.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/payments/health")
def payments_health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "payment", "version": VERSION}

@app.on_event("startup")
async def startup_event():
    # One provider client (and operator cache) per process
    app.state.provider = ProviderClient()
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            log.debug("%s %s", sorted(route.methods), route.path)

app.include_router(payments.router, prefix="/payments", tags=["payments"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(addresses.router, prefix="/addresses", tags=["addresses"])
