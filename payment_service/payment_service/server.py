"""FastAPI server implementation for the Payment Service."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from logging_utils import get_component_logger, setup_service_logger

from .auth import IdentityError, IdentityVerifier, SupabaseIdentityVerifier, UnconfiguredIdentityVerifier, bearer_token
from .config import Settings, get_settings
from .errors import PaymentServiceError, RateLimited, UpstreamError
from .gateway import NowPaymentsClient
from .notifier import EmailNotificationSink, KafkaNotificationSink, LogNotificationSink, NotificationSink
from .orchestrator import PaymentOrchestrator
from .rate_limiter import RateLimiter, RateLimitResult
from .schemas import CreatePaymentRequest, CreatePaymentResponse
from .store import InMemoryOrderStore, SupabaseOrderStore
from .webhooks import SIGNATURE_HEADER

logger = get_component_logger("payment-service", "server")

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", SIGNATURE_HEADER]
RATE_LIMIT_HEADERS = ["X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"]


class PaymentServiceState:
    """Class to manage payment service state."""

    def __init__(self):
        """Initialize empty state; components are built at startup or injected by tests."""
        self.orchestrator: Optional[PaymentOrchestrator] = None
        self.identity: Optional[IdentityVerifier] = None

    def configure(self, orchestrator: PaymentOrchestrator, identity: IdentityVerifier) -> None:
        """Install the components used to serve requests.

        Args:
            orchestrator: Payment orchestrator
            identity: Verifier for caller bearer tokens
        """
        self.orchestrator = orchestrator
        self.identity = identity


def build_notifier(settings: Settings) -> NotificationSink:
    """Pick the notification sink named by NOTIFICATION_BACKEND."""
    if settings.notification_backend == "email":
        return EmailNotificationSink(
            settings.resend_api_key, settings.notification_from, timeout=settings.http_timeout_seconds
        )
    if settings.notification_backend == "kafka":
        return KafkaNotificationSink(settings.kafka_bootstrap_servers, topic=settings.notification_topic)
    return LogNotificationSink()


def build_orchestrator(settings: Settings) -> tuple[PaymentOrchestrator, IdentityVerifier]:
    """Wire the production components from settings.

    Args:
        settings: Loaded service settings

    Returns:
        tuple: The orchestrator and the identity verifier
    """
    if settings.supabase_configured:
        store = SupabaseOrderStore(
            settings.supabase_url, settings.supabase_service_role_key, timeout=settings.http_timeout_seconds
        )
    else:
        logger.warning("Supabase not configured, using in-memory order store")
        store = InMemoryOrderStore()

    if settings.supabase_url and settings.supabase_anon_key:
        identity = SupabaseIdentityVerifier(
            settings.supabase_url, settings.supabase_anon_key, timeout=settings.http_timeout_seconds
        )
    else:
        logger.warning("Supabase auth not configured, all callers will be rejected")
        identity = UnconfiguredIdentityVerifier()

    gateway = NowPaymentsClient(
        settings.nowpayments_api_key, base_url=settings.nowpayments_base_url, timeout=settings.http_timeout_seconds
    )
    if not settings.nowpayments_ipn_secret:
        logger.error("NOWPAYMENTS_IPN_SECRET missing, webhook deliveries will be rejected")

    orchestrator = PaymentOrchestrator(
        store=store,
        gateway=gateway,
        rate_limiter=RateLimiter(),
        notifier=build_notifier(settings),
        webhook_secret=settings.nowpayments_ipn_secret,
        callback_url=settings.ipn_callback_url,
    )
    return orchestrator, identity


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifecycle of the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    settings = get_settings()
    setup_service_logger(
        settings.service_name, log_level=settings.log_level, log_file=settings.log_file, json_logs=settings.log_json
    )
    if state.orchestrator is None:
        state.configure(*build_orchestrator(settings))
        logger.info("Payment service components initialized")

    yield

    logger.info("Shutting down payment service...")
    notifier = state.orchestrator.notifier if state.orchestrator else None
    if isinstance(notifier, KafkaNotificationSink):
        notifier.close()
    logger.info("Shutdown complete")


app = FastAPI(title="Payment Service", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=CORS_ALLOW_HEADERS,
    expose_headers=RATE_LIMIT_HEADERS,
)
state = PaymentServiceState()


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {"X-RateLimit-Remaining": str(result.remaining), "X-RateLimit-Reset": str(result.reset_at)}


@app.exception_handler(PaymentServiceError)
async def payment_error_handler(request: Request, exc: PaymentServiceError):
    """Render service errors as ``{"error": message}`` with their HTTP status."""
    body = {"error": exc.message}
    headers = {}
    if isinstance(exc, RateLimited):
        body["retryAfter"] = exc.retry_after
        headers = {
            "Retry-After": str(exc.retry_after or 60),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(exc.result.reset_at),
        }
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _components():
    if state.orchestrator is None or state.identity is None:
        raise UpstreamError("Service not ready")
    return state.orchestrator, state.identity


def _resolve_caller(identity: IdentityVerifier, authorization: Optional[str]) -> Optional[str]:
    """Resolve the Authorization header to a verified user id (blocking)."""
    token = bearer_token(authorization)
    if token is None:
        return None
    try:
        return identity.verify(token)
    except IdentityError as e:
        raise UpstreamError("Authentication service unavailable") from e


async def _json_object(request: Request) -> dict:
    """Decode a JSON object body; anything else decodes to an empty dict."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/ready")
async def readiness_check():
    """Check if the service is ready to handle payment traffic.

    Returns:
        dict: Readiness plus processor reachability and webhook secret presence
    """
    if state.orchestrator is None:
        return {"status": "not_ready", "gateway": False, "webhook_secret": False}
    gateway_ok = await run_in_threadpool(state.orchestrator.gateway.check_api_status)
    secret_ok = bool(state.orchestrator.webhook_secret)
    return {
        "status": "ready" if gateway_ok and secret_ok else "not_ready",
        "gateway": gateway_ok,
        "webhook_secret": secret_ok,
    }


@app.post("/create-crypto-payment", response_model=CreatePaymentResponse)
async def create_crypto_payment(request: Request, authorization: Optional[str] = Header(None)):
    """Create a crypto payment for one of the caller's orders.

    Args:
        request: Incoming request with ``{orderId, amount, currency}``
        authorization: Bearer token of the caller

    Returns:
        JSONResponse: ``{success, payment}`` with rate limit headers
    """
    orchestrator, identity = _components()
    caller = await run_in_threadpool(_resolve_caller, identity, authorization)
    # Malformed bodies surface as missing fields, after the auth and rate limit checks.
    payment_request = CreatePaymentRequest.model_validate(await _json_object(request))

    details, limit = await run_in_threadpool(
        orchestrator.create_payment,
        caller,
        payment_request.order_id,
        payment_request.amount,
        payment_request.currency,
    )
    response = CreatePaymentResponse(payment=details)
    return JSONResponse(content=response.model_dump(), headers=rate_limit_headers(limit))


@app.get("/check-payment-status")
async def check_payment_status(
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    authorization: Optional[str] = Header(None),
):
    """Return the live processor status of one of the caller's payments.

    Args:
        payment_id: Processor payment id (``paymentId`` query parameter)
        authorization: Bearer token of the caller

    Returns:
        JSONResponse: Status report with rate limit headers
    """
    orchestrator, identity = _components()
    caller = await run_in_threadpool(_resolve_caller, identity, authorization)
    report, limit = await run_in_threadpool(orchestrator.check_status, caller, payment_id)
    return JSONResponse(content=report.model_dump(), headers=rate_limit_headers(limit))


@app.post("/nowpayments-webhook")
async def nowpayments_webhook(request: Request):
    """Receive a signed IPN delivery from the processor.

    Any non-2xx response makes the processor redeliver the event.

    Args:
        request: Incoming request carrying the raw body and signature header

    Returns:
        dict: ``{"success": True}`` once the order update has been written
    """
    orchestrator, _ = _components()
    source = request.client.host if request.client else "unknown"
    limit = orchestrator.rate_limiter.check(source, orchestrator.presets["webhook"])
    if not limit.allowed:
        logger.warning(f"Webhook rate limit exceeded for {source}")
        raise RateLimited(limit)

    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    await run_in_threadpool(orchestrator.handle_webhook, raw_body, signature)
    return {"success": True}
