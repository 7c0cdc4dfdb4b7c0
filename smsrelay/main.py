import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.concurrency import run_in_threadpool

from smsrelay.config import Settings, get_settings, settings
from smsrelay.coordinator import SendCoordinator
from smsrelay.errors import (
    MalformedWebhookError,
    SignatureVerificationError,
    StorageError,
    ValidationError,
    add_exception_handlers,
)
from smsrelay.gateway import CarrierGateway
from smsrelay.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from smsrelay.metrics import get_metrics, get_metrics_content_type, record_webhook_event
from smsrelay.queries import QueryService
from smsrelay.reconciler import WebhookReconciler
from smsrelay.schemas import (
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    SendRequest,
    SendResponse,
    WebhookResponse,
)
from smsrelay.storage import DEFAULT_LIST_LIMIT, SessionLocal, MessageStore, check_db_health, init_db
from smsrelay.verification import WebhookVerifier, build_verifier


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables and build the store, gateway and verifier.
    Shutdown: close the carrier HTTP client.
    """
    init_db()
    app.state.store = MessageStore(SessionLocal)
    app.state.gateway = CarrierGateway(
        api_key=settings.TELNYX_API_KEY,
        base_url=settings.TELNYX_API_URL,
        timeout=settings.TELNYX_TIMEOUT_SECONDS,
    )
    app.state.verifier = build_verifier(settings)
    logger.info(f"SMS relay ready on :{settings.PORT}")
    yield
    await app.state.gateway.close()


class PathPrefixMiddleware:
    """Apply ``scoped_class`` only to requests under ``prefix``."""

    def __init__(self, app, prefix: str, scoped_class, **options):
        self.app = app
        self.prefix = prefix.rstrip("/")
        self.scoped = scoped_class(app, **options)

    async def __call__(self, scope, receive, send):
        path = scope.get("path", "")
        if scope["type"] == "http" and (path == self.prefix or path.startswith(self.prefix + "/")):
            await self.scoped(scope, receive, send)
        else:
            await self.app(scope, receive, send)


app = FastAPI(
    title="SMS Relay",
    description="Relays SMS through Telnyx and reconciles delivery status webhooks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware)
app.add_middleware(
    PathPrefixMiddleware,
    prefix="/api",
    scoped_class=CORSMiddleware,
    allow_origins=[settings.ALLOWED_ORIGIN],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
add_exception_handlers(app)


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_gateway(request: Request) -> CarrierGateway:
    return request.app.state.gateway


def get_verifier(request: Request) -> Optional[WebhookVerifier]:
    return request.app.state.verifier


def get_coordinator(
    gateway: CarrierGateway = Depends(get_gateway),
    store: MessageStore = Depends(get_store),
    app_settings: Settings = Depends(get_settings),
) -> SendCoordinator:
    return SendCoordinator(gateway=gateway, store=store, settings=app_settings)


def get_reconciler(store: MessageStore = Depends(get_store)) -> WebhookReconciler:
    return WebhookReconciler(store)


def get_query_service(store: MessageStore = Depends(get_store)) -> QueryService:
    return QueryService(store)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
async def health_ready(
    response: Response,
    app_settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. A sender identity (messaging profile or FROM_NUMBER) is configured
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not (app_settings.TELNYX_MESSAGING_PROFILE_ID or app_settings.FROM_NUMBER):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="FROM_NUMBER or TELNYX_MESSAGING_PROFILE_ID not configured"
        )

    if not await run_in_threadpool(check_db_health):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Send Route
# =============================================================================

@app.post(
    "/api/send",
    response_model=SendResponse,
    openapi_extra={
        "requestBody": {"content": {"application/json": {"schema": SendRequest.model_json_schema()}}},
    },
    responses={
        400: {"model": ErrorResponse, "description": "Missing input or sender configuration"},
        500: {"model": ErrorResponse, "description": "Carrier or storage failure"},
    }
)
async def send_message(
    request: Request,
    coordinator: SendCoordinator = Depends(get_coordinator),
) -> SendResponse:
    """
    Send an SMS through Telnyx and log it as an outbound message.

    Body:
        - to: recipient number
        - body: message text
    """
    raw_body = await request.body()
    try:
        request_body = SendRequest.model_validate(json.loads(raw_body) if raw_body else {})
    except (ValueError, RecursionError) as e:
        # pydantic validation errors are ValueErrors too
        raise ValidationError("Invalid request body", detail=str(e)) from e

    result = await coordinator.send_message(request_body.to, request_body.body)
    return SendResponse(ok=True, id=result.provider_id, status=result.status)


# =============================================================================
# Messages Route
# =============================================================================

@app.get("/api/messages", response_model=List[MessageResponse])
async def list_messages(
    limit: Annotated[int, Query(description="Maximum number of messages to return (capped at 500)")] = DEFAULT_LIST_LIMIT,
    query_service: QueryService = Depends(get_query_service),
) -> List[MessageResponse]:
    """
    List logged messages, newest first.

    Query Parameters:
        - limit: default 200, values above 500 are capped
    """
    records = await query_service.list_recent(limit)
    return [MessageResponse.model_validate(record) for record in records]


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhooks/telnyx",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid webhook payload"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
    }
)
async def telnyx_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
    verifier: Optional[WebhookVerifier] = Depends(get_verifier),
) -> WebhookResponse:
    """
    Ingest a Telnyx webhook delivery.

    The raw body is verified (when a public key is configured) and then
    reconciled against the message store. Unknown event types are
    acknowledged without any write.
    """
    raw_body = await request.body()
    logger.debug(f"Webhook body size: {len(raw_body)} bytes")

    try:
        if verifier is not None:
            verifier.verify(raw_body, request.headers)
        outcome = await reconciler.handle(raw_body)
    except SignatureVerificationError:
        record_webhook_event("unknown", "invalid_signature")
        log_webhook_data(request, result="invalid_signature")
        raise
    except MalformedWebhookError:
        record_webhook_event("unknown", "invalid_payload")
        log_webhook_data(request, result="invalid_payload")
        raise
    except StorageError:
        record_webhook_event("unknown", "storage_error")
        log_webhook_data(request, result="storage_error")
        raise

    record_webhook_event(outcome.event_type, outcome.result)
    log_webhook_data(
        request,
        event_type=outcome.event_type,
        message_id=outcome.provider_message_id,
        result=outcome.result,
    )
    return WebhookResponse(received=True)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


def run() -> None:
    import uvicorn

    uvicorn.run("smsrelay.main:app", host="0.0.0.0", port=settings.PORT)
