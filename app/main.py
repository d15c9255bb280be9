"""
FastAPI application linking user accounts to Garmin, Strava and Stripe.

Composition root: builds the webhook service from its adapters, maps
domain errors to HTTP responses, and mounts the provider routers.
Protocol logic is in app/core, infrastructure in app/infrastructure.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import Callable

# Logging and redaction must be installed before any module logs
from app.logging_config import setup_global_logging

setup_global_logging()

from fastapi import Depends, FastAPI, Request, Response, status  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from app.api import stripe  # noqa: E402
from app.api.stripe import get_webhook_service_dependency  # noqa: E402
from app.core.exceptions import (  # noqa: E402
    InvalidFlowState,
    MissingParameters,
    NotConfigured,
    ProviderRequestRejected,
    ProviderUnreachable,
    PublisherError,
    SignatureInvalid,
    StateDecodeFailed,
)
from app.core.ports import EventPublisher  # noqa: E402
from app.core.services import WebhookService  # noqa: E402
from app.infrastructure.pubsub_publisher import GooglePubSubPublisher  # noqa: E402
from app.oauth import router as oauth_router  # noqa: E402
from app.oauth.config import OAuthConfig, get_oauth_config  # noqa: E402

logger = logging.getLogger(__name__)


# ============================================================================
# Application Lifecycle
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the Pub/Sub client on shutdown if a webhook ever created it."""
    logger.info("Provider auth gateway starting")
    yield
    logger.info("Provider auth gateway stopping")
    if get_event_publisher.cache_info().currsize:
        try:
            get_event_publisher().close()
        except Exception as e:
            logger.warning(f"Error closing event publisher during shutdown: {e}")


app = FastAPI(
    title="Provider Auth Gateway",
    description="Links user accounts to Garmin, Strava and Stripe and verifies webhooks",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================================
# Dependency Injection Configuration (Wiring)
# ============================================================================


@lru_cache()
def get_event_publisher() -> GooglePubSubPublisher:
    """Shared Pub/Sub publisher, created on the first verified webhook."""
    return GooglePubSubPublisher()


def get_publisher_factory() -> Callable[[], EventPublisher]:
    """
    Deferred access to the publisher.

    Pub/Sub settings are only read once a webhook verifies, so a forged
    request is answered 400 even when Pub/Sub is not configured.
    """
    return get_event_publisher


def get_webhook_service(
    publisher_factory: Callable[[], EventPublisher] = Depends(get_publisher_factory),
    config: OAuthConfig = Depends(get_oauth_config),
) -> WebhookService:
    """
    Build the webhook service for one request.

    A missing signing secret is passed through; the service refuses to
    verify anything with it.
    """
    return WebhookService(
        publisher_factory=publisher_factory,
        signing_secret=config.stripe_webhook_secret,
        tolerance=config.stripe_signature_tolerance,
    )


app.dependency_overrides[get_webhook_service_dependency] = get_webhook_service


# ============================================================================
# Centralized Exception Handlers
# ============================================================================


@app.exception_handler(NotConfigured)
async def not_configured_handler(request: Request, exc: NotConfigured):
    """Missing credentials or secrets: fail closed without calling the provider."""
    logger.error(f"Not configured: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": f"{exc.provider.capitalize()} not configured on server"},
    )


@app.exception_handler(MissingParameters)
async def missing_parameters_handler(request: Request, exc: MissingParameters):
    """Malformed client input."""
    logger.warning(f"Missing parameters on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)},
    )


@app.exception_handler(StateDecodeFailed)
async def state_decode_failed_handler(request: Request, exc: StateDecodeFailed):
    """Corrupt, tampered or expired redirect state."""
    logger.warning(f"State rejected on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid or expired state"},
    )


@app.exception_handler(ProviderRequestRejected)
async def provider_rejected_handler(request: Request, exc: ProviderRequestRejected):
    """
    Provider answered a handshake leg with an error.

    The provider body stays in the log sink; the caller gets a generic message.
    """
    logger.warning(
        f"{exc.provider} rejected request: {exc}",
        extra={
            "extra_fields": {
                "provider": exc.provider,
                "provider_status": exc.status_code,
                "provider_body": exc.body,
            }
        },
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Authorization with provider failed"},
    )


@app.exception_handler(ProviderUnreachable)
async def provider_unreachable_handler(request: Request, exc: ProviderUnreachable):
    """Network error or timeout on a handshake leg."""
    logger.error(f"{exc.provider} unreachable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": "Provider unavailable, please try again"},
    )


@app.exception_handler(InvalidFlowState)
async def invalid_flow_state_handler(request: Request, exc: InvalidFlowState):
    """Authorization step invoked out of order."""
    logger.warning(f"Invalid flow state on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "Authorization step out of order"},
    )


@app.exception_handler(SignatureInvalid)
async def signature_invalid_handler(request: Request, exc: SignatureInvalid):
    """
    Webhook failed verification.

    Returns 400 with an empty body so the check cannot be used as an oracle.
    """
    logger.warning(f"Webhook signature verification failed: {exc}")
    return Response(status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(PublisherError)
async def publisher_error_handler(request: Request, exc: PublisherError):
    """Verified event could not be forwarded; 500 makes Stripe redeliver it."""
    logger.error(f"Verified event not published: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": "error",
            "message": "Failed to publish event - please retry",
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Token request body did not match its model.

    Only the error locations are logged; bodies carry verifiers and sealed state.
    """
    locations = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
    logger.warning(f"Rejected request body on {request.url.path}: {locations}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "status": "error",
            "message": "Invalid request body",
        },
    )


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/")
async def root():
    """Service banner with the current server time."""
    return {
        "status": "healthy",
        "service": "provider-auth-gateway",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "healthy"}


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(oauth_router.router)
app.include_router(stripe.router)


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
