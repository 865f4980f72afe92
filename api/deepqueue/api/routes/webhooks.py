import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from starlette.requests import Request

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import AuthenticationError, ConfigurationError, UpstreamError, ValidationError
from deepqueue.schemas.webhooks import WebhookAck
from deepqueue.services.webhooks import WebhookIngestor, get_webhook_ingestor

router = APIRouter()
logger = logging.getLogger(__name__)

RETRYABLE_UPSTREAM_STATUSES = frozenset({401, 403, 408, 429})


@router.post("/openai", response_model=WebhookAck)
async def receive_openai_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
    x_hookdeck_signature: str | None = Header(default=None, alias="x-hookdeck-signature"),
    x_hookdeck_signature_2: str | None = Header(default=None, alias="x-hookdeck-signature-2"),
) -> WebhookAck:
    signatures = [signature for signature in (x_hookdeck_signature, x_hookdeck_signature_2) if signature]
    if not signatures:
        logger.warning("webhook rejected: missing signature headers")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing webhook signature")

    raw_body = await request.body()
    try:
        outcome = await ingestor.handle_inbound_webhook(raw_body, signatures, settings.hookdeck_signing_secret)
    except AuthenticationError as exc:
        logger.warning("webhook rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature") from exc
    except ValidationError as exc:
        logger.warning("webhook rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload") from exc
    except ConfigurationError as exc:
        logger.error("webhook processing not configured: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook verification not configured",
        ) from exc
    except UpstreamError as exc:
        if _is_permanent_upstream_rejection(exc):
            logger.warning("webhook rejected: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
                detail="Upstream job not retrievable",
            ) from exc
        logger.error("webhook processing failed upstream: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream fetch failed") from exc

    if outcome.action == "ignored":
        return WebhookAck(message=f"Event type {outcome.event_type or 'unknown'} acknowledged without changes")
    if outcome.action == "not_found":
        return WebhookAck(message="No matching research; acknowledged without changes")
    return WebhookAck()


def _is_permanent_upstream_rejection(exc: UpstreamError) -> bool:
    # Other 4xx answers will not change on redelivery.
    if exc.status_code is None or not 400 <= exc.status_code < 500:
        return False
    return exc.status_code not in RETRYABLE_UPSTREAM_STATUSES


@router.get("/openai")
async def verify_openai_webhook_endpoint() -> dict[str, str]:
    return {"status": "ok"}
