from fastapi import APIRouter, Depends, HTTPException, status

from deepqueue.core.config import Settings, get_settings
from deepqueue.core.errors import AuthenticationError, ConfigurationError, UpstreamError
from deepqueue.core.security import require_operator
from deepqueue.schemas.hookdeck import (
    ConnectionsOut,
    ConnectionsStatusOut,
    WebhookSourceUpdateRequest,
)
from deepqueue.services.connections import ConnectionProvisioner, get_connection_provisioner

router = APIRouter(dependencies=[Depends(require_operator)])


@router.post("/connections", response_model=ConnectionsOut)
async def ensure_connections(
    settings: Settings = Depends(get_settings),
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> ConnectionsOut:
    if not settings.hookdeck_api_key or not settings.openai_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="DQ_HOOKDECK_API_KEY and DQ_OPENAI_API_KEY are required",
        )

    try:
        connections = await provisioner.ensure_connections(
            settings.hookdeck_api_key,
            settings.openai_api_key,
            settings.app_url,
            signing_secret=settings.hookdeck_signing_secret,
        )
    except (AuthenticationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ConnectionsOut(connections=connections)


@router.get("/connections", response_model=ConnectionsStatusOut)
async def get_connections(
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> ConnectionsStatusOut:
    connections = await provisioner.get_connections()
    credential = await provisioner.get_source_auth_credential()
    return ConnectionsStatusOut(connections=connections, auth_configured=credential is not None)


@router.delete("/connections", status_code=status.HTTP_204_NO_CONTENT)
async def clear_connections(
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> None:
    await provisioner.clear_connections()


@router.put("/connections/webhook-source", response_model=ConnectionsStatusOut)
async def update_webhook_source(
    payload: WebhookSourceUpdateRequest,
    settings: Settings = Depends(get_settings),
    provisioner: ConnectionProvisioner = Depends(get_connection_provisioner),
) -> ConnectionsStatusOut:
    if not settings.hookdeck_api_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="DQ_HOOKDECK_API_KEY is required")

    connections = await provisioner.get_connections()
    if connections is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="connections are not provisioned")

    try:
        await provisioner.update_webhook_source(connections.webhook.source_id, payload.secret, settings.hookdeck_api_key)
    except (AuthenticationError, UpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    credential = await provisioner.get_source_auth_credential()
    return ConnectionsStatusOut(connections=connections, auth_configured=credential is not None)
