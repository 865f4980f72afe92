from pydantic import BaseModel, Field


class BasicAuthCredential(BaseModel):
    username: str
    password: str
    encoded: str


class QueueConnection(BaseModel):
    id: str
    source_url: str


class WebhookConnection(BaseModel):
    id: str
    source_url: str
    source_id: str


class StoredConnections(BaseModel):
    queue: QueueConnection
    webhook: WebhookConnection


class ConnectionsOut(BaseModel):
    success: bool = True
    connections: StoredConnections


class ConnectionsStatusOut(BaseModel):
    connections: StoredConnections | None = None
    auth_configured: bool = False


class WebhookSourceUpdateRequest(BaseModel):
    secret: str = Field(min_length=1)
