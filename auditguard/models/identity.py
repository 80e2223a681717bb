from pydantic import BaseModel, ConfigDict


class CurrentUser(BaseModel):
    """Authenticated caller as reported by the host's session layer.

    The audit core never verifies identity itself; it only records what the
    current-user provider hands it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str | None = None
    role: str | None = None
