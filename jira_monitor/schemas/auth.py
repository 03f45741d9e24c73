from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Ce que le callback renvoie : jamais les tokens eux-mêmes
class AuthorizationResult(CamelModel):
    tenant_id: str = Field(alias="tenantId")
    expires_in: int = Field(alias="expiresIn")


class CallbackResponse(AuthorizationResult):
    message: str


class RefreshStatus(CamelModel):
    status: str  # "refreshed", "still_valid" ou "no_credential"
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")


class CronStatus(BaseModel):
    message: str
    running: bool
