from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RelayRequest(BaseModel):
    url: str
    port: int = Field(ge=1, le=65535)
    topic: Optional[str] = None
    message: str


class BrokerSettingsIn(BaseModel):
    url: str
    port: int
    topic: Optional[str] = None
    message: str


class BrokerSettingsOut(BaseModel):
    url: str
    port: int
    topic: Optional[str] = None
    message: str

    model_config = ConfigDict(from_attributes=True)


class AdminRequest(BaseModel):
    action: str
    userId: Optional[str] = None
    role: Optional[str] = None
