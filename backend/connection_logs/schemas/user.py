from datetime import datetime

from pydantic import BaseModel, ConfigDict


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    steam_id: str
    client_name: str
    connected_at: datetime


class ExistsResponse(BaseModel):
    steam_id: str
    exists: bool
