from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class PlayerIdentity:
    steam_id: str
    display_name: str


class ConnectionEvent(BaseModel):
    connect_type: bool
    steam_id: str = Field(min_length=1, max_length=18)
    display_name: str = Field(min_length=1, max_length=128)
    ip_address: Optional[str] = None

    @property
    def identity(self) -> PlayerIdentity:
        return PlayerIdentity(steam_id=self.steam_id, display_name=self.display_name)


class EventAccepted(BaseModel):
    status: str = "recorded"
