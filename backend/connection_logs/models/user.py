from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from connection_logs.database import Base


class User(Base):
    __tablename__ = "Users"

    id: Mapped[int] = mapped_column("Id", Integer, primary_key=True, autoincrement=True)
    steam_id: Mapped[str] = mapped_column("SteamId", String(18), nullable=False, unique=True)
    client_name: Mapped[str] = mapped_column("ClientName", String(128), nullable=False)
    connected_at: Mapped[datetime] = mapped_column(
        "ConnectedAt",
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.steam_id} ({self.client_name})>"
