import asyncio
import logging
from typing import Optional

from connection_logs.schemas.event import PlayerIdentity
from connection_logs.services.connection_store import ConnectionStore
from connection_logs.services.telegram_service import NotificationDispatcher

logger = logging.getLogger(__name__)


class EventRecorder:
    def __init__(self, store: ConnectionStore, dispatcher: NotificationDispatcher) -> None:
        self.store = store
        self.dispatcher = dispatcher

    async def record(
        self, connect_type: bool, identity: PlayerIdentity, ip_address: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """Persist a connect event and schedule its notification.

        Disconnects are only notified; ``connected_at`` tracks connections.
        The notification is scheduled even when the store write fails, and the
        store error is raised afterwards.
        """
        try:
            if connect_type:
                await self.store.upsert(identity.steam_id, identity.display_name)
        finally:
            task = self.dispatcher.send(connect_type, identity, ip_address)
        logger.info(
            "%s %s (%s)",
            "Connected" if connect_type else "Disconnected",
            identity.display_name,
            identity.steam_id,
        )
        return task
