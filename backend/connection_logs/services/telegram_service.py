import asyncio
import logging
import time
from typing import Callable, Optional, Set

import httpx

from connection_logs.schemas.event import PlayerIdentity

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE_URL = "https://api.telegram.org"
STEAM_PROFILE_URL = "https://steamcommunity.com/profiles/{steam_id}"


class NotificationDispatcher:
    """Best-effort delivery of connection events to a Telegram chat.

    ``send`` schedules a delivery task and returns immediately; no delivery
    failure ever reaches the caller. At most ``max_in_flight`` requests run at
    once and at most ``max_pending`` deliveries are queued, anything beyond
    that is dropped.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: str,
        chat_id: str,
        *,
        base_url: str = TELEGRAM_API_BASE_URL,
        timeout: float = 10.0,
        max_in_flight: int = 4,
        max_pending: int = 100,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self._client = client
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_pending = max_pending
        self._semaphore = asyncio.Semaphore(max_in_flight)
        self._clock = clock or time.time
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def format_message(
        self, connect_type: bool, identity: PlayerIdentity, ip_address: Optional[str] = None
    ) -> str:
        event = "connected" if connect_type else "disconnected"
        profile = STEAM_PROFILE_URL.format(steam_id=identity.steam_id)
        message = (
            f"{int(self._clock())}: {identity.display_name} ({profile}) "
            f"{identity.steam_id} {event}"
        )
        if ip_address:
            message += f" with ip {ip_address}"
        return message

    def send(
        self, connect_type: bool, identity: PlayerIdentity, ip_address: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """Schedule a notification without waiting for it."""
        if not self.enabled:
            logger.debug("Telegram not configured, skipping notification for %s", identity.steam_id)
            return None
        if len(self._pending) >= self._max_pending:
            logger.warning(
                "Dropping notification for %s: %d deliveries already pending",
                identity.steam_id, len(self._pending),
            )
            return None
        # Composed now so the timestamp is the time of the event, not of delivery.
        message = self.format_message(connect_type, identity, ip_address)
        task = asyncio.create_task(self._deliver_bounded(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def deliver(
        self, connect_type: bool, identity: PlayerIdentity, ip_address: Optional[str] = None
    ) -> bool:
        return await self._deliver_bounded(self.format_message(connect_type, identity, ip_address))

    async def _deliver_bounded(self, message: str) -> bool:
        async with self._semaphore:
            return await self._post(message)

    async def _post(self, message: str) -> bool:
        try:
            response = await self._client.get(
                f"{self._base_url}/bot{self._bot_token}/sendMessage",
                params={"chat_id": self._chat_id, "text": message},
                timeout=self._timeout,
            )
            if not response.is_success:
                logger.error(
                    f"Failed to send message to Telegram. Error: "
                    f"{_error_description(response)}"
                )
                return False
            if _api_rejected(response):
                logger.error(
                    f"Telegram rejected message. Error: {_error_description(response)}"
                )
                return False
            return True
        except httpx.HTTPError as e:
            logger.error(f"Exception when trying to send message to Telegram: {e!r}")
            return False
        except Exception:
            logger.exception("Unexpected error when sending message to Telegram")
            return False

    async def aclose(self) -> None:
        """Wait for queued deliveries to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _error_description(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text}"
    if isinstance(data, dict) and data.get("description"):
        return str(data["description"])
    return f"HTTP {response.status_code}: {response.text}"


def _api_rejected(response: httpx.Response) -> bool:
    try:
        data = response.json()
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("ok") is False
