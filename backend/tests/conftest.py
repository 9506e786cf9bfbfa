import os

# Set env vars before any connection_logs module is imported so the
# module-level settings point at a throwaway database.
_test_env = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "TELEGRAM_BOT_TOKEN": "",
    "TELEGRAM_CHAT_ID": "",
    "STORE_REPROBE_INTERVAL": "0",
}

for key, value in _test_env.items():
    os.environ.setdefault(key, value)

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from connection_logs.database import build_engine  # noqa: E402
from connection_logs.services.connection_store import ConnectionStore  # noqa: E402


class TickClock:
    """Returns a strictly increasing UTC time, one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.calls: list[datetime] = []

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        self.calls.append(self.now)
        return self.now


@pytest.fixture
def clock() -> TickClock:
    return TickClock()


@pytest_asyncio.fixture
async def store(clock):
    s = ConnectionStore(build_engine("sqlite+aiosqlite:///:memory:"), clock=clock)
    assert await s.probe()
    yield s
    await s.dispose()
