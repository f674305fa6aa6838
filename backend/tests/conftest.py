import sys
from pathlib import Path
from typing import Any, List, Mapping, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from nearby.main import app


class RecordingNotifier:
	"""In-memory notifier capturing every hand-off."""

	def __init__(self) -> None:
		self.calls: List[Tuple[str, str, str, Mapping[str, Any]]] = []

	async def notify(self, user_id: str, title: str, body: str, payload: Mapping[str, Any]) -> None:
		self.calls.append((user_id, title, body, dict(payload)))


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from nearby.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture
def notifier() -> RecordingNotifier:
	return RecordingNotifier()


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
