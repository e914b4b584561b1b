import asyncio
import json

import httpx
import pytest

from linka.config import Settings
from linka.local_store import MemoryBackend, ScopedLocalStore
from linka.models.schema import RawRelation, RawTable, TableProperty

SUPABASE_URL = "https://test.supabase.co"
ANON_KEY = "test-anon-key"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_base_url=SUPABASE_URL,
        storage_anon_key=ANON_KEY,
        notion_api_url="https://api.notion.test/v1",
        schema_proxy_url=None,
        primary_write_timeout=0.05,
        primary_read_timeout=0.05,
        refresh_timeout=0.05,
        http_timeout=1.0,
        jwt_secret="test-secret-key-for-session-tokens-0001",
        jwt_audience="authenticated",
        local_store_url="sqlite://",
    )


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend) -> ScopedLocalStore:
    return ScopedLocalStore("user-123", backend, prefix="linka")


def make_table(table_id: str, *types: str, title: str | None = None) -> RawTable:
    return RawTable(
        id=table_id,
        title=title or f"Table {table_id}",
        properties=[TableProperty(name=f"p{i}", type=t) for i, t in enumerate(types)],
        color=f"#00000{table_id[-1]}",
    )


@pytest.fixture
def five_tables() -> list[RawTable]:
    return [make_table(str(i), "title") for i in range(1, 6)]


@pytest.fixture
def one_relation() -> list[RawRelation]:
    return [RawRelation(source="1", target="2")]


# ─────────────────────────────────────────────────────────────────────────────
# HTTP mocking
# ─────────────────────────────────────────────────────────────────────────────

class Recorder:
    """MockTransport handler that replays queued responses and keeps every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        # Fresh copy so a queued response can be replayed
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def body(self, index: int = 0):
        return json.loads(self.requests[index].content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# ─────────────────────────────────────────────────────────────────────────────
# Managed client / session fakes
# ─────────────────────────────────────────────────────────────────────────────

class FakePrimary:
    def __init__(self, fail: bool = False, hang: bool = False, row: dict | None = None):
        self.fail = fail
        self.hang = hang
        self.row = row
        self.upserts: list[tuple[str, dict, str | None]] = []
        self.selects: list[tuple[str, str]] = []

    async def _behave(self):
        if self.hang:
            await asyncio.sleep(5)
        if self.fail:
            raise RuntimeError("client connection broken")

    async def upsert(self, table, record, session_token):
        self.upserts.append((table, record, session_token))
        await self._behave()

    async def select_one(self, table, user_id, columns, session_token):
        self.selects.append((table, user_id))
        await self._behave()
        return self.row


class FakeRefresher:
    def __init__(self, token: str | None = "refreshed_token", error: Exception | None = None):
        self.token = token
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.token
