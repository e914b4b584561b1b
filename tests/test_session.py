import asyncio
import itertools
from functools import partial

import httpx
import pytest

from conftest import FakePrimary, FakeRefresher, Recorder, make_table
from linka import schema_adapter
from linka.cloud_sync import CloudSyncClient, WriteAttempt
from linka.errors import InvalidCredential, SyncFailed
from linka.history import UndoRedoHistory
from linka.models.graph import Position
from linka.models.schema import RawRelation, SchemaSnapshot
from linka.models.sync import CloudSyncRecord, PlanTier, SessionContext
from linka.session import GraphSession

WORKSPACE = SchemaSnapshot(
    databases=[make_table(str(i), "title") for i in range(1, 6)],
    relations=[RawRelation(source="1", target="2")],
)


class FakeCloud:
    def __init__(self, record=None, plan_tier=None, error=None, gate=None):
        self.record = record
        self.plan_tier = plan_tier
        self.error = error
        self.gate = gate
        self.writes = []

    async def fetch_plan_tier(self, user_id, session_token=None):
        return self.plan_tier

    async def fetch_cloud_state(self, user_id, session_token=None):
        if self.gate is not None:
            await self.gate.wait()
        return self.record

    async def sync_to_cloud(self, user_id, payload, session_token=None):
        self.writes.append((user_id, payload, session_token))
        if self.error:
            raise self.error
        return WriteAttempt(user_id=user_id, record=payload.to_record(user_id), token=session_token)


class FakeSchema:
    def __init__(self, snapshot=WORKSPACE, error=None):
        self.snapshot = snapshot
        self.error = error
        self.calls = []

    async def __call__(self, provider_token, session_token=None):
        self.calls.append((provider_token, session_token))
        if self.error:
            raise self.error
        return self.snapshot


@pytest.fixture
def schema():
    return FakeSchema()


def make_session(settings, store, cloud=None, schema=None, plan_tier=PlanTier.FREE, session_token="jwt"):
    return GraphSession(
        SessionContext(user_id="user-123", plan_tier=plan_tier, session_token=session_token),
        store,
        cloud or FakeCloud(),
        settings=settings,
        fetch_schema=schema or FakeSchema(),
        # Every call is a second later, so no save is debounced
        history=UndoRedoHistory(clock=itertools.count(step=1.0).__next__),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Initial load
# ─────────────────────────────────────────────────────────────────────────────

def test_new_session_shows_uncapped_demo(settings, store):
    session = make_session(settings, store)

    assert session.is_demo
    assert len(session.graph.nodes) == 8
    assert len(session.visible_table_ids) == 8
    assert session.needs_layout
    assert not session.is_dirty
    assert not session.ready.is_set()


async def test_start_without_cloud_state_stays_on_demo(settings, store, schema):
    session = make_session(settings, store, FakeCloud(plan_tier=PlanTier.PRO), schema)

    assert await session.start() is None

    assert session.ready.is_set()
    assert session.is_demo
    assert session.context.plan_tier is PlanTier.PRO
    assert schema.calls == []


async def test_unknown_plan_keeps_current_tier(settings, store):
    session = make_session(settings, store, FakeCloud(plan_tier=None), plan_tier=PlanTier.PRO)
    await session.start()
    assert session.context.plan_tier is PlanTier.PRO


async def test_cloud_record_becomes_the_clean_baseline(settings, store, schema):
    record = CloudSyncRecord(
        id="user-123",
        positions={"1": Position(x=10, y=20)},
        custom_colors={"2": "#FFFFFF"},
        filters=["title"],
        hidden_dbs=["5"],
        hide_isolated=False,
        notion_token="secret_abc",
    )
    session = make_session(settings, store, FakeCloud(record=record), schema)

    await session.start()

    assert schema.calls == [("secret_abc", "jwt")]
    assert not session.is_demo
    assert session.context.has_provider_token
    assert not session.is_dirty
    assert session.visibility.selected_property_types == {"title"}
    assert session.visibility.hidden_table_ids == {"5"}
    assert session.graph.positions()["1"] == Position(x=10, y=20)
    assert next(n for n in session.graph.nodes if n.id == "2").data.color == "#FFFFFF"
    assert store.get_provider_token() == "secret_abc"
    assert store.get_hidden_tables() == ["5"]
    assert len(session.history) == 1


async def test_null_cloud_fields_leave_local_values(settings, store):
    store.set_filters(["date"])
    store.set_hide_isolated(True)
    record = CloudSyncRecord(id="user-123", filters=None, hide_isolated=None)
    session = make_session(settings, store, FakeCloud(record=record))

    await session.start()

    assert session.visibility.selected_property_types == {"date"}
    assert session.visibility.hide_isolated is True
    assert session.is_demo


async def test_local_token_resumes_when_cloud_is_empty(settings, store, schema):
    store.set_provider_token("local_token")
    session = make_session(settings, store, FakeCloud(), schema)

    await session.start()

    assert schema.calls == [("local_token", "jwt")]
    assert not session.is_demo


async def test_failed_resume_keeps_demo_and_records_error(settings, store):
    store.set_provider_token("revoked")
    schema = FakeSchema(error=InvalidCredential())
    session = make_session(settings, store, FakeCloud(), schema)

    await session.start()

    assert session.ready.is_set()
    assert session.is_demo
    assert isinstance(session.last_error, InvalidCredential)


# ─────────────────────────────────────────────────────────────────────────────
# Schema sync and visibility
# ─────────────────────────────────────────────────────────────────────────────

async def test_free_tier_caps_real_workspace(settings, store, schema):
    session = make_session(settings, store, schema=schema)

    await session.sync_schema("secret_abc")

    assert session.is_dirty
    assert session.visible_table_ids == {"1", "2", "3", "4"}
    assert [n.id for n in session.visible_graph().nodes] == ["1", "2", "3", "4"]
    assert len(session.graph.nodes) == 5


async def test_pro_tier_sees_everything(settings, store, schema):
    session = make_session(settings, store, schema=schema, plan_tier=PlanTier.PRO)
    await session.sync_schema("secret_abc")
    assert len(session.visible_table_ids) == 5


async def test_hide_isolated_on_real_workspace(settings, store, schema):
    session = make_session(settings, store, schema=schema, plan_tier=PlanTier.PRO)
    await session.sync_schema("secret_abc")
    session.filters.toggle_hide_isolated()

    visible = session.visible_graph()
    assert {n.id for n in visible.nodes} == {"1", "2"}
    assert len(visible.edges) == 1


async def test_sync_without_token_fails(settings, store, schema):
    session = make_session(settings, store, schema=schema)
    with pytest.raises(InvalidCredential):
        await session.sync_schema("")
    assert schema.calls == []


async def test_sync_error_propagates_and_keeps_graph(settings, store):
    session = make_session(settings, store, schema=FakeSchema(error=SyncFailed("Provider API error (500): x")))
    with pytest.raises(SyncFailed):
        await session.sync_schema("secret_abc")
    assert session.is_demo
    assert session.sync_status == "idle"


async def test_disconnect_returns_to_demo(settings, store, schema):
    session = make_session(settings, store, schema=schema)
    await session.sync_schema("secret_abc")
    store.set_provider_token("secret_abc")

    session.disconnect()

    assert session.is_demo
    assert session.provider_token is None
    assert store.get_provider_token() is None
    assert not session.context.has_provider_token
    assert len(session.graph.nodes) == 8


# ─────────────────────────────────────────────────────────────────────────────
# Saving
# ─────────────────────────────────────────────────────────────────────────────

async def test_save_now_writes_live_state(settings, store, schema):
    cloud = FakeCloud()
    session = make_session(settings, store, cloud, schema)
    await session.start()
    await session.sync_schema("secret_abc")
    session.filters.toggle_hidden_table("3")
    session.move_nodes({"1": Position(x=5, y=6)})

    await session.save_now()

    user_id, payload, token = cloud.writes[0]
    assert (user_id, token) == ("user-123", "jwt")
    assert payload.positions["1"] == Position(x=5, y=6)
    assert payload.hidden_dbs == ["3"]
    assert payload.notion_token == "secret_abc"
    assert store.get_positions()["1"] == Position(x=5, y=6)
    assert store.get_hidden_tables() == ["3"]
    assert session.cloud_sync_status == "saved"
    assert not session.is_dirty


async def test_save_failure_keeps_dirty_and_reraises(settings, store):
    session = make_session(settings, store, FakeCloud(error=SyncFailed("Direct write failed (500): x")))
    await session.start()
    session.filters.toggle_filter("title")

    with pytest.raises(SyncFailed):
        await session.save_now()

    assert session.cloud_sync_status == "error"
    assert session.is_dirty
    # The local store is written even when the cloud is not
    assert store.get_filters() == ["title"]


async def test_refreshed_session_is_kept_for_later_saves(settings, store):
    def rest(request):
        if request.headers["Authorization"] == "Bearer stale":
            return httpx.Response(401, json={"code": "PGRST303", "message": "JWT expired"})
        return httpx.Response(201)

    refresher = FakeRefresher()
    cloud = CloudSyncClient(
        settings,
        primary=FakePrimary(fail=True),
        refresh_session=refresher,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(rest)),
    )
    session = make_session(settings, store, cloud, session_token="stale")
    await session.start()

    await session.save_now()
    await session.save_now()

    assert refresher.calls == 1
    assert session.context.session_token == "refreshed_token"
    assert session.cloud_sync_status == "saved"


# ─────────────────────────────────────────────────────────────────────────────
# Positions and colours
# ─────────────────────────────────────────────────────────────────────────────

async def test_move_undo_redo(settings, store, schema):
    session = make_session(settings, store, schema=schema)
    await session.sync_schema("secret_abc")
    start = session.graph.positions()["1"].model_copy()

    session.move_nodes({"1": Position(x=1, y=1)})
    session.move_nodes({"1": Position(x=2, y=2)})

    session.undo()
    assert session.graph.positions()["1"] == Position(x=1, y=1)
    session.undo()
    assert session.graph.positions()["1"] == start
    assert session.undo() is None
    session.redo()
    session.redo()
    assert session.graph.positions()["1"] == Position(x=2, y=2)
    assert session.redo() is None


def test_custom_color_rebuild_keeps_positions(settings, store):
    session = make_session(settings, store)
    session.move_nodes({"2": Position(x=42, y=43)})

    session.set_custom_color("2", "#010101")
    node = next(n for n in session.graph.nodes if n.id == "2")
    assert node.data.color == "#010101"
    assert node.position == Position(x=42, y=43)
    assert all(e.color == "#010101" for e in session.graph.edges if e.source == "2")

    session.reset_custom_color("2")
    node = next(n for n in session.graph.nodes if n.id == "2")
    assert node.data.color != "#010101"
    assert session.is_dirty


# ─────────────────────────────────────────────────────────────────────────────
# Initial-load barrier
# ─────────────────────────────────────────────────────────────────────────────

async def test_save_during_start_waits_for_cloud_state(settings, store, schema):
    gate = asyncio.Event()
    record = CloudSyncRecord(id="user-123", filters=["date"], notion_token="secret_cloud")
    cloud = FakeCloud(record=record, gate=gate)
    session = make_session(settings, store, cloud, schema)

    starting = asyncio.create_task(session.start())
    saving = asyncio.create_task(session.save_now())
    await asyncio.sleep(0)
    assert cloud.writes == []
    assert session.cloud_sync_status == "idle"

    gate.set()
    await asyncio.gather(starting, saving)

    _, payload, _ = cloud.writes[0]
    assert payload.notion_token == "secret_cloud"
    assert payload.filters == ["date"]
    assert store.get_provider_token() == "secret_cloud"


async def test_save_reads_state_when_it_runs_not_when_queued(settings, store):
    cloud = FakeCloud()
    session = make_session(settings, store, cloud)
    await session.start()

    saving = asyncio.create_task(session.save_now())
    # Lands after the save was queued but before it ran
    session.move_nodes({"1": Position(x=77, y=88)})
    session.filters.toggle_hide_isolated()
    await saving

    _, payload, _ = cloud.writes[0]
    assert payload.positions["1"] == Position(x=77, y=88)
    assert payload.hide_isolated is True


async def test_unreadable_schema_during_resume_keeps_demo(settings, store):
    recorder = Recorder(httpx.Response(200, text="<html>gateway</html>"))
    fetch = partial(schema_adapter.fetch_schema, settings=settings, client=recorder.client())
    record = CloudSyncRecord(id="user-123", notion_token="secret_abc")
    session = make_session(settings, store, FakeCloud(record=record), fetch)

    await session.start()

    assert session.ready.is_set()
    assert session.is_demo
    assert isinstance(session.last_error, SyncFailed)
    assert session.last_error.status == 200
