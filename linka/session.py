# session.py
"""
Graph session: wires the schema adapter, graph builder, filter engine, undo
history, local store and cloud sync client together for one signed-in user.

This is what UI event handlers talk to. It owns the live in-memory state
(tables, relations, nodes, visibility rules) and decides when each component
runs:

- `start()` is the initial-load barrier: plan tier and cloud state are applied
  before any user mutation counts as a change from the baseline. It sets
  `ready` when done, whether or not the load succeeded.
- Edits (filter toggles, colours, node moves) are gated on `ready`: UI
  handlers enable them once `ready` is set. An edit made earlier is replaced
  by the restored cloud state.
- `sync_schema()` rebuilds tables/relations/graph wholesale.
- `save_now()` waits for `ready`, then writes the state as it is at that
  moment to the local store and the cloud. A session token refreshed during
  the write replaces the one in `context`.
"""

import asyncio
from functools import partial
from typing import Awaitable, Callable, List, Literal, Mapping

import structlog

from linka import schema_adapter
from linka.cloud_sync import CloudSyncClient, WriteAttempt
from linka.config import Settings, get_settings
from linka.demo import DEMO_RELATIONS, demo_tables
from linka.errors import InvalidCredential, LinkaError
from linka.filters import GraphFilters
from linka.graph import build, restrict
from linka.history import UndoRedoHistory, apply_snapshot
from linka.local_store import ScopedLocalStore
from linka.models.graph import GraphModel, GraphNode, Position
from linka.models.schema import RawRelation, RawTable, SchemaSnapshot
from linka.models.sync import CloudSyncPayload, CloudSyncRecord, SessionContext, VisibilityState

log = structlog.get_logger(__name__)

SyncStatus = Literal["idle", "saving", "saved", "error"]
SchemaFetcher = Callable[[str, str | None], Awaitable[SchemaSnapshot]]


class GraphSession:
    def __init__(
        self,
        context: SessionContext,
        store: ScopedLocalStore,
        cloud: CloudSyncClient,
        settings: Settings | None = None,
        fetch_schema: SchemaFetcher | None = None,
        history: UndoRedoHistory | None = None,
    ):
        self.settings = settings or get_settings()
        self.context = context
        self.store = store
        self.cloud = cloud
        self._fetch_schema = fetch_schema or partial(schema_adapter.fetch_schema, settings=self.settings)
        self.history = history if history is not None else UndoRedoHistory(
            max_size=self.settings.history_max_size,
            debounce_ms=self.settings.history_debounce_ms,
        )
        self.filters = GraphFilters.from_store(store, limit=self.settings.free_tier_table_limit)

        self.provider_token: str | None = store.get_provider_token()
        self.tables: List[RawTable] = demo_tables()
        self.relations: List[RawRelation] = list(DEMO_RELATIONS)
        self.is_demo = True
        self.needs_layout = True
        self.sync_status: SyncStatus = "idle"
        self.cloud_sync_status: SyncStatus = "idle"
        self.last_error: LinkaError | None = None
        self.ready = asyncio.Event()

        self.graph = GraphModel()
        self._rebuild(store.get_positions())

    # ─── Derived state ───────────────────────────────────────────────────────

    @property
    def is_dirty(self) -> bool:
        return self.filters.is_dirty

    @property
    def visibility(self) -> VisibilityState:
        return self.filters.state

    @property
    def visible_table_ids(self) -> frozenset[str]:
        return self.filters.visible(
            self.tables, self.relations, self.context.plan_tier, self.context.has_provider_token
        )

    def visible_graph(self) -> GraphModel:
        return restrict(self.graph, self.visible_table_ids)

    def _rebuild(self, positions: Mapping[str, Position]) -> None:
        self.graph = build(self.tables, self.relations, positions, self.filters.state.custom_colors)
        self.needs_layout = any(table.id not in positions for table in self.tables)

    # ─── Session start ───────────────────────────────────────────────────────

    async def start(self) -> CloudSyncRecord | None:
        """Load plan tier and cloud state, then resume the last workspace if there is one."""
        try:
            plan_tier = await self.cloud.fetch_plan_tier(self.context.user_id, self.context.session_token)
            if plan_tier is not None:
                self.context = self.context.model_copy(update={"plan_tier": plan_tier})
            record = await self.load_cloud_state()
            if record is None and self.provider_token and self.is_demo:
                await self._resume(self.provider_token)
            return record
        finally:
            self.ready.set()

    async def load_cloud_state(self) -> CloudSyncRecord | None:
        record = await self.cloud.fetch_cloud_state(self.context.user_id, self.context.session_token)
        if record is None:
            log.info("cloud_state_absent", user_id=self.context.user_id)
            return None

        state = self.filters.state.model_copy()
        if record.notion_token:
            self.store.set_provider_token(record.notion_token)
            self.provider_token = record.notion_token
        if record.positions is not None:
            self.store.set_positions(record.positions)
        if record.custom_colors is not None:
            self.store.set_custom_colors(record.custom_colors)
            state.custom_colors = dict(record.custom_colors)
        if record.filters is not None:
            self.store.set_filters(record.filters)
            state.selected_property_types = set(record.filters)
        if record.hidden_dbs is not None:
            self.store.set_hidden_tables(record.hidden_dbs)
            state.hidden_table_ids = set(record.hidden_dbs)
        if record.hide_isolated is not None:
            self.store.set_hide_isolated(record.hide_isolated)
            state.hide_isolated = record.hide_isolated

        # Restored state is the baseline, not a user change
        self.filters.replace_state(state)
        self.filters.is_dirty = False
        self._rebuild(self.store.get_positions())
        log.info("cloud_state_applied", user_id=self.context.user_id)

        if record.notion_token and self.is_demo:
            await self._resume(record.notion_token)
        return record

    async def _resume(self, provider_token: str) -> None:
        try:
            await self.sync_schema(provider_token, mark_dirty=False)
        except LinkaError as e:
            # Demo data stays on screen; the caller can show last_error
            self.last_error = e
            log.warning("workspace_resume_failed", user_id=self.context.user_id, error=str(e))

    # ─── Schema sync ─────────────────────────────────────────────────────────

    async def sync_schema(self, provider_token: str, mark_dirty: bool = True) -> GraphModel:
        """Replace the graph with the user's real workspace. Errors propagate to the caller."""
        if not provider_token:
            raise InvalidCredential("Missing integration token.", status=None)

        self.sync_status = "saving"
        try:
            snapshot = await self._fetch_schema(provider_token, self.context.session_token)
        finally:
            self.sync_status = "idle"

        self.tables = list(snapshot.databases)
        self.relations = list(snapshot.relations)
        self.is_demo = False
        self.provider_token = provider_token
        self.context = self.context.model_copy(update={"has_provider_token": True})
        self.last_error = None

        self._rebuild(self.store.get_positions())
        self.history.clear()
        self.history.save_state(self.graph.nodes)
        if mark_dirty:
            self.filters.is_dirty = True
        return self.graph

    def disconnect(self) -> None:
        """Forget the provider token and fall back to demonstration data."""
        self.provider_token = None
        self.store.set_provider_token(None)
        self.context = self.context.model_copy(update={"has_provider_token": False})
        self.tables = demo_tables()
        self.relations = list(DEMO_RELATIONS)
        self.is_demo = True
        self.history.clear()
        self._rebuild(self.store.get_positions())
        self.filters.is_dirty = True

    # ─── Manual save ─────────────────────────────────────────────────────────

    def current_payload(self) -> CloudSyncPayload:
        state = self.filters.state
        return CloudSyncPayload(
            positions=self.graph.positions(),
            custom_colors=dict(state.custom_colors),
            filters=sorted(state.selected_property_types),
            hidden_dbs=sorted(state.hidden_table_ids),
            hide_isolated=state.hide_isolated,
            notion_token=self.provider_token,
        )

    async def save_now(self) -> WriteAttempt:
        """
        Persist the live state locally and to the cloud. Errors propagate after the status is set.

        Waits for `start()` to finish first, so a save never replaces cloud state
        that has not been read yet. The payload is built after that wait, from
        the state as it is at that moment.
        """
        await self.ready.wait()
        self.cloud_sync_status = "saving"
        payload = self.current_payload()
        self.store.save_all(
            positions=payload.positions,
            custom_colors=payload.custom_colors,
            filters=payload.filters,
            hidden_tables=payload.hidden_dbs,
            hide_isolated=payload.hide_isolated,
            provider_token=payload.notion_token,
        )
        try:
            attempt = await self.cloud.sync_to_cloud(self.context.user_id, payload, self.context.session_token)
        except LinkaError:
            self.cloud_sync_status = "error"
            raise

        if attempt.token and attempt.token != self.context.session_token:
            # Later reads and writes go out with the refreshed session
            self.context = self.context.model_copy(update={"session_token": attempt.token})
            log.info("session_token_updated", user_id=self.context.user_id)
        self.cloud_sync_status = "saved"
        self.filters.is_dirty = False
        return attempt

    # ─── Node positions ──────────────────────────────────────────────────────

    def move_nodes(self, positions: Mapping[str, Position]) -> List[GraphNode]:
        self.graph = GraphModel(nodes=apply_snapshot(self.graph.nodes, positions), edges=self.graph.edges)
        self.history.save_state(self.graph.nodes)
        self.filters.is_dirty = True
        return self.graph.nodes

    def undo(self) -> List[GraphNode] | None:
        snapshot = self.history.undo()
        if snapshot is None:
            return None
        self.graph = GraphModel(nodes=apply_snapshot(self.graph.nodes, snapshot), edges=self.graph.edges)
        return self.graph.nodes

    def redo(self) -> List[GraphNode] | None:
        snapshot = self.history.redo()
        if snapshot is None:
            return None
        self.graph = GraphModel(nodes=apply_snapshot(self.graph.nodes, snapshot), edges=self.graph.edges)
        return self.graph.nodes

    # ─── Colours ─────────────────────────────────────────────────────────────

    def set_custom_color(self, table_id: str, color: str) -> None:
        self.filters.set_custom_color(table_id, color)
        self._rebuild(self.graph.positions())

    def reset_custom_color(self, table_id: str) -> None:
        self.filters.reset_custom_color(table_id)
        self._rebuild(self.graph.positions())
