# local_store.py
"""
Scoped local store: one user's graph customisation in a fast synchronous
key/value cache. Keys are namespaced as ``{prefix}_{user_id}_{logical_key}``
so several users sharing one device never collide.

Getters never raise: a missing key or undecodable value yields the type's
empty value.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Protocol

import structlog
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from linka.config import Settings, get_settings
from linka.models.graph import Position

log = structlog.get_logger(__name__)


class StorageKey(str, Enum):
    POSITIONS = "node-positions"
    FILTERS = "property-filters"
    HIDDEN_DBS = "hidden-dbs"
    ISOLATED = "hide-isolated"
    NOTION_TOKEN = "notion-token"
    ONBOARDING = "onboarding-seen"
    CUSTOM_COLORS = "custom-colors"


# ─────────────────────────────────────────────────────────────────────────────
# Backends
# ─────────────────────────────────────────────────────────────────────────────

class KeyValueBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryBackend:
    """Process-local dict. Used by tests and by sessions that opt out of persistence."""

    def __init__(self, initial: Mapping[str, str] | None = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


metadata = MetaData()

local_kv = Table(
    "local_kv",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
)


class SqlBackend:
    """Key/value rows in a single table of any SQLAlchemy database (SQLite file by default)."""

    def __init__(self, url: str = "sqlite:///linka_local.db", engine: Engine | None = None):
        self.engine = engine or create_engine(url)
        metadata.create_all(self.engine)

    def get(self, key: str) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(local_kv.c.value).where(local_kv.c.key == key)).first()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(local_kv).where(local_kv.c.key == key))
            conn.execute(insert(local_kv).values(key=key, value=value))

    def remove(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(local_kv).where(local_kv.c.key == key))


# ─────────────────────────────────────────────────────────────────────────────
# Scoped store
# ─────────────────────────────────────────────────────────────────────────────

_positions_adapter = TypeAdapter(Dict[str, Position])
_string_list_adapter = TypeAdapter(List[str])
_colors_adapter = TypeAdapter(Dict[str, str])


def scoped_key(prefix: str, user_id: str, key: StorageKey | str) -> str:
    logical = key.value if isinstance(key, StorageKey) else key
    return f"{prefix}_{user_id}_{logical}"


class ScopedLocalStore:
    def __init__(self, user_id: str, backend: KeyValueBackend, prefix: str = "linka"):
        self.user_id = user_id
        self.backend = backend
        self.prefix = prefix

    def key(self, key: StorageKey | str) -> str:
        return scoped_key(self.prefix, self.user_id, key)

    def _read(self, key: StorageKey) -> str | None:
        try:
            return self.backend.get(self.key(key))
        except SQLAlchemyError as e:
            log.debug("local_store_read_failed", key=key.value, error=str(e))
            return None

    def _decode(self, key: StorageKey, adapter: TypeAdapter, empty: Any) -> Any:
        raw = self._read(key)
        if not raw:
            return empty
        try:
            return adapter.validate_json(raw)
        except ValidationError:
            log.debug("local_store_decode_failed", key=key.value)
            return empty

    def _write_json(self, key: StorageKey, adapter: TypeAdapter, value: Any) -> None:
        self.backend.set(self.key(key), adapter.dump_json(value).decode())

    def _write_flag(self, key: StorageKey, value: bool) -> None:
        self.backend.set(self.key(key), "true" if value else "false")

    # ─── Getters ─────────────────────────────────────────────────────────────

    def get_positions(self) -> Dict[str, Position]:
        return self._decode(StorageKey.POSITIONS, _positions_adapter, {})

    def get_filters(self) -> List[str]:
        return self._decode(StorageKey.FILTERS, _string_list_adapter, [])

    def get_hidden_tables(self) -> List[str]:
        return self._decode(StorageKey.HIDDEN_DBS, _string_list_adapter, [])

    def get_custom_colors(self) -> Dict[str, str]:
        return self._decode(StorageKey.CUSTOM_COLORS, _colors_adapter, {})

    def get_hide_isolated(self) -> bool:
        # Only the literal "true" counts
        return self._read(StorageKey.ISOLATED) == "true"

    def get_onboarding_seen(self) -> bool:
        return self._read(StorageKey.ONBOARDING) == "true"

    def get_provider_token(self) -> str | None:
        return self._read(StorageKey.NOTION_TOKEN) or None

    # ─── Setters ─────────────────────────────────────────────────────────────

    def set_positions(self, positions: Mapping[str, Position]) -> None:
        self._write_json(StorageKey.POSITIONS, _positions_adapter, dict(positions))

    def set_filters(self, filters: Iterable[str]) -> None:
        self._write_json(StorageKey.FILTERS, _string_list_adapter, sorted(filters))

    def set_hidden_tables(self, table_ids: Iterable[str]) -> None:
        self._write_json(StorageKey.HIDDEN_DBS, _string_list_adapter, sorted(table_ids))

    def set_custom_colors(self, colors: Mapping[str, str]) -> None:
        self._write_json(StorageKey.CUSTOM_COLORS, _colors_adapter, dict(colors))

    def set_hide_isolated(self, value: bool) -> None:
        self._write_flag(StorageKey.ISOLATED, value)

    def set_onboarding_seen(self, value: bool = True) -> None:
        self._write_flag(StorageKey.ONBOARDING, value)

    def set_provider_token(self, token: str | None) -> None:
        """None removes the key instead of storing a sentinel."""
        if token is None:
            self.backend.remove(self.key(StorageKey.NOTION_TOKEN))
        else:
            self.backend.set(self.key(StorageKey.NOTION_TOKEN), token)

    def save_all(
        self,
        *,
        positions: Mapping[str, Position],
        custom_colors: Mapping[str, str],
        filters: Iterable[str],
        hidden_tables: Iterable[str],
        hide_isolated: bool,
        provider_token: str | None,
    ) -> None:
        """Persist the complete customisation snapshot in one call."""
        self.set_positions(positions)
        self.set_custom_colors(custom_colors)
        self.set_filters(filters)
        self.set_hidden_tables(hidden_tables)
        self.set_hide_isolated(hide_isolated)
        self.set_provider_token(provider_token)


def open_store(user_id: str, settings: Settings | None = None) -> ScopedLocalStore:
    """Store for `user_id` on the configured SQL cache."""
    settings = settings or get_settings()
    return ScopedLocalStore(user_id, SqlBackend(settings.local_store_url), prefix=settings.app_prefix)
