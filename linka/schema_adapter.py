# schema_adapter.py
"""
Schema adapter: turns the provider's heterogeneous database objects into
RawTable / RawRelation lists.

The normalisation functions are pure and shared by the client-side fetch and
the server-side proxy endpoint. Nothing here retries; retry policy belongs to
the caller.
"""

from typing import Any, Iterable, List

import httpx
import structlog
from pydantic import ValidationError

from linka import notion_client
from linka.colors import get_next_color
from linka.config import Settings, get_settings
from linka.errors import (
    SESSION_UNAUTHORIZED_DETAIL,
    InvalidCredential,
    NetworkError,
    SessionExpired,
    SyncFailed,
)
from linka.models.schema import PropertyKind, RawRelation, RawTable, SchemaSnapshot, TableProperty

log = structlog.get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Normalisation
# ─────────────────────────────────────────────────────────────────────────────

def parse_title(raw: dict, placeholder: str) -> str:
    """First plain-text entry of the title array, or the placeholder."""
    title = raw.get("title")
    if isinstance(title, list) and title and isinstance(title[0], dict) and title[0].get("plain_text"):
        return title[0]["plain_text"]
    return placeholder


def parse_icon(icon: dict | None) -> str:
    """Emoji icons become the emoji itself, external/file icons their URL."""
    if not isinstance(icon, dict):
        return ""
    icon_type = icon.get("type")
    if icon_type == "emoji":
        return icon.get("emoji") or ""
    if icon_type in ("external", "file"):
        return (icon.get(icon_type) or {}).get("url") or ""
    return ""


def parse_property(name: str, raw: dict) -> TableProperty:
    type_name = raw.get("type") or PropertyKind.UNKNOWN.value
    target = None
    if type_name == PropertyKind.RELATION.value:
        relation = raw.get("relation")
        target = relation.get("database_id") if isinstance(relation, dict) else None
    return TableProperty(name=raw.get("name") or name, type=type_name, relation_target=target)


def parse_properties(raw_properties: Any) -> List[TableProperty]:
    if not isinstance(raw_properties, dict):
        return []
    return [
        parse_property(name, prop)
        for name, prop in raw_properties.items()
        if isinstance(prop, dict)
    ]


def parse_database(raw: dict, index: int, placeholder: str = "Untitled") -> RawTable:
    """
    Build a RawTable from one search result.

    The colour comes from the result index, so it can change between syncs
    if the provider reorders its results.
    """
    return RawTable(
        id=raw["id"],
        title=parse_title(raw, placeholder),
        properties=parse_properties(raw.get("properties")),
        color=get_next_color(index),
        url=raw.get("url"),
        icon=parse_icon(raw.get("icon")),
        created_time=raw.get("created_time"),
        last_edited_time=raw.get("last_edited_time"),
    )


def extract_relations(raw: dict) -> List[RawRelation]:
    """One relation per property typed "relation" that names a target database."""
    return [
        RawRelation(source=raw["id"], target=prop.relation_target, label=prop.name)
        for prop in parse_properties(raw.get("properties"))
        if prop.is_relation
    ]


def normalize_search_results(results: Iterable[Any], placeholder: str = "Untitled") -> SchemaSnapshot:
    """Results that are not objects with an id are skipped; the colour index still advances."""
    databases: List[RawTable] = []
    relations: List[RawRelation] = []
    for index, raw in enumerate(results):
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
            log.debug("search_result_skipped", index=index)
            continue
        databases.append(parse_database(raw, index, placeholder))
        relations.extend(extract_relations(raw))
    return SchemaSnapshot(databases=databases, relations=relations)


# ─────────────────────────────────────────────────────────────────────────────
# Fetch
# ─────────────────────────────────────────────────────────────────────────────

async def fetch_via_proxy(
    provider_token: str,
    session_token: str,
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> SchemaSnapshot:
    """Ask the server-side proxy to call the provider, so the token never reaches the renderer."""
    client = client or await notion_client.get_client()
    try:
        response = await client.post(
            settings.schema_proxy_url,
            json={"notion_token": provider_token},
            headers={
                "Authorization": f"Bearer {session_token}",
                "Content-Type": "application/json",
            },
            timeout=settings.http_timeout,
        )
    except httpx.HTTPError as e:
        log.warning("schema_proxy_network_error", error=str(e))
        raise NetworkError(f"Could not reach the schema proxy: {e}") from e

    if response.status_code == 401:
        message = notion_client.error_message(response)
        if message == SESSION_UNAUTHORIZED_DETAIL:
            # The proxy rejected the session bearer, not the integration token
            log.info("schema_proxy_session_rejected")
            raise SessionExpired()
        raise InvalidCredential(message)

    if not response.is_success:
        message = notion_client.error_message(response)
        log.warning("schema_proxy_failed", status=response.status_code, message=message)
        raise SyncFailed(
            f"Sync error ({response.status_code}): {message}",
            status=response.status_code,
            details={"message": message},
        )

    try:
        return SchemaSnapshot.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        log.warning("schema_proxy_unreadable", status=response.status_code)
        raise SyncFailed(
            f"Sync error ({response.status_code}): unexpected response from the schema proxy",
            status=response.status_code,
            details={"error": str(e)},
        ) from e


async def fetch_schema(
    provider_token: str,
    session_token: str | None = None,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> SchemaSnapshot:
    """
    Fetch and normalise the user's databases.

    Goes through the proxy when one is configured and a session token is
    available, otherwise straight to the provider.
    """
    settings = settings or get_settings()
    if not provider_token:
        raise InvalidCredential("Missing integration token.", status=None)

    if settings.schema_proxy_url and session_token:
        snapshot = await fetch_via_proxy(provider_token, session_token, settings, client)
    else:
        results = await notion_client.search_databases(provider_token, settings, client)
        try:
            snapshot = normalize_search_results(results, settings.untitled_placeholder)
        except ValidationError as e:
            raise SyncFailed(f"Provider API error: malformed database object ({e.error_count()} errors)") from e

    log.info("schema_fetched", tables=len(snapshot.databases), relations=len(snapshot.relations))
    return snapshot
