# cloud_sync.py
"""
Cloud sync client: reconciles the local store with one user_graph_data row per user.

Writes run as a small state machine:

    PRIMARY --fail/timeout--> FALLBACK --401 expired--> REFRESH --> FALLBACK_RETRY
       |                         |                         |              |
      DONE                 DONE / FAILED                FAILED      DONE / FAILED

PRIMARY goes through the managed PostgREST client with a short timeout.
FALLBACK is a direct REST call on a fresh connection with the session token as
bearer (the anon key when there is none). A stale session is refreshed at most
once. Reads try the same two paths and degrade to None; cloud state is never
required for the app to work.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol
from urllib.parse import quote

import httpx
import structlog
from postgrest import AsyncPostgrestClient
from pydantic import ValidationError

from linka.config import Settings, get_settings
from linka.errors import LinkaError, NetworkError, SessionExpired, SyncFailed
from linka.models.sync import CLOUD_COLUMNS, CloudSyncPayload, CloudSyncRecord, PlanTier

log = structlog.get_logger(__name__)

SessionRefresher = Callable[[], Awaitable[str | None]]

EXPIRED_JWT_CODE = "PGRST303"


# ─────────────────────────────────────────────────────────────────────────────
# Primary (managed client) path
# ─────────────────────────────────────────────────────────────────────────────

class PrimaryClient(Protocol):
    async def upsert(self, table: str, record: dict, session_token: str | None) -> None: ...

    async def select_one(
        self, table: str, user_id: str, columns: str, session_token: str | None
    ) -> dict | None: ...


class PostgrestPrimary:
    """Managed client path backed by postgrest-py."""

    def __init__(self, settings: Settings):
        self._anon_key = settings.storage_anon_key
        self._client = AsyncPostgrestClient(
            settings.rest_url,
            headers={"apikey": settings.storage_anon_key},
        )

    def _authorize(self, session_token: str | None) -> None:
        # Shared client: a call without a session goes out with the anon bearer
        token = session_token or self._anon_key
        if token:
            self._client.auth(token)
        else:
            self._client.session.headers.pop("Authorization", None)

    async def upsert(self, table: str, record: dict, session_token: str | None) -> None:
        self._authorize(session_token)
        await self._client.from_(table).upsert(record).execute()

    async def select_one(
        self, table: str, user_id: str, columns: str, session_token: str | None
    ) -> dict | None:
        self._authorize(session_token)
        response = await self._client.from_(table).select(columns).eq("id", user_id).maybe_single().execute()
        return response.data if response is not None else None

    async def aclose(self) -> None:
        await self._client.aclose()


# ─────────────────────────────────────────────────────────────────────────────
# Write state machine
# ─────────────────────────────────────────────────────────────────────────────

class Step(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    REFRESH = "refresh"
    FALLBACK_RETRY = "fallback_retry"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STEPS = (Step.DONE, Step.FAILED)


@dataclass
class WriteAttempt:
    user_id: str
    record: dict
    token: str | None
    step: Step = Step.PRIMARY
    error: LinkaError | None = None
    trail: list[Step] = field(default_factory=list)


def is_expired_token_response(response: httpx.Response) -> bool:
    """401 whose body says the JWT expired (message text or PostgREST code)."""
    if response.status_code != 401:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    message = str(body.get("message") or "")
    return "expired" in message.lower() or body.get("code") == EXPIRED_JWT_CODE


class CloudSyncClient:
    def __init__(
        self,
        settings: Settings | None = None,
        primary: PrimaryClient | None = None,
        refresh_session: SessionRefresher | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.primary = primary if primary is not None else PostgrestPrimary(self.settings)
        self.refresh_session = refresh_session
        self._http = http_client
        self._handlers: dict[Step, Callable[[WriteAttempt], Awaitable[Step]]] = {
            Step.PRIMARY: self.attempt_primary,
            Step.FALLBACK: self.attempt_fallback,
            Step.REFRESH: self.attempt_refresh,
            Step.FALLBACK_RETRY: self.attempt_fallback,
        }

    @asynccontextmanager
    async def _rest(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout) as client:
                yield client

    def rest_headers(self, token: str | None) -> dict[str, str]:
        return {
            "apikey": self.settings.storage_anon_key,
            "Authorization": f"Bearer {token or self.settings.storage_anon_key}",
        }

    # ─── Public API ──────────────────────────────────────────────────────────

    async def sync_to_cloud(
        self,
        user_id: str,
        payload: CloudSyncPayload,
        session_token: str | None = None,
    ) -> WriteAttempt:
        """
        Upsert the complete payload for `user_id`.

        Raises:
            SessionExpired: the session could not be refreshed, or the retry failed
            SyncFailed: the REST endpoint rejected the write
            NetworkError: the REST endpoint was unreachable
        """
        attempt = WriteAttempt(user_id=user_id, record=payload.to_record(user_id), token=session_token)
        while attempt.step not in TERMINAL_STEPS:
            attempt.trail.append(attempt.step)
            attempt.step = await self._handlers[attempt.step](attempt)

        if attempt.step is Step.FAILED:
            log.warning("cloud_write_failed", user_id=user_id, trail=[s.value for s in attempt.trail])
            raise attempt.error
        log.info("cloud_write_ok", user_id=user_id, trail=[s.value for s in attempt.trail])
        return attempt

    async def fetch_cloud_state(self, user_id: str, session_token: str | None = None) -> CloudSyncRecord | None:
        """Best-effort read. Any failure yields None and is never raised."""
        columns = ",".join(CLOUD_COLUMNS)
        data: Any = None

        try:
            data = await asyncio.wait_for(
                self.primary.select_one(self.settings.storage_table, user_id, columns, session_token),
                timeout=self.settings.primary_read_timeout,
            )
        except Exception as e:
            log.debug("cloud_read_primary_failed", user_id=user_id, error=repr(e))

        if not data:
            data = await self._read_first_row(self.settings.storage_table, user_id, columns, session_token)

        if not data:
            return None
        try:
            return CloudSyncRecord.model_validate(data)
        except ValidationError:
            log.info("cloud_record_invalid", user_id=user_id)
            return None

    async def fetch_plan_tier(self, user_id: str, session_token: str | None = None) -> PlanTier | None:
        """The plan recorded in profiles, or None when unknown (the caller keeps its current tier)."""
        row = await self._read_first_row(self.settings.profiles_table, user_id, "plan_type", session_token)
        if not row or not row.get("plan_type"):
            return None
        try:
            return PlanTier(row["plan_type"])
        except ValueError:
            log.info("unknown_plan_type", user_id=user_id, plan_type=row["plan_type"])
            return None

    # ─── Transitions ─────────────────────────────────────────────────────────

    async def attempt_primary(self, attempt: WriteAttempt) -> Step:
        try:
            await asyncio.wait_for(
                self.primary.upsert(self.settings.storage_table, attempt.record, attempt.token),
                timeout=self.settings.primary_write_timeout,
            )
        except Exception as e:
            # Any primary failure, hang included, moves on to the direct path
            log.info("cloud_write_primary_failed", user_id=attempt.user_id, error=repr(e))
            return Step.FALLBACK
        return Step.DONE

    async def attempt_fallback(self, attempt: WriteAttempt) -> Step:
        retrying = attempt.step is Step.FALLBACK_RETRY
        try:
            response = await self._rest_upsert(attempt.record, attempt.token)
        except httpx.HTTPError as e:
            if retrying:
                attempt.error = SessionExpired(details={"error": str(e)})
            else:
                attempt.error = NetworkError(f"Could not reach cloud storage: {e}")
            return Step.FAILED

        if response.is_success:
            return Step.DONE

        if retrying:
            attempt.error = SessionExpired(status=response.status_code, details={"body": response.text})
            return Step.FAILED

        if is_expired_token_response(response):
            return Step.REFRESH

        attempt.error = SyncFailed.from_response(response.status_code, response.text, "Direct write failed")
        return Step.FAILED

    async def attempt_refresh(self, attempt: WriteAttempt) -> Step:
        if self.refresh_session is None:
            attempt.error = SessionExpired()
            return Step.FAILED
        try:
            token = await asyncio.wait_for(self.refresh_session(), timeout=self.settings.refresh_timeout)
        except Exception as e:
            log.warning("session_refresh_failed", user_id=attempt.user_id, error=repr(e))
            attempt.error = SessionExpired()
            return Step.FAILED

        if not token:
            attempt.error = SessionExpired()
            return Step.FAILED
        attempt.token = token
        return Step.FALLBACK_RETRY

    # ─── REST helpers ────────────────────────────────────────────────────────

    async def _rest_upsert(self, record: dict, token: str | None) -> httpx.Response:
        headers = {
            **self.rest_headers(token),
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates",
        }
        async with self._rest() as client:
            return await client.post(
                f"{self.settings.rest_url}/{self.settings.storage_table}",
                json=record,
                headers=headers,
                timeout=self.settings.http_timeout,
            )

    async def _read_first_row(
        self, table: str, user_id: str, columns: str, token: str | None
    ) -> dict | None:
        url = f"{self.settings.rest_url}/{table}?id=eq.{quote(user_id, safe='')}&select={columns}"
        try:
            async with self._rest() as client:
                response = await client.get(url, headers=self.rest_headers(token), timeout=self.settings.http_timeout)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.debug("cloud_read_rest_failed", table=table, user_id=user_id, error=str(e))
            return None
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return None
