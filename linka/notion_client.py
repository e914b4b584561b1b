# notion_client.py - HTTP client for the external schema provider
# Only the search endpoint is used; results are normalized by schema_adapter.

import httpx
import structlog

from linka.config import Settings, get_settings
from linka.errors import InvalidCredential, NetworkError, SyncFailed

log = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

# Connection limits for pooling
LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=5)

# Module-level shared client (initialized lazily, reused across requests)
_client: httpx.AsyncClient | None = None


async def get_client() -> httpx.AsyncClient:
    """Get or create the shared async HTTP client with connection pooling."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(get_settings().http_timeout),
            limits=LIMITS,
        )
    return _client


async def close_client() -> None:
    """Close the shared HTTP client (call on app shutdown)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def provider_headers(provider_token: str, settings: Settings) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {provider_token}",
        "Notion-Version": settings.notion_version,
        "Content-Type": "application/json",
    }


def error_message(response: httpx.Response) -> str:
    """Best-effort extraction of a human message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return response.reason_phrase or response.text


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

async def search_databases(
    provider_token: str,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[dict]:
    """
    List every database object the integration can see.

    Args:
        provider_token: The user's integration token
        settings: Overrides the process settings (tests)
        client: Overrides the shared client (tests)

    Returns:
        The raw `results` array from the provider

    Raises:
        InvalidCredential: the provider answered 401
        SyncFailed: any other non-2xx answer, or a 2xx body without a results list
        NetworkError: transport failure or timeout
    """
    settings = settings or get_settings()
    client = client or await get_client()
    body = {
        "filter": {"value": "database", "property": "object"},
        "page_size": min(settings.schema_page_size, MAX_PAGE_SIZE),
    }

    try:
        response = await client.post(
            f"{settings.notion_api_url.rstrip('/')}/search",
            json=body,
            headers=provider_headers(provider_token, settings),
            timeout=settings.http_timeout,
        )
    except httpx.HTTPError as e:
        log.warning("provider_search_network_error", error=str(e))
        raise NetworkError(f"Could not reach the schema provider: {e}") from e

    if response.status_code == 401:
        log.info("provider_token_rejected")
        raise InvalidCredential()

    if not response.is_success:
        message = error_message(response)
        log.warning("provider_search_failed", status=response.status_code, message=message)
        raise SyncFailed(
            f"Provider API error ({response.status_code}): {message}",
            status=response.status_code,
            details={"message": message},
        )

    try:
        body = response.json()
    except ValueError:
        log.warning("provider_search_unreadable", status=response.status_code)
        raise SyncFailed(
            f"Provider API error ({response.status_code}): response is not JSON",
            status=response.status_code,
            details={"body": response.text[:500]},
        )

    results = body.get("results") if isinstance(body, dict) else None
    if not isinstance(results, list):
        log.warning("provider_search_unexpected_shape", status=response.status_code)
        raise SyncFailed(
            f"Provider API error ({response.status_code}): unexpected response shape",
            status=response.status_code,
        )

    log.debug("provider_search_ok", count=len(results))
    return results
