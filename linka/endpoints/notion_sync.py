# notion_sync.py
"""
Server-side schema proxy. The browser sends the provider token here instead of
calling the provider itself; the response is already normalized into tables
and relations.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from linka import notion_client
from linka.config import Settings, get_settings
from linka.errors import InvalidCredential, NetworkError, SyncFailed
from linka.models.schema import SchemaSnapshot
from linka.schema_adapter import normalize_search_results
from linka.security import TokenData, get_current_user

log = structlog.get_logger(__name__)

router = APIRouter(tags=["notion"])

# ─────────────────────────────────────────────────────────────────────────────
# Documentation & Error Helpers
# ─────────────────────────────────────────────────────────────────────────────

class ErrorResponse(BaseModel):
    detail: str

RESP_ERRORS = {
    400: {"model": ErrorResponse, "description": "Bad Request"},
    401: {"model": ErrorResponse, "description": "Unauthorized or invalid integration token"},
    502: {"model": ErrorResponse, "description": "Provider error"},
}


class NotionSyncRequest(BaseModel):
    notion_token: str = Field("", description="The user's integration token")


# ─────────────────────────────────────────────────────────────────────────────
# Endpoint
# ─────────────────────────────────────────────────────────────────────────────

@router.post(
    "/notion-sync",
    response_model=SchemaSnapshot,
    response_model_by_alias=True,
    responses=RESP_ERRORS,
    summary="Fetch and normalize the user's databases",
)
async def notion_sync(
    body: NotionSyncRequest,
    current_user: Annotated[TokenData, Depends(get_current_user)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SchemaSnapshot:
    if not body.notion_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing notion_token in request body",
        )

    try:
        results = await notion_client.search_databases(body.notion_token, settings)
    except InvalidCredential as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)
    except (SyncFailed, NetworkError) as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    try:
        snapshot = normalize_search_results(results, settings.untitled_placeholder)
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Provider API error: malformed database object",
        )

    log.info(
        "notion_sync_served",
        user_id=current_user.user_id,
        tables=len(snapshot.databases),
        relations=len(snapshot.relations),
    )
    return snapshot
