# sync.py
"""
Models for persisted user customisation: the remote user_graph_data record,
the outgoing upsert payload, the derived visibility state and the session context.
"""

from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from linka.models.graph import Position


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"


class SessionContext(BaseModel):
    """Explicit per-session context passed to the engine instead of module-level caches."""
    user_id: str
    plan_tier: PlanTier = PlanTier.FREE
    has_provider_token: bool = False
    session_token: Optional[str] = None


class VisibilityState(BaseModel):
    """User-controlled visibility rules. Persisted through the local store and the cloud record."""
    selected_property_types: Set[str] = Field(default_factory=set)
    hidden_table_ids: Set[str] = Field(default_factory=set)
    hide_isolated: bool = False
    custom_colors: Dict[str, str] = Field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Remote record
# ─────────────────────────────────────────────────────────────────────────────

CLOUD_COLUMNS = ("id", "positions", "custom_colors", "filters", "hidden_dbs", "hide_isolated", "notion_token")


class CloudSyncRecord(BaseModel):
    """One row of user_graph_data. Every field except `id` is independently nullable."""
    id: str
    positions: Optional[Dict[str, Position]] = None
    custom_colors: Optional[Dict[str, str]] = None
    filters: Optional[List[str]] = None
    hidden_dbs: Optional[List[str]] = None
    hide_isolated: Optional[bool] = None
    notion_token: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class CloudSyncPayload(BaseModel):
    """
    Outgoing upsert body. Only fields that were explicitly set are sent, so an
    absent field never clears the remote value; an explicit None does.
    """
    positions: Optional[Dict[str, Position]] = None
    custom_colors: Optional[Dict[str, str]] = None
    filters: Optional[List[str]] = None
    hidden_dbs: Optional[List[str]] = None
    hide_isolated: Optional[bool] = None
    notion_token: Optional[str] = None

    def to_record(self, user_id: str) -> dict:
        body = {"id": user_id}
        body.update(self.model_dump(mode="json", exclude_unset=True))
        return body
