# filters.py
"""
Filter engine: which tables are visible right now.

`compute_visible` is a pure function of its inputs. `GraphFilters` holds the
mutable VisibilityState for a session, tracks whether it diverged from the last
cloud save, and memoises the derived set.
"""

from typing import Sequence

from linka.models.schema import RawRelation, RawTable
from linka.models.sync import PlanTier, VisibilityState

FREE_TIER_TABLE_LIMIT = 4


def compute_visible(
    tables: Sequence[RawTable],
    relations: Sequence[RawRelation],
    state: VisibilityState,
    plan_tier: PlanTier | str,
    has_provider_token: bool,
    limit: int = FREE_TIER_TABLE_LIMIT,
) -> frozenset[str]:
    """
    Apply, in this order: tier cap, property-type filter, manual hiding,
    isolated-table exclusion. The order decides which tables the cap keeps.
    """
    filtered = list(tables)

    # 1. Free tier cap, real data only. Demo data is never capped.
    if has_provider_token and PlanTier(plan_tier) is PlanTier.FREE and len(filtered) > limit:
        filtered = filtered[:limit]

    # 2. Property types
    if state.selected_property_types:
        filtered = [
            table for table in filtered
            if any(prop.type in state.selected_property_types for prop in table.properties)
        ]

    # 3. Manually hidden
    filtered = [table for table in filtered if table.id not in state.hidden_table_ids]

    # 4. Isolated tables
    if state.hide_isolated:
        connected = {rel.source for rel in relations} | {rel.target for rel in relations}
        filtered = [table for table in filtered if table.id in connected]

    return frozenset(table.id for table in filtered)


class GraphFilters:
    def __init__(self, state: VisibilityState | None = None, limit: int = FREE_TIER_TABLE_LIMIT):
        self.state = state or VisibilityState()
        self.limit = limit
        self.is_dirty = False
        self._memo_key: tuple | None = None
        self._memo_value: frozenset[str] = frozenset()

    @classmethod
    def from_store(cls, store, limit: int = FREE_TIER_TABLE_LIMIT) -> "GraphFilters":
        """Initial state as last persisted on this device."""
        return cls(
            VisibilityState(
                selected_property_types=set(store.get_filters()),
                hidden_table_ids=set(store.get_hidden_tables()),
                hide_isolated=store.get_hide_isolated(),
                custom_colors=store.get_custom_colors(),
            ),
            limit=limit,
        )

    def visible(
        self,
        tables: Sequence[RawTable],
        relations: Sequence[RawRelation],
        plan_tier: PlanTier | str,
        has_provider_token: bool,
    ) -> frozenset[str]:
        key = (
            tuple(tables),
            tuple(relations),
            frozenset(self.state.selected_property_types),
            frozenset(self.state.hidden_table_ids),
            self.state.hide_isolated,
            PlanTier(plan_tier),
            has_provider_token,
        )
        if key != self._memo_key:
            self._memo_value = compute_visible(
                tables, relations, self.state, plan_tier, has_provider_token, self.limit
            )
            self._memo_key = key
        return self._memo_value

    # ─── Mutators ────────────────────────────────────────────────────────────

    def _replace(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        self.is_dirty = True

    def toggle_filter(self, property_type: str) -> None:
        self._replace(selected_property_types=self.state.selected_property_types ^ {property_type})

    def toggle_hidden_table(self, table_id: str) -> None:
        self._replace(hidden_table_ids=self.state.hidden_table_ids ^ {table_id})

    def toggle_hide_isolated(self) -> None:
        self._replace(hide_isolated=not self.state.hide_isolated)

    def clear_filters(self) -> None:
        """Reset property filters and the isolation toggle. Hidden tables stay hidden."""
        self._replace(selected_property_types=set(), hide_isolated=False)

    def set_custom_color(self, table_id: str, color: str) -> None:
        self._replace(custom_colors={**self.state.custom_colors, table_id: color})

    def reset_custom_color(self, table_id: str) -> None:
        colors = dict(self.state.custom_colors)
        colors.pop(table_id, None)
        self._replace(custom_colors=colors)

    def replace_state(self, state: VisibilityState) -> None:
        """Adopt a state restored from storage without marking it dirty."""
        self.state = state
