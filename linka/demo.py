# demo.py
"""Demonstration workspace shown until the user connects a real one. Never subject to the tier cap."""

from typing import List

from linka.colors import NODE_COLORS
from linka.models.schema import RawRelation, RawTable, TableProperty

DEMO_CREATED = "2024-01-01T00:00:00.000Z"


def _table(index: int, title: str, icon: str, slug: str, *props: tuple[str, str]) -> RawTable:
    return RawTable(
        id=str(index + 1),
        title=title,
        properties=[TableProperty(name=name, type=type_name) for name, type_name in props],
        color=NODE_COLORS[index],
        icon=icon,
        url=f"https://notion.so/{slug}",
        created_time=DEMO_CREATED,
        last_edited_time=DEMO_CREATED,
    )


def demo_tables() -> List[RawTable]:
    return [
        _table(0, "Users", "👤", "users", ("Name", "title"), ("Email", "email")),
        _table(1, "Tasks", "✅", "tasks", ("Title", "title"), ("Status", "status")),
        _table(2, "Comments", "💬", "comments", ("Text", "rich_text")),
        _table(3, "Tags", "🏷️", "tags", ("Name", "title")),
        _table(4, "Files", "📁", "files", ("url", "url")),
        _table(5, "Logs", "📜", "logs", ("Event", "rich_text")),
        _table(6, "Config", "⚙️", "config", ("key", "title"), ("value", "rich_text")),
        _table(7, "Notifications", "🔔", "notifications", ("Message", "rich_text")),
    ]


# Users <-> Notifications is a mutual pair and is kept as two entries
DEMO_RELATIONS: List[RawRelation] = [
    RawRelation(source="1", target="2"),
    RawRelation(source="2", target="3"),
    RawRelation(source="2", target="4"),
    RawRelation(source="2", target="5"),
    RawRelation(source="1", target="8"),
    RawRelation(source="8", target="1"),
]
