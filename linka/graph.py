# graph.py
"""Graph model builder: RawTable/RawRelation + saved positions + colour overrides -> nodes/edges."""

import random
import uuid
from collections import Counter
from typing import Mapping, Sequence

from linka.colors import FALLBACK_EDGE_COLOR
from linka.models.graph import GraphEdge, GraphModel, GraphNode, GraphNodeData, Position
from linka.models.schema import RawRelation, RawTable

# Side of the square used to seed positions for the layout engine
SEED_AREA = 500.0


def seed_position(table_id: str) -> Position:
    """
    Pseudo-random point in the seed square, derived from the table id so two
    builds with the same inputs place a table identically.
    """
    rng = random.Random(table_id)
    return Position(x=rng.random() * SEED_AREA, y=rng.random() * SEED_AREA)


def edge_id(index: int) -> str:
    return f"e-{index}-{uuid.uuid4().hex[:9]}"


def build(
    tables: Sequence[RawTable],
    relations: Sequence[RawRelation],
    saved_positions: Mapping[str, Position] | None = None,
    custom_colors: Mapping[str, str] | None = None,
) -> GraphModel:
    saved_positions = saved_positions or {}
    custom_colors = custom_colors or {}

    outgoing = Counter(rel.source for rel in relations)
    incoming = Counter(rel.target for rel in relations)

    nodes = []
    for table in tables:
        saved = saved_positions.get(table.id)
        nodes.append(
            GraphNode(
                id=table.id,
                position=saved.model_copy() if saved else seed_position(table.id),
                data=GraphNodeData(
                    label=table.title,
                    properties=list(table.properties),
                    color=custom_colors.get(table.id) or table.color,
                    url=table.url,
                    icon=table.icon,
                    created_time=table.created_time,
                    last_edited_time=table.last_edited_time,
                    property_count=len(table.properties),
                    outgoing_relations=outgoing[table.id],
                    incoming_relations=incoming[table.id],
                ),
            )
        )

    table_colors = {table.id: table.color for table in tables}
    edges = [
        GraphEdge(
            id=edge_id(index),
            source=rel.source,
            target=rel.target,
            label=rel.label,
            color=custom_colors.get(rel.source) or table_colors.get(rel.source) or FALLBACK_EDGE_COLOR,
        )
        for index, rel in enumerate(relations)
    ]

    return GraphModel(nodes=nodes, edges=edges)


def restrict(model: GraphModel, visible_ids: set[str] | frozenset[str]) -> GraphModel:
    """Nodes in the visible set, and the edges whose both ends survive."""
    return GraphModel(
        nodes=[node for node in model.nodes if node.id in visible_ids],
        edges=[
            edge for edge in model.edges
            if edge.source in visible_ids and edge.target in visible_ids
        ],
    )
