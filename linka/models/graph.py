# graph.py
"""
Graph models handed to the external layout/rendering engine.
Shapes follow the ReactFlow node/edge contract (camelCase on the wire).
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from linka.models.schema import TableProperty


class Position(BaseModel):
    x: float
    y: float


class GraphNodeData(BaseModel):
    """Payload rendered inside a table node. Relation counts are derived, never persisted."""
    label: str
    properties: List[TableProperty] = Field(default_factory=list)
    color: Optional[str] = None
    url: Optional[str] = None
    icon: Optional[str] = None
    created_time: Optional[str] = Field(None, alias="createdTime")
    last_edited_time: Optional[str] = Field(None, alias="lastEditedTime")
    property_count: int = Field(0, alias="propertyCount")
    outgoing_relations: int = Field(0, alias="outgoingRelations")
    incoming_relations: int = Field(0, alias="incomingRelations")

    model_config = ConfigDict(populate_by_name=True)


class GraphNode(BaseModel):
    id: str
    type: str = "database"
    position: Position
    data: GraphNodeData


class GraphEdge(BaseModel):
    id: str = Field(..., description="Unique within one build call")
    source: str
    target: str
    color: str
    label: Optional[str] = None
    animated: bool = True


class GraphModel(BaseModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)

    def positions(self) -> dict[str, Position]:
        return {node.id: node.position for node in self.nodes}
