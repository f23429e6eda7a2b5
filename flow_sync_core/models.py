"""
Core data models for the visual graph.

This module defines the visual side of the synchronization: nodes with a position
and named handles, edges between handles, and the graph that owns both.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Tuple, Optional, Union
from enum import Enum
import uuid

from .exceptions import ValidationError
from .ir import (
    IRNode, NodeKind, NodeAttributes, SourceRange, UnknownAttrs, FunctionAttrs,
    ObjectAttrs,
)

OUTPUT_HANDLE = "output"
CONTAINS = "contains"


class HandleDirection(Enum):
    """Which end of an edge a handle accepts."""
    SOURCE = "source"
    TARGET = "target"


@dataclass(frozen=True)
class Handle:
    """A named connection point on a visual node."""
    name: str
    direction: HandleDirection = HandleDirection.TARGET


# Fixed input handles per kind; object and function handles depend on the node data
_STATIC_INPUTS: Dict[NodeKind, Tuple[str, ...]] = {
    NodeKind.BINARY_OP: ("lhs", "rhs"),
    NodeKind.CONDITIONAL: ("test", "whenTrue", "whenFalse"),
    NodeKind.CONSOLE: ("value",),
    NodeKind.PROPERTY_ACCESS: ("obj",),
    NodeKind.VARIABLE: ("value", "type"),
    NodeKind.CALL: ("func",),
}


@dataclass
class VisualNode:
    """Represents one IR node placed on the canvas."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    kind: Union[NodeKind, str] = NodeKind.VARIABLE
    position: Tuple[float, float] = (0.0, 0.0)  # relative to the parent when parent_id is set
    data: NodeAttributes = field(default_factory=UnknownAttrs)
    parent_id: Optional[str] = None
    source_range: Optional[SourceRange] = None

    def __post_init__(self):
        known = NodeKind.lookup(self.kind)
        if known is not None:
            self.kind = known

    @property
    def kind_name(self) -> str:
        return self.kind.value if isinstance(self.kind, NodeKind) else str(self.kind)

    @property
    def inputs(self) -> List[Handle]:
        """Input handles for this node's kind and current data."""
        names = list(_STATIC_INPUTS.get(self.kind, ()))
        if self.kind == NodeKind.CALL:
            arg_count = len(getattr(self.data, 'args', []))
            expected = len(getattr(self.data, 'expected_params', []))
            names.extend(f"arg{index}" for index in range(max(arg_count, expected) + 1))
        elif self.kind == NodeKind.OBJECT and isinstance(self.data, ObjectAttrs):
            names.extend(f"prop-{index}" for index in range(len(self.data.properties)))
        elif self.kind == NodeKind.FUNCTION and isinstance(self.data, FunctionAttrs):
            names.extend(f"param-{index}" for index in range(len(self.data.parameters)))
            names.append("return")
        return [Handle(name, HandleDirection.TARGET) for name in names]

    @property
    def outputs(self) -> List[Handle]:
        return [Handle(OUTPUT_HANDLE, HandleDirection.SOURCE)]

    def get_input_handle(self, name: str) -> Optional[Handle]:
        """Get an input handle by name."""
        for handle in self.inputs:
            if handle.name == name:
                return handle
        return None

    def to_ir(self) -> IRNode:
        return IRNode(
            id=self.id,
            kind=self.kind,
            attributes=self.data,
            parent_id=self.parent_id,
            source_range=self.source_range,
        )


@dataclass
class VisualEdge:
    """Represents a connection between two visual nodes."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_node_id: str = ""
    source_handle: Optional[str] = OUTPUT_HANDLE
    target_node_id: str = ""
    target_handle: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_containment(self) -> bool:
        return self.data.get('relation') == CONTAINS


@dataclass
class VisualGraph:
    """The nodes and edges currently shown on the canvas."""
    nodes: Dict[str, VisualNode] = field(default_factory=dict)
    edges: List[VisualEdge] = field(default_factory=list)

    def add_node(self, node: VisualNode) -> str:
        """Add a node to the graph and return its ID."""
        self.nodes[node.id] = node
        return node.id

    def get_node(self, node_id: str) -> Optional[VisualNode]:
        return self.nodes.get(node_id)

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and all its edges from the graph."""
        if node_id not in self.nodes:
            return False

        self.edges = [
            edge for edge in self.edges
            if edge.source_node_id != node_id and edge.target_node_id != node_id
        ]

        del self.nodes[node_id]
        return True

    def add_edge(self, edge: VisualEdge) -> bool:
        """Add an edge; both endpoints must already be in the graph."""
        if edge.source_node_id not in self.nodes:
            return False
        if edge.target_node_id not in self.nodes:
            return False
        self.edges = [existing for existing in self.edges if existing.id != edge.id]
        self.edges.append(edge)
        return True

    def get_edge(self, edge_id: str) -> Optional[VisualEdge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def remove_edge(self, edge_id: str) -> Optional[VisualEdge]:
        """Remove an edge and return it, or None when it is not in the graph."""
        edge = self.get_edge(edge_id)
        if edge is not None:
            self.edges.remove(edge)
        return edge

    def children(self, node_id: str) -> List[VisualNode]:
        return [node for node in self.nodes.values() if node.parent_id == node_id]

    def topology(self) -> Tuple[frozenset, frozenset]:
        """Node ids and parent links; layout only needs to rerun when these change."""
        return (
            frozenset(self.nodes),
            frozenset((node.id, node.parent_id) for node in self.nodes.values()),
        )

    def validate(self) -> List[ValidationError]:
        """Validate the graph and return any errors."""
        errors = []

        for node in self.nodes.values():
            if node.parent_id is not None and node.parent_id not in self.nodes:
                errors.append(ValidationError(
                    f"Node {node.id} references missing parent {node.parent_id}",
                    {'node_id': node.id},
                ))

        for edge in self.edges:
            if edge.source_node_id not in self.nodes:
                errors.append(ValidationError(
                    f"Edge references missing source node: {edge.source_node_id}",
                    {'edge_id': edge.id},
                ))
            if edge.target_node_id not in self.nodes:
                errors.append(ValidationError(
                    f"Edge references missing target node: {edge.target_node_id}",
                    {'edge_id': edge.id},
                ))

        return errors
