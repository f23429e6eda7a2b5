"""
Graph Adapter between IR nodes and the visual graph.

Converts parsed IR into visual nodes and back, decides what drawing an edge into a
named handle means for the target node's attributes, and merges freshly parsed
structure into the graph the user has already arranged.
"""

import logging
from typing import Dict, List, Optional, Tuple, Any

from .exceptions import ValidationError
from .ir import (
    IRNode, NodeKind, SourceRange, UnknownAttrs, KIND_ATTRIBUTES, attributes_to_dict,
    attributes_from_dict, children_index,
)
from .models import VisualGraph, VisualNode, VisualEdge, OUTPUT_HANDLE, CONTAINS
from .naming import materialized_name
from .typescript_generator import render_literal

Position = Tuple[float, float]


class GraphAdapter:
    """Maps IR nodes to visual nodes and applies connection semantics."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_visual(self, nodes: List[IRNode],
                  positions: Optional[Dict[str, Position]] = None) -> VisualGraph:
        """Build a visual graph with one node per IR node and one edge per parent link."""
        positions = positions or {}
        graph = VisualGraph()
        for node in nodes:
            graph.add_node(VisualNode(
                id=node.id,
                kind=node.kind,
                position=positions.get(node.id, (0.0, 0.0)),
                data=node.attributes,
                parent_id=node.parent_id,
                source_range=node.source_range,
            ))
        graph.edges = self.containment_edges(graph)
        return graph

    def to_ir(self, graph: VisualGraph) -> List[IRNode]:
        """Convert the graph back to IR, dropping parent links that no longer resolve."""
        nodes = []
        for visual in graph.nodes.values():
            node = visual.to_ir()
            if node.parent_id is not None and node.parent_id not in graph.nodes:
                self.logger.debug("Dropping dangling parent %s of node %s", node.parent_id, node.id)
                node.parent_id = None
            nodes.append(node)
        return nodes

    def containment_edges(self, graph: VisualGraph) -> List[VisualEdge]:
        edges = []
        for node in graph.nodes.values():
            parent = graph.nodes.get(node.parent_id) if node.parent_id else None
            if parent is None:
                continue
            target_handle = None
            if parent.kind == NodeKind.FUNCTION and node.kind == NodeKind.BINARY_OP:
                target_handle = "return"
            edges.append(VisualEdge(
                id=f"{node.id}->{parent.id}",
                source_node_id=node.id,
                source_handle=OUTPUT_HANDLE,
                target_node_id=parent.id,
                target_handle=target_handle,
                data={'relation': CONTAINS},
            ))
        return edges

    def expression_text(self, node: VisualNode) -> Optional[str]:
        """Text a node contributes when its output is connected somewhere."""
        data = node.data
        if node.kind in (NodeKind.VARIABLE, NodeKind.INTERFACE):
            return data.name or None
        if node.kind == NodeKind.LITERAL:
            return render_literal(data)
        if node.kind in (NodeKind.FUNCTION, NodeKind.API):
            return f"{data.name}()" if data.name else None
        if node.kind == NodeKind.IMPORT:
            return data.default or data.namespace or (data.named[0] if data.named else None)
        if node.kind in (NodeKind.BINARY_OP, NodeKind.CALL, NodeKind.CONSOLE,
                         NodeKind.PROPERTY_ACCESS, NodeKind.CONDITIONAL, NodeKind.OBJECT):
            return materialized_name(node.to_ir())
        return None

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self, graph: VisualGraph, edge: VisualEdge) -> bool:
        """Add ``edge`` and write the source's expression into the target handle.

        Returns True when an IR attribute or parent link changed.
        """
        if not graph.add_edge(edge):
            self.logger.debug("Ignoring edge %s with a missing endpoint", edge.id)
            return False

        source = graph.nodes[edge.source_node_id]
        target = graph.nodes[edge.target_node_id]
        if not self._has_typed_data(source) or not self._has_typed_data(target):
            self.logger.debug("Handle mismatch: edge %s touches a node of unknown kind", edge.id)
            return False

        changed = self._apply_handle(source, target, edge.target_handle or "")
        if changed:
            self._invalidate_bodies(graph, target.id, include_self=True)
        else:
            self.logger.debug("Handle mismatch: %s -> %s.%s changed nothing",
                              source.kind_name, target.kind_name, edge.target_handle)
        return changed

    def disconnect(self, graph: VisualGraph, edge_id: str) -> bool:
        """Remove an edge; attributes it wrote stay until overwritten."""
        return graph.remove_edge(edge_id) is not None

    def update_node_data(self, graph: VisualGraph, node_id: str, **changes: Any) -> bool:
        """Apply an explicit attribute edit to one node."""
        node = graph.nodes.get(node_id)
        if node is None:
            return False

        kind = NodeKind.lookup(node.kind)
        if kind is None or isinstance(node.data, UnknownAttrs):
            raw = dict(node.data.raw) if isinstance(node.data, UnknownAttrs) else {}
            raw.update(changes)
            node.data = attributes_from_dict(node.kind, raw)
        else:
            current = attributes_to_dict(node.data)
            unknown = set(changes) - set(current)
            if unknown:
                raise ValidationError(
                    f"Unknown {kind.value} attribute(s): {', '.join(sorted(unknown))}",
                    {'node_id': node_id, 'fields': sorted(unknown)},
                )
            current.update(changes)
            node.data = attributes_from_dict(kind, current)

        self._invalidate_bodies(graph, node.parent_id, include_self=True)
        return True

    def _has_typed_data(self, node: VisualNode) -> bool:
        kind = NodeKind.lookup(node.kind)
        return kind is not None and isinstance(node.data, KIND_ATTRIBUTES[kind])

    def _apply_handle(self, source: VisualNode, target: VisualNode, handle: str) -> bool:
        data = target.data

        if target.kind == NodeKind.FUNCTION:
            if handle == "return" and source.kind == NodeKind.BINARY_OP:
                if source.parent_id == target.id:
                    return False
                source.parent_id = target.id
                return True
            # param-N handles only order the canvas
            return False

        if target.kind == NodeKind.CALL and handle == "func":
            if source.kind not in (NodeKind.FUNCTION, NodeKind.API):
                return False
            data.func_name = source.data.name
            if source.kind == NodeKind.FUNCTION:
                data.expected_params = [param.name for param in source.data.parameters]
            else:
                data.expected_params = []
            data.args = []
            return True

        if target.kind == NodeKind.VARIABLE and handle == "type":
            if source.kind != NodeKind.INTERFACE or not source.data.name:
                return False
            data.declared_type = source.data.name
            return True

        text = self.expression_text(source)
        if text is None:
            return False

        if target.kind == NodeKind.VARIABLE and handle == "value":
            data.initializer = text
        elif target.kind == NodeKind.CONSOLE and handle == "value":
            data.value_expr = text
        elif target.kind == NodeKind.BINARY_OP and handle in ("lhs", "rhs"):
            setattr(data, handle, text)
        elif target.kind == NodeKind.PROPERTY_ACCESS and handle == "obj":
            data.obj_expr = text
        elif target.kind == NodeKind.CONDITIONAL and handle in ("test", "whenTrue", "whenFalse"):
            field_name = {'test': 'test_expr', 'whenTrue': 'when_true', 'whenFalse': 'when_false'}
            setattr(data, field_name[handle], text)
        elif target.kind == NodeKind.CALL and handle.startswith("arg"):
            index = self._handle_index(handle, "arg")
            if index is None:
                return False
            while len(data.args) <= index:
                data.args.append("undefined")
            data.args[index] = text
        elif target.kind == NodeKind.OBJECT and handle.startswith("prop-"):
            index = self._handle_index(handle, "prop-")
            if index is None or index >= len(data.properties):
                return False
            data.properties[index].value = text
        else:
            return False
        return True

    @staticmethod
    def _handle_index(handle: str, prefix: str) -> Optional[int]:
        suffix = handle[len(prefix):]
        return int(suffix) if suffix.isdigit() else None

    def _invalidate_bodies(self, graph: VisualGraph, node_id: Optional[str], include_self: bool):
        """Drop the captured body text of every function enclosing ``node_id``."""
        seen = set()
        current = graph.nodes.get(node_id) if node_id else None
        if current is not None and not include_self:
            current = graph.nodes.get(current.parent_id) if current.parent_id else None
        while current is not None and current.id not in seen:
            seen.add(current.id)
            if current.kind == NodeKind.FUNCTION and getattr(current.data, 'raw_body', None):
                self.logger.debug("Structural edit under function %s; dropping its body text",
                                  current.id)
                current.data.raw_body = None
            current = graph.nodes.get(current.parent_id) if current.parent_id else None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def merge(self, existing: VisualGraph, fresh: VisualGraph,
              positions: Optional[Dict[str, Position]] = None) -> VisualGraph:
        """Reconcile a freshly parsed graph with the one on the canvas.

        Nodes present in both keep their canvas position and take the fresh data;
        new nodes take the computed layout position; nodes missing from the fresh
        graph are dropped. User-drawn edges survive while both endpoints do.
        """
        positions = positions or {}
        merged = VisualGraph()
        for node in fresh.nodes.values():
            previous = existing.nodes.get(node.id)
            if previous is not None:
                position = previous.position
            else:
                position = positions.get(node.id, node.position)
            merged.add_node(VisualNode(
                id=node.id,
                kind=node.kind,
                position=position,
                data=node.data,
                parent_id=node.parent_id,
                source_range=node.source_range,
            ))

        for edge in existing.edges:
            if edge.is_containment:
                continue
            if edge.source_node_id in merged.nodes and edge.target_node_id in merged.nodes:
                merged.edges.append(edge)
        merged.edges.extend(self.containment_edges(merged))
        return merged

    def rekey(self, graph: VisualGraph, parsed: List[IRNode],
              ranges: Dict[str, SourceRange]) -> Dict[str, str]:
        """Move graph nodes onto the ids a parse of their generated text produces.

        A top-level node matches the parsed construct of the same kind that starts
        inside its rendered block; children match by kind, in order, under a matched
        parent. Generated names are pinned so the text does not change with the id.
        Returns the old id -> new id mapping of the nodes that were renamed.
        """
        parsed_children = children_index(parsed)
        top_level = [node for node in parsed if node.is_top_level and node.source_range]
        matches: Dict[str, IRNode] = {}

        def match_children(visual_id: str, parsed_id: str):
            available = list(parsed_children.get(parsed_id, []))
            for child in graph.children(visual_id):
                candidate = next((c for c in available if c.kind == child.kind), None)
                if candidate is None:
                    continue
                available.remove(candidate)
                matches[child.id] = candidate
                match_children(child.id, candidate.id)

        for node in list(graph.nodes.values()):
            span = ranges.get(node.id)
            if span is None:
                continue
            candidate = next((c for c in top_level if c.kind == node.kind
                              and span.start <= c.source_range.start < span.end), None)
            if candidate is None:
                continue
            top_level.remove(candidate)
            matches[node.id] = candidate
            match_children(node.id, candidate.id)

        renamed = {old: match.id for old, match in matches.items() if old != match.id}
        kept = set(graph.nodes) - set(renamed)
        renamed = {old: new for old, new in renamed.items() if new not in kept}
        if not renamed:
            return {}

        nodes: Dict[str, VisualNode] = {}
        for node in graph.nodes.values():
            match = matches.get(node.id)
            if node.id in renamed:
                self._pin_generated_name(node, match)
                if node.source_range is None:
                    node.source_range = match.source_range
                node.id = renamed[node.id]
            if node.parent_id is not None:
                node.parent_id = renamed.get(node.parent_id, node.parent_id)
            nodes[node.id] = node
        graph.nodes = nodes

        for edge in graph.edges:
            edge.source_node_id = renamed.get(edge.source_node_id, edge.source_node_id)
            edge.target_node_id = renamed.get(edge.target_node_id, edge.target_node_id)
        graph.edges = [edge for edge in graph.edges if not edge.is_containment]
        graph.edges.extend(self.containment_edges(graph))
        self.logger.debug("Renamed %d node(s) to their parsed ids", len(renamed))
        return renamed

    @staticmethod
    def _pin_generated_name(node: VisualNode, match: IRNode):
        # Synthesized names derive from the id, so keep the one already in the text
        if not hasattr(node.data, 'name') or node.data.name:
            return
        declared = getattr(match.attributes, 'name', None)
        if declared:
            node.data.name = declared
