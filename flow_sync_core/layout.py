"""
Layout collaborator.

Computes canvas positions for a visual graph. ``LayeredLayout`` ranks top-level
nodes along the edges between them (cycles are collapsed into one rank) and stacks
child nodes inside their parent, with positions relative to the parent.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import networkx as nx

from .config import SyncConfig
from .models import VisualGraph, VisualNode

Position = Tuple[float, float]
Size = Tuple[float, float]

logger = logging.getLogger(__name__)


class LayoutEngine(ABC):
    """Computes node positions for a visual graph."""

    @abstractmethod
    def layout(self, graph: VisualGraph) -> Dict[str, Position]:
        """Return a position for every node in ``graph``."""
        pass


class LayeredLayout(LayoutEngine):
    """Layered directed-graph layout, top-to-bottom or left-to-right."""

    def __init__(self, config: Optional[SyncConfig] = None):
        self.config = config or SyncConfig()

    def layout(self, graph: VisualGraph) -> Dict[str, Position]:
        children: Dict[str, List[VisualNode]] = {}
        roots: List[VisualNode] = []
        for node in graph.nodes.values():
            if node.parent_id is not None and node.parent_id in graph.nodes:
                children.setdefault(node.parent_id, []).append(node)
            else:
                roots.append(node)

        sizes: Dict[str, Size] = {}
        for root in roots:
            self._measure(root, children, sizes, set())

        positions: Dict[str, Position] = {}
        ranks = self._rank(graph, roots)
        self._place_ranks(ranks, sizes, positions)
        for root in roots:
            self._place_children(root, children, sizes, positions, set())

        for node_id in graph.nodes:
            # Nodes caught in a parent cycle are unreachable from any root
            positions.setdefault(node_id, (0.0, 0.0))
        return positions

    def _root_of(self, graph: VisualGraph, node_id: str) -> str:
        seen = set()
        node = graph.nodes[node_id]
        while node.parent_id in graph.nodes and node.id not in seen:
            seen.add(node.id)
            node = graph.nodes[node.parent_id]
        return node.id

    def _rank(self, graph: VisualGraph, roots: List[VisualNode]) -> List[List[str]]:
        """Group root ids into ranks following the non-containment edges."""
        order = {node.id: index for index, node in enumerate(roots)}
        digraph = nx.DiGraph()
        digraph.add_nodes_from(order)
        for edge in graph.edges:
            if edge.is_containment:
                continue
            if edge.source_node_id not in graph.nodes or edge.target_node_id not in graph.nodes:
                continue
            source = self._root_of(graph, edge.source_node_id)
            target = self._root_of(graph, edge.target_node_id)
            if source != target and source in order and target in order:
                digraph.add_edge(source, target)

        condensed = nx.condensation(digraph)
        members = condensed.graph['mapping']
        components: Dict[int, List[str]] = {}
        for node_id, component in members.items():
            components.setdefault(component, []).append(node_id)

        ranks = []
        for generation in nx.topological_generations(condensed):
            rank = [node_id for component in generation for node_id in components[component]]
            ranks.append(sorted(rank, key=order.__getitem__))
        return ranks

    def _measure(self, node: VisualNode, children: Dict[str, List[VisualNode]],
                 sizes: Dict[str, Size], visiting: set) -> Size:
        cfg = self.config
        if node.id in visiting:
            return cfg.node_width, cfg.node_height
        visiting.add(node.id)
        width, height = cfg.node_width, cfg.node_height
        for child in children.get(node.id, []):
            child_width, child_height = self._measure(child, children, sizes, visiting)
            width = max(width, child_width + 2 * cfg.child_padding)
            height += child_height + cfg.child_padding
        if children.get(node.id):
            height += cfg.child_padding
        sizes[node.id] = (width, height)
        return width, height

    def _place_ranks(self, ranks: List[List[str]], sizes: Dict[str, Size],
                     positions: Dict[str, Position]):
        cfg = self.config
        vertical = cfg.layout_direction == "TB"
        rank_offset = 0.0
        for rank in ranks:
            along = 0.0
            depth = 0.0
            for node_id in rank:
                width, height = sizes[node_id]
                if vertical:
                    positions[node_id] = (along, rank_offset)
                    along += width + cfg.node_spacing
                    depth = max(depth, height)
                else:
                    positions[node_id] = (rank_offset, along)
                    along += height + cfg.node_spacing
                    depth = max(depth, width)
            rank_offset += depth + cfg.rank_spacing

    def _place_children(self, node: VisualNode, children: Dict[str, List[VisualNode]],
                        sizes: Dict[str, Size], positions: Dict[str, Position], visiting: set):
        cfg = self.config
        if node.id in visiting:
            return
        visiting.add(node.id)
        offset = cfg.node_height + cfg.child_padding
        for child in children.get(node.id, []):
            positions[child.id] = (cfg.child_padding, offset)
            offset += sizes.get(child.id, (cfg.node_width, cfg.node_height))[1] + cfg.child_padding
            self._place_children(child, children, sizes, positions, visiting)
