"""
Synchronization controller.

The controller owns the current text and the current visual graph. Text edits are
parsed and merged into the graph; graph edits regenerate the text. A single
``SyncDirection`` value records which of the two is in flight so that the echo of
one direction never starts the other.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import SyncConfig
from .diagnostics import (
    Diagnostic, DiagnosticsProvider, map_diagnostics_to_nodes, provider_from_config,
)
from .exceptions import CollaboratorFailure, ParseError
from .graph_adapter import GraphAdapter
from .ir import attributes_from_dict, attributes_to_dict
from .layout import LayeredLayout, LayoutEngine
from .models import VisualGraph, VisualNode, VisualEdge, OUTPUT_HANDLE
from .node_factory import create_node
from .persistence import FlowStore, store_from_config
from .typescript_generator import TypeScriptGenerator
from .typescript_parser import TypeScriptParser


class SyncDirection(Enum):
    """Which side of the synchronization is currently being applied."""
    IDLE = "idle"
    APPLYING_TEXT_CHANGE = "applying_text_change"
    APPLYING_GRAPH_CHANGE = "applying_graph_change"


@dataclass
class SyncNotice:
    """A transient, user-visible message about a failed synchronization step."""
    message: str
    source: str
    offset: Optional[int] = None


class SyncController:
    """Keeps the source text and the visual graph of one flow in step."""

    def __init__(self,
                 config: Optional[SyncConfig] = None,
                 flow_id: Optional[str] = None,
                 store: Optional[FlowStore] = None,
                 layout: Optional[LayoutEngine] = None,
                 diagnostics_provider: Optional[DiagnosticsProvider] = None,
                 parser: Optional[TypeScriptParser] = None,
                 generator: Optional[TypeScriptGenerator] = None,
                 adapter: Optional[GraphAdapter] = None):
        self.config = config or SyncConfig()
        self.flow_id = flow_id
        self.store = store
        self.layout = layout or LayeredLayout(self.config)
        self.diagnostics_provider = diagnostics_provider
        self.parser = parser or TypeScriptParser(self.config.reclassify_generated_names)
        self.generator = generator or TypeScriptGenerator(self.config.indent_size)
        self.adapter = adapter or GraphAdapter()
        self.logger = logging.getLogger(__name__)

        self.direction = SyncDirection.IDLE
        self.text = ""
        self.graph = VisualGraph()
        self.notices: List[SyncNotice] = []

        # Local id -> store id, and the payload last written for each local id
        self._store_node_ids: Dict[str, str] = {}
        self._store_edge_ids: Dict[str, str] = {}
        self._mirrored_nodes: Dict[str, Tuple[str, Tuple[float, float]]] = {}
        self._mirrored_edges: Dict[str, str] = {}

        # Event callbacks
        self.on_text_updated: Optional[Callable[[str], None]] = None
        self.on_graph_updated: Optional[Callable[[VisualGraph], None]] = None
        self.on_notice: Optional[Callable[[SyncNotice], None]] = None

        if self.store is None:
            try:
                self.store = store_from_config(self.config)
            except CollaboratorFailure as e:
                self._collaborator_failed("persistence", e)
        if self.diagnostics_provider is None:
            self.diagnostics_provider = provider_from_config(self.config)

    # ------------------------------------------------------------------
    # Text → graph
    # ------------------------------------------------------------------

    def on_text_changed(self, text: str) -> bool:
        """Reparse ``text`` and merge it into the graph.

        Returns True when the graph was updated. Changes arriving while a graph
        edit is being applied are the echo of that edit and are ignored.
        """
        if self.direction != SyncDirection.IDLE:
            self.logger.debug("Ignoring text change while %s", self.direction.value)
            return False
        if text == self.text:
            return False

        self.direction = SyncDirection.APPLYING_TEXT_CHANGE
        try:
            self.text = text
            try:
                nodes = self.parser.parse(text)
            except ParseError as e:
                self.logger.info("Keeping last good graph: %s", e)
                self._notify(SyncNotice(str(e), "parser", e.offset))
                return False

            fresh = self.adapter.to_visual(nodes)
            positions = {}
            if fresh.topology() != self.graph.topology():
                positions = self._compute_layout(fresh)
            self.graph = self.adapter.merge(self.graph, fresh, positions)

            self._mirror_graph()
            self._mirror_preview(text)
            if self.on_graph_updated:
                self.on_graph_updated(self.graph)
            return True
        finally:
            self.direction = SyncDirection.IDLE

    # ------------------------------------------------------------------
    # Graph → text
    # ------------------------------------------------------------------

    def add_node(self, kind, position: Tuple[float, float] = (0.0, 0.0),
                 parent_id: Optional[str] = None) -> Optional[VisualNode]:
        """Create a node with default attributes and regenerate the text."""
        node = create_node(kind, position, parent_id)

        def mutate():
            self.graph.add_node(node)
            return node, True

        applied = self._apply_graph_change(mutate)
        return node if applied is not None else None

    def remove_node(self, node_id: str) -> bool:
        def mutate():
            removed = self.graph.remove_node(node_id)
            return removed, removed

        return bool(self._apply_graph_change(mutate))

    def move_node(self, node_id: str, position: Tuple[float, float]) -> bool:
        """Reposition a node; text is unaffected so only the store is updated."""
        def mutate():
            node = self.graph.get_node(node_id)
            if node is None:
                return False, False
            node.position = (float(position[0]), float(position[1]))
            return True, False

        return bool(self._apply_graph_change(mutate))

    def connect(self, source_id: str, target_id: str, target_handle: Optional[str],
                source_handle: Optional[str] = OUTPUT_HANDLE) -> Optional[VisualEdge]:
        """Draw an edge and apply what it means for the target's attributes."""
        edge = VisualEdge(source_node_id=source_id, source_handle=source_handle,
                          target_node_id=target_id, target_handle=target_handle)

        def mutate():
            if source_id not in self.graph.nodes or target_id not in self.graph.nodes:
                return None, False
            changed = self.adapter.connect(self.graph, edge)
            return edge, changed

        return self._apply_graph_change(mutate)

    def disconnect(self, edge_id: str) -> bool:
        """Remove an edge; attributes it wrote are left as they are."""
        def mutate():
            return self.adapter.disconnect(self.graph, edge_id), False

        return bool(self._apply_graph_change(mutate))

    def update_node_data(self, node_id: str, **changes: Any) -> bool:
        def mutate():
            updated = self.adapter.update_node_data(self.graph, node_id, **changes)
            return updated, updated

        return bool(self._apply_graph_change(mutate))

    def _apply_graph_change(self, mutate: Callable[[], Tuple[Any, bool]]) -> Any:
        if self.direction != SyncDirection.IDLE:
            self.logger.debug("Ignoring graph change while %s", self.direction.value)
            return None

        self.direction = SyncDirection.APPLYING_GRAPH_CHANGE
        try:
            result, regenerate = mutate()
            if not result:
                return result
            if regenerate:
                self._regenerate()
            self._mirror_graph()
            if self.on_graph_updated:
                self.on_graph_updated(self.graph)
            return result
        finally:
            self.direction = SyncDirection.IDLE

    def _regenerate(self):
        nodes = self.adapter.to_ir(self.graph)
        try:
            text, ranges = self.generator.generate_with_ranges(nodes)
        except Exception:
            self.logger.exception("Code generation failed; keeping current text")
            return

        for node in self.graph.nodes.values():
            node.source_range = ranges.get(node.id)
        self._rekey(text, ranges)
        if text == self.text:
            return
        self.text = text
        self._mirror_preview(text)
        if self.on_text_updated:
            self.on_text_updated(text)

    def _rekey(self, text: str, ranges):
        """Give graph nodes the ids the next parse of ``text`` will assign them."""
        try:
            parsed = self.parser.parse(text)
        except ParseError as e:
            self.logger.debug("Generated text does not reparse, keeping node ids: %s", e)
            return

        renamed = self.adapter.rekey(self.graph, parsed, ranges)
        if not renamed:
            return
        stale = set(renamed) | set(renamed.values())
        # A removed node whose id is taken over must leave the store before the mapping moves
        for local_id in [key for key in self._store_node_ids if key in stale and key not in renamed]:
            store_id = self._store_node_ids.pop(local_id)
            if self.store is not None:
                try:
                    self.store.remove_node(store_id)
                except Exception as e:
                    self._collaborator_failed("persistence", e)
        self._store_node_ids = {
            renamed.get(local_id, local_id): store_id
            for local_id, store_id in self._store_node_ids.items()
        }
        self._mirrored_nodes = {
            local_id: snapshot for local_id, snapshot in self._mirrored_nodes.items()
            if local_id not in stale
        }

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def load_flow(self) -> bool:
        """Rebuild the graph from the store and regenerate the text from it."""
        if self.store is None or self.flow_id is None:
            return False
        if self.direction != SyncDirection.IDLE:
            return False

        try:
            persisted_nodes = self.store.list_nodes_by_flow(self.flow_id)
            persisted_edges = self.store.list_edges_by_flow(self.flow_id)
        except Exception as e:
            self._collaborator_failed("persistence", e)
            return False

        self.direction = SyncDirection.APPLYING_GRAPH_CHANGE
        try:
            graph = VisualGraph()
            self._store_node_ids.clear()
            self._store_edge_ids.clear()
            self._mirrored_nodes.clear()
            self._mirrored_edges.clear()

            for persisted in persisted_nodes:
                data = persisted.data or {}
                local_id = data.get('localId') or persisted.id
                kind = data.get('kind') or persisted.kind
                attributes = data['attributes'] if 'attributes' in data else data
                node = VisualNode(
                    id=local_id,
                    kind=kind,
                    position=(float(persisted.x), float(persisted.y)),
                    data=attributes_from_dict(kind, attributes),
                    parent_id=data.get('parentId'),
                )
                graph.add_node(node)
                self._store_node_ids[local_id] = persisted.id
                self._mirrored_nodes[local_id] = self._node_snapshot(node)

            local_ids = {store_id: local_id for local_id, store_id in self._store_node_ids.items()}
            for persisted in persisted_edges:
                source = local_ids.get(persisted.source)
                target = local_ids.get(persisted.target)
                if source is None or target is None:
                    self.logger.debug("Skipping stored edge %s with a missing endpoint", persisted.id)
                    continue
                data = dict(persisted.data or {})
                local_id = data.pop('localId', None) or persisted.id
                edge = VisualEdge(id=local_id, source_node_id=source,
                                  source_handle=persisted.source_handle, target_node_id=target,
                                  target_handle=persisted.target_handle, data=data)
                graph.add_edge(edge)
                self._store_edge_ids[local_id] = persisted.id
                self._mirrored_edges[local_id] = self._edge_snapshot(edge)

            self.graph = graph
            self._regenerate()
            if self.on_graph_updated:
                self.on_graph_updated(self.graph)
            return True
        finally:
            self.direction = SyncDirection.IDLE

    def diagnostics(self) -> Dict[str, List[Diagnostic]]:
        """Diagnostics for the current text, keyed by the node they point into."""
        if self.diagnostics_provider is None:
            return {}
        try:
            found = self.diagnostics_provider.diagnose(self.text)
        except Exception as e:
            self._collaborator_failed("diagnostics", e)
            return {}
        return map_diagnostics_to_nodes(found, self.adapter.to_ir(self.graph))

    def _compute_layout(self, graph: VisualGraph) -> Dict[str, Tuple[float, float]]:
        try:
            return self.layout.layout(graph)
        except Exception as e:
            self._collaborator_failed("layout", e)
            return {}

    def _mirror_preview(self, text: str):
        if self.store is None or self.flow_id is None:
            return
        try:
            self.store.update_flow_preview(self.flow_id, text)
        except Exception as e:
            self._collaborator_failed("persistence", e)

    def _mirror_graph(self):
        if self.store is None or self.flow_id is None:
            return
        try:
            self._sync_store()
        except Exception as e:
            self._collaborator_failed("persistence", e)

    def _node_payload(self, node: VisualNode) -> Dict[str, Any]:
        return {
            'localId': node.id,
            'kind': node.kind_name,
            'parentId': node.parent_id,
            'attributes': attributes_to_dict(node.data),
        }

    def _node_snapshot(self, node: VisualNode) -> Tuple[str, Tuple[float, float]]:
        return json.dumps(self._node_payload(node), sort_keys=True), tuple(node.position)

    def _edge_snapshot(self, edge: VisualEdge) -> str:
        return json.dumps([edge.source_node_id, edge.source_handle, edge.target_node_id,
                           edge.target_handle, edge.data], sort_keys=True)

    def _sync_store(self):
        """Write the differences since the last mirror into the store."""
        store, flow_id = self.store, self.flow_id
        live_edges = {edge.id: edge for edge in self.graph.edges}

        for local_id in list(self._store_edge_ids):
            edge = live_edges.get(local_id)
            if edge is None or edge.source_node_id not in self.graph.nodes \
                    or edge.target_node_id not in self.graph.nodes:
                store.remove_edge(self._store_edge_ids.pop(local_id))
                self._mirrored_edges.pop(local_id, None)

        for local_id in list(self._store_node_ids):
            if local_id not in self.graph.nodes:
                store.remove_node(self._store_node_ids.pop(local_id))
                self._mirrored_nodes.pop(local_id, None)

        for node in self.graph.nodes.values():
            snapshot = self._node_snapshot(node)
            if self._mirrored_nodes.get(node.id) == snapshot:
                continue
            x, y = node.position
            store_id = store.upsert_node(self._store_node_ids.get(node.id), flow_id,
                                         node.kind_name, self._node_payload(node), x, y)
            self._store_node_ids[node.id] = store_id
            self._mirrored_nodes[node.id] = snapshot

        for edge in self.graph.edges:
            snapshot = self._edge_snapshot(edge)
            if self._mirrored_edges.get(edge.id) == snapshot:
                continue
            source = self._store_node_ids.get(edge.source_node_id)
            target = self._store_node_ids.get(edge.target_node_id)
            if source is None or target is None:
                continue
            data = dict(edge.data, localId=edge.id)
            store_id = store.upsert_edge(self._store_edge_ids.get(edge.id), flow_id, source,
                                         edge.source_handle, target, edge.target_handle, data)
            self._store_edge_ids[edge.id] = store_id
            self._mirrored_edges[edge.id] = snapshot

    def _collaborator_failed(self, collaborator: str, error: Exception):
        self.logger.warning("%s collaborator failed: %s", collaborator, error)
        self._notify(SyncNotice(f"{collaborator} unavailable: {error}", collaborator))

    def _notify(self, notice: SyncNotice):
        self.notices.append(notice)
        if self.on_notice:
            self.on_notice(notice)
