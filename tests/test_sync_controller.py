"""
Unit tests for the synchronization controller.
"""

import os
import tempfile
from unittest.mock import Mock

from flow_sync_core.config import SyncConfig
from flow_sync_core.diagnostics import Diagnostic, DiagnosticsProvider, TscDiagnosticsProvider
from flow_sync_core.exceptions import CollaboratorFailure
from flow_sync_core.ir import NodeKind
from flow_sync_core.layout import LayeredLayout
from flow_sync_core.persistence import (
    FlowStore, InMemoryFlowStore, SQLiteFlowStore, HttpFlowStore,
)
from flow_sync_core.sync_controller import SyncController, SyncDirection


class TestTextToGraph:
    """Test cases for text edits."""

    def setup_method(self):
        """Set up test fixtures."""
        self.controller = SyncController()
        self.updates = []
        self.controller.on_graph_updated = self.updates.append

    def test_text_change_builds_graph(self):
        """Test that parsed nodes appear on the canvas with a layout."""
        assert self.controller.on_text_changed(
            "interface User { id: string; }\nconst a = 1;") is True

        graph = self.controller.graph
        assert [n.kind for n in graph.nodes.values()] == [
            NodeKind.INTERFACE, NodeKind.VARIABLE, NodeKind.LITERAL]
        positions = [n.position for n in graph.nodes.values()]
        assert positions[0] == (0.0, 0.0)
        assert positions[1] == (220.0, 0.0)
        assert len(self.updates) == 1
        assert self.controller.direction == SyncDirection.IDLE

    def test_unchanged_text_is_ignored(self):
        """Test that repeating the current text does nothing."""
        self.controller.on_text_changed("const a = 1;")
        assert self.controller.on_text_changed("const a = 1;") is False
        assert len(self.updates) == 1

    def test_parse_failure_keeps_last_good_graph(self):
        """Test that untokenizable text leaves the graph alone and records a notice."""
        notices = []
        self.controller.on_notice = notices.append
        self.controller.on_text_changed("const a = 1;")
        before = dict(self.controller.graph.nodes)

        assert self.controller.on_text_changed("const a = (") is False

        assert self.controller.graph.nodes == before
        assert self.controller.text == "const a = ("
        assert notices[0].source == "parser"
        assert notices[0].offset == 10

    def test_position_survives_reparse(self):
        """Test that a moved node keeps its position when the text changes."""
        self.controller.on_text_changed("const a = 1;")
        variable_id = next(iter(self.controller.graph.nodes))
        self.controller.move_node(variable_id, (300, 400))

        self.controller.on_text_changed("const a = 2;")

        node = self.controller.graph.nodes[variable_id]
        assert node.position == (300.0, 400.0)
        assert node.data.initializer == "2"

    def test_layout_runs_only_when_topology_changes(self):
        """Test that attribute-only edits do not rerun the layout."""
        layout = Mock(wraps=LayeredLayout())
        controller = SyncController(layout=layout)

        controller.on_text_changed("const a = 1;")
        controller.on_text_changed("const a = 2;")
        assert layout.layout.call_count == 1

        controller.on_text_changed("const a = 2;\nconst b = 3;")
        assert layout.layout.call_count == 2

    def test_graph_edit_from_listener_is_ignored(self):
        """Test the re-entrancy guard while a text change is applied."""
        results = []
        self.controller.on_graph_updated = lambda graph: results.append(
            self.controller.add_node("literal"))

        self.controller.on_text_changed("const a = 1;")

        assert results == [None]
        assert len(self.controller.graph.nodes) == 2


class TestGraphToText:
    """Test cases for graph edits."""

    def setup_method(self):
        """Set up test fixtures."""
        self.controller = SyncController()
        self.texts = []
        self.controller.on_text_updated = self.texts.append

    def test_add_node_regenerates_text(self):
        """Test that a new node is rendered with its defaults."""
        node = self.controller.add_node("variable", (10, 10))

        assert node.id in self.controller.graph.nodes
        assert self.controller.text == "export const newVar: number = undefined;"
        assert self.texts == [self.controller.text]
        assert node.source_range == (0, len(self.controller.text))

    def test_echo_is_suppressed(self):
        """Test that the text listener's echo does not reparse."""
        echoes = []
        self.controller.on_text_updated = lambda text: echoes.append(
            self.controller.on_text_changed(text))

        node = self.controller.add_node("variable")

        assert echoes == [False]
        assert list(self.controller.graph.nodes) == [node.id]
        assert self.controller.on_text_changed(self.controller.text) is False

    def test_connect_updates_text(self):
        """Test that wiring a literal into a variable sets its initializer."""
        variable = self.controller.add_node("variable")
        literal = self.controller.add_node("literal")

        edge = self.controller.connect(literal.id, variable.id, "value")

        assert edge is not None
        assert self.controller.text.startswith("export const newVar: number = 0;")

    def test_connect_to_missing_node(self):
        """Test that an edge to an unknown node is refused."""
        variable = self.controller.add_node("variable")
        assert self.controller.connect("ghost", variable.id, "value") is None
        assert self.controller.graph.edges == []

    def test_disconnect_keeps_text(self):
        """Test that removing an edge does not touch the text."""
        variable = self.controller.add_node("variable")
        literal = self.controller.add_node("literal")
        edge = self.controller.connect(literal.id, variable.id, "value")
        text = self.controller.text
        self.texts.clear()

        assert self.controller.disconnect(edge.id) is True

        assert self.controller.text == text
        assert self.texts == []
        assert self.controller.graph.edges == []

    def test_update_node_data(self):
        """Test an explicit edit."""
        variable = self.controller.add_node("variable")
        assert self.controller.update_node_data(variable.id, name="total", initializer="5") is True
        assert self.controller.text == "export const total: number = 5;"

    def test_remove_node(self):
        """Test that removing the only node empties the text."""
        node = self.controller.add_node("interface")
        assert self.controller.remove_node(node.id) is True
        assert self.controller.text == ""
        assert self.controller.remove_node(node.id) is False

    def test_move_node_does_not_regenerate(self):
        """Test that moving only changes the position."""
        node = self.controller.add_node("literal")
        self.texts.clear()

        assert self.controller.move_node(node.id, (50, 60)) is True
        assert self.controller.move_node("ghost", (0, 0)) is False

        assert self.texts == []
        assert node.position == (50.0, 60.0)

    def test_generation_failure_keeps_text(self):
        """Test that a generator error is logged and the text is kept."""
        generator = Mock()
        generator.generate_with_ranges.side_effect = RuntimeError("boom")
        controller = SyncController(generator=generator)

        node = controller.add_node("variable")

        assert node is not None
        assert controller.text == ""


class TestCanvasNodeIdentity:
    """Test cases for canvas-created nodes across later text edits."""

    def setup_method(self):
        """Set up test fixtures."""
        self.controller = SyncController()

    def test_position_survives_text_edit(self):
        """Test that a node added on the canvas keeps its place when the text is edited."""
        node = self.controller.add_node("variable", (500.0, 700.0))

        assert self.controller.on_text_changed(self.controller.text + "\n// note\n") is True

        assert list(self.controller.graph.nodes) == [node.id]
        assert self.controller.graph.nodes[node.id].position == (500.0, 700.0)

    def test_moved_node_survives_text_edit(self):
        """Test that a moved canvas node keeps the moved position."""
        node = self.controller.add_node("variable")
        self.controller.move_node(node.id, (120, 80))

        self.controller.on_text_changed(self.controller.text + "\n// note\n")

        assert self.controller.graph.nodes[node.id].position == (120.0, 80.0)

    def test_user_edge_survives_text_edit(self):
        """Test that a drawn connection outlives a reparse of the generated text."""
        variable = self.controller.add_node("variable", (0, 200))
        literal = self.controller.add_node("literal", (0, 0))
        edge = self.controller.connect(literal.id, variable.id, "value")

        assert self.controller.on_text_changed(self.controller.text + "\n// note\n") is True

        graph = self.controller.graph
        assert graph.get_edge(edge.id) is not None
        assert (edge.source_node_id, edge.target_node_id) == (literal.id, variable.id)
        assert graph.nodes[variable.id].position == (0.0, 200.0)
        assert graph.nodes[literal.id].position == (0.0, 0.0)

    def test_store_follows_renamed_nodes(self):
        """Test that the stored node is updated in place rather than duplicated."""
        store = InMemoryFlowStore()
        flow_id = store.create_flow("Demo")
        controller = SyncController(store=store, flow_id=flow_id)

        node = controller.add_node("variable")
        controller.on_text_changed(controller.text + "\n// note\n")

        stored = store.list_nodes_by_flow(flow_id)
        assert [n.data['localId'] for n in stored] == [node.id]


class TestCollaborators:
    """Test cases for persistence, layout and diagnostics collaborators."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = InMemoryFlowStore()
        self.flow_id = self.store.create_flow("Demo")
        self.controller = SyncController(store=self.store, flow_id=self.flow_id)

    def test_text_change_is_mirrored(self):
        """Test that nodes, edges and the preview reach the store."""
        self.controller.on_text_changed("const a = 1;")

        stored = self.store.list_nodes_by_flow(self.flow_id)
        assert sorted(n.data['localId'] for n in stored) == sorted(self.controller.graph.nodes)
        assert {n.data['kind'] for n in stored} == {"variable", "literal"}
        assert len(self.store.list_edges_by_flow(self.flow_id)) == 1
        assert self.store.flows[self.flow_id]['code_preview'] == "const a = 1;"

    def test_move_is_mirrored(self):
        """Test that a position change is written to the store."""
        node = self.controller.add_node("literal")
        self.controller.move_node(node.id, (7, 8))

        stored = self.store.list_nodes_by_flow(self.flow_id)
        assert [(n.x, n.y) for n in stored] == [(7.0, 8.0)]

    def test_removed_nodes_leave_the_store(self):
        """Test that deleting a node deletes its stored counterpart."""
        node = self.controller.add_node("literal")
        self.controller.remove_node(node.id)
        assert self.store.list_nodes_by_flow(self.flow_id) == []

    def test_load_flow(self):
        """Test rebuilding a graph from the store."""
        self.controller.on_text_changed("const a = 1;")
        variable_id = next(iter(self.controller.graph.nodes))
        self.controller.move_node(variable_id, (30, 40))

        loaded = SyncController(store=self.store, flow_id=self.flow_id)
        texts = []
        loaded.on_text_updated = texts.append

        assert loaded.load_flow() is True

        assert loaded.text == "export const a = 1;"
        assert texts == ["export const a = 1;"]
        # Nodes move onto the ids the regenerated text parses to
        assert set(loaded.graph.nodes) == {n.id for n in loaded.parser.parse(loaded.text)}
        variable = next(n for n in loaded.graph.nodes.values() if n.kind == NodeKind.VARIABLE)
        assert variable.position == (30.0, 40.0)
        assert len(loaded.graph.edges) == 1
        assert loaded.on_text_changed(loaded.text + "\n") is True
        assert loaded.graph.nodes[variable.id].position == (30.0, 40.0)

    def test_load_flow_without_store(self):
        """Test that loading needs a store and a flow id."""
        assert SyncController().load_flow() is False

    def test_store_failure_becomes_notice(self):
        """Test that a failing store does not break synchronization."""
        store = Mock(spec=FlowStore)
        store.upsert_node.side_effect = CollaboratorFailure("store down", "persistence")
        controller = SyncController(store=store, flow_id="flow-1")
        notices = []
        controller.on_notice = notices.append

        assert controller.on_text_changed("const a = 1;") is True

        assert len(controller.graph.nodes) == 2
        assert [n.source for n in notices] == ["persistence"]

    def test_load_failure_becomes_notice(self):
        """Test that a failing list call is reported."""
        store = Mock(spec=FlowStore)
        store.list_nodes_by_flow.side_effect = CollaboratorFailure("store down", "persistence")
        controller = SyncController(store=store, flow_id="flow-1")

        assert controller.load_flow() is False
        assert controller.notices[0].source == "persistence"

    def test_layout_failure_becomes_notice(self):
        """Test that a failing layout still updates the graph."""
        layout = Mock()
        layout.layout.side_effect = RuntimeError("no layout")
        controller = SyncController(layout=layout)

        assert controller.on_text_changed("const a = 1;") is True

        assert all(n.position == (0.0, 0.0) for n in controller.graph.nodes.values())
        assert controller.notices[0].source == "layout"

    def test_diagnostics_map_to_nodes(self):
        """Test that diagnostics are keyed by node id."""
        provider = Mock(spec=DiagnosticsProvider)
        provider.diagnose.return_value = [Diagnostic(4, "oops")]
        controller = SyncController(diagnostics_provider=provider)
        controller.on_text_changed("const a = 1;")

        mapped = controller.diagnostics()

        variable_id = next(iter(controller.graph.nodes))
        assert list(mapped) == [variable_id]
        provider.diagnose.assert_called_once_with("const a = 1;")

    def test_diagnostics_failure_becomes_notice(self):
        """Test a failing diagnostics provider."""
        provider = Mock(spec=DiagnosticsProvider)
        provider.diagnose.side_effect = CollaboratorFailure("no tsc", "diagnostics")
        controller = SyncController(diagnostics_provider=provider)

        assert controller.diagnostics() == {}
        assert controller.notices[0].source == "diagnostics"

    def test_config_reaches_parser(self):
        """Test that the reclassification switch is honoured."""
        controller = SyncController(SyncConfig(reclassify_generated_names=False))
        controller.on_text_changed("const call_x = f(1);")
        kinds = [n.kind for n in controller.graph.nodes.values()]
        assert kinds[0] == NodeKind.VARIABLE


class TestCollaboratorsFromConfig:
    """Test cases for collaborators built from the configuration."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_db = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
        self.temp_db.close()

    def teardown_method(self):
        """Clean up test fixtures."""
        if os.path.exists(self.temp_db.name):
            os.unlink(self.temp_db.name)

    def test_nothing_configured(self):
        """Test that no store or compiler is set up by default."""
        controller = SyncController()
        assert controller.store is None
        assert controller.diagnostics_provider is None

    def test_sqlite_store(self):
        """Test that a configured database path gives a SQLite store."""
        controller = SyncController(SyncConfig(sqlite_path=self.temp_db.name))
        assert isinstance(controller.store, SQLiteFlowStore)
        assert controller.store.db_path == self.temp_db.name

    def test_http_store_wins(self):
        """Test that a store URL takes precedence over a database path."""
        config = SyncConfig(store_url="https://example.convex.cloud", store_timeout=3.0,
                            sqlite_path=self.temp_db.name)
        controller = SyncController(config)
        assert isinstance(controller.store, HttpFlowStore)
        assert controller.store.base_url == "https://example.convex.cloud"
        assert controller.store.timeout == 3.0

    def test_injected_store_is_kept(self):
        """Test that an explicit store is not replaced by the configured one."""
        store = InMemoryFlowStore()
        controller = SyncController(SyncConfig(sqlite_path=self.temp_db.name), store=store)
        assert controller.store is store

    def test_unusable_database_becomes_notice(self):
        """Test that a store that cannot be opened is reported, not raised."""
        with tempfile.TemporaryDirectory() as directory:
            controller = SyncController(SyncConfig(sqlite_path=directory))
        assert controller.store is None
        assert controller.notices[0].source == "persistence"

    def test_tsc_provider(self):
        """Test that a compiler path gives a tsc diagnostics provider."""
        controller = SyncController(SyncConfig(tsc_path="/usr/bin/tsc", tsc_timeout=5.0))
        assert isinstance(controller.diagnostics_provider, TscDiagnosticsProvider)
        assert controller.diagnostics_provider.timeout == 5.0
