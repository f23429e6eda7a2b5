"""
Persistence collaborator: an eventually-consistent mirror of the visual graph.

Schema (SQLite and remote store alike):
  flows      : id, owner_id, title, last_edited, code_preview
  flow_nodes : id, flow_id, type, data, x, y, last_touched
  flow_edges : id, flow_id, source, source_handle, target, target_handle, data, last_touched

Stores never interpret node data; the synchronization controller decides what
goes into it. Every backend failure is raised as ``CollaboratorFailure``.
"""

import json
import logging
import os
import sqlite3
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

import requests

from .config import SyncConfig
from .exceptions import CollaboratorFailure


@dataclass
class PersistedNode:
    id: str
    flow_id: str
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    x: float = 0.0
    y: float = 0.0


@dataclass
class PersistedEdge:
    id: str
    flow_id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class FlowStore(ABC):
    """Node/edge store keyed by flow id."""

    @abstractmethod
    def create_flow(self, title: str, owner_id: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def upsert_node(self, node_id: Optional[str], flow_id: str, kind: str,
                    data: Dict[str, Any], x: float, y: float) -> str:
        """Insert or update a node and return its store id."""
        pass

    @abstractmethod
    def remove_node(self, node_id: str):
        """Remove a node together with every edge touching it."""
        pass

    @abstractmethod
    def list_nodes_by_flow(self, flow_id: str) -> List[PersistedNode]:
        pass

    @abstractmethod
    def upsert_edge(self, edge_id: Optional[str], flow_id: str, source: str,
                    source_handle: Optional[str], target: str, target_handle: Optional[str],
                    data: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    def remove_edge(self, edge_id: str):
        pass

    @abstractmethod
    def list_edges_by_flow(self, flow_id: str) -> List[PersistedEdge]:
        pass

    @abstractmethod
    def update_flow_preview(self, flow_id: str, code: str):
        pass


class InMemoryFlowStore(FlowStore):
    """Process-local store used in demo mode and tests."""

    def __init__(self):
        self.flows: Dict[str, Dict[str, Any]] = {}
        self.nodes: Dict[str, PersistedNode] = {}
        self.edges: Dict[str, PersistedEdge] = {}

    def create_flow(self, title: str, owner_id: Optional[str] = None) -> str:
        flow_id = str(uuid.uuid4())
        self.flows[flow_id] = {
            'owner_id': owner_id, 'title': title,
            'last_edited': time.time(), 'code_preview': None,
        }
        return flow_id

    def upsert_node(self, node_id, flow_id, kind, data, x, y) -> str:
        node_id = node_id or str(uuid.uuid4())
        self.nodes[node_id] = PersistedNode(node_id, flow_id, kind, dict(data), x, y)
        return node_id

    def remove_node(self, node_id: str):
        self.edges = {
            edge_id: edge for edge_id, edge in self.edges.items()
            if edge.source != node_id and edge.target != node_id
        }
        self.nodes.pop(node_id, None)

    def list_nodes_by_flow(self, flow_id: str) -> List[PersistedNode]:
        return [node for node in self.nodes.values() if node.flow_id == flow_id]

    def upsert_edge(self, edge_id, flow_id, source, source_handle, target, target_handle,
                    data) -> str:
        edge_id = edge_id or str(uuid.uuid4())
        self.edges[edge_id] = PersistedEdge(edge_id, flow_id, source, target,
                                            source_handle, target_handle, dict(data))
        return edge_id

    def remove_edge(self, edge_id: str):
        self.edges.pop(edge_id, None)

    def list_edges_by_flow(self, flow_id: str) -> List[PersistedEdge]:
        return [edge for edge in self.edges.values() if edge.flow_id == flow_id]

    def update_flow_preview(self, flow_id: str, code: str):
        flow = self.flows.setdefault(flow_id, {'owner_id': None, 'title': ''})
        flow['code_preview'] = code
        flow['last_edited'] = time.time()


class SQLiteFlowStore(FlowStore):
    """SQLite-backed store; one short-lived connection per operation.

    An in-memory database lives only as long as its connection, so ``':memory:'``
    stores keep a single connection open instead.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.logger = logging.getLogger(__name__)
        self._shared_conn: Optional[sqlite3.Connection] = None
        if db_path == ':memory:':
            self._shared_conn = self._connect()
        else:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
            self._connect().close()

    def _get_db(self) -> sqlite3.Connection:
        if self._shared_conn is not None:
            return self._shared_conn
        return self._connect()

    def _release(self, conn: sqlite3.Connection):
        if conn is not self._shared_conn:
            conn.close()

    def close(self):
        """Close the connection held by an in-memory store."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    def _connect(self) -> sqlite3.Connection:
        """Open a connection to the flow database, creating tables if needed."""
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS flows (
                    id            TEXT PRIMARY KEY,
                    owner_id      TEXT,
                    title         TEXT NOT NULL DEFAULT '',
                    last_edited   REAL NOT NULL,
                    code_preview  TEXT
                );

                CREATE TABLE IF NOT EXISTS flow_nodes (
                    id            TEXT PRIMARY KEY,
                    flow_id       TEXT NOT NULL,
                    type          TEXT NOT NULL,
                    data          TEXT NOT NULL DEFAULT '{}',
                    x             REAL NOT NULL DEFAULT 0,
                    y             REAL NOT NULL DEFAULT 0,
                    last_touched  REAL NOT NULL
                );

                CREATE TABLE IF NOT EXISTS flow_edges (
                    id             TEXT PRIMARY KEY,
                    flow_id        TEXT NOT NULL,
                    source         TEXT NOT NULL,
                    source_handle  TEXT,
                    target         TEXT NOT NULL,
                    target_handle  TEXT,
                    data           TEXT NOT NULL DEFAULT '{}',
                    last_touched   REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_nodes_flow ON flow_nodes(flow_id);
                CREATE INDEX IF NOT EXISTS idx_edges_flow ON flow_edges(flow_id);
            ''')
            conn.commit()
            return conn
        except sqlite3.Error as e:
            raise CollaboratorFailure(f"Cannot open flow database {self.db_path}: {e}",
                                      "persistence", e) from e

    def _execute(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        conn = self._get_db()
        try:
            rows = conn.execute(sql, params).fetchall()
            conn.commit()
            return rows
        except sqlite3.Error as e:
            self.logger.error("Flow store query failed: %s", e)
            raise CollaboratorFailure(f"Flow store query failed: {e}", "persistence", e) from e
        finally:
            self._release(conn)

    def create_flow(self, title: str, owner_id: Optional[str] = None) -> str:
        flow_id = str(uuid.uuid4())
        self._execute(
            'INSERT INTO flows (id, owner_id, title, last_edited) VALUES (?, ?, ?, ?)',
            (flow_id, owner_id, title, time.time()),
        )
        return flow_id

    def upsert_node(self, node_id, flow_id, kind, data, x, y) -> str:
        now = time.time()
        if node_id and self._execute('SELECT id FROM flow_nodes WHERE id = ?', (node_id,)):
            self._execute('''
                UPDATE flow_nodes SET type = ?, data = ?, x = ?, y = ?, last_touched = ?
                 WHERE id = ?
            ''', (kind, json.dumps(data), x, y, now, node_id))
            return node_id

        # Unknown id, insert it as given
        node_id = node_id or str(uuid.uuid4())
        self._execute('''
            INSERT INTO flow_nodes (id, flow_id, type, data, x, y, last_touched)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (node_id, flow_id, kind, json.dumps(data), x, y, now))
        return node_id

    def remove_node(self, node_id: str):
        conn = self._get_db()
        try:
            conn.execute('DELETE FROM flow_edges WHERE source = ? OR target = ?', (node_id, node_id))
            conn.execute('DELETE FROM flow_nodes WHERE id = ?', (node_id,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise CollaboratorFailure(f"Could not remove node {node_id}: {e}", "persistence", e) from e
        finally:
            self._release(conn)

    def list_nodes_by_flow(self, flow_id: str) -> List[PersistedNode]:
        rows = self._execute(
            'SELECT * FROM flow_nodes WHERE flow_id = ? ORDER BY rowid', (flow_id,))
        return [
            PersistedNode(row['id'], row['flow_id'], row['type'], json.loads(row['data']),
                          row['x'], row['y'])
            for row in rows
        ]

    def upsert_edge(self, edge_id, flow_id, source, source_handle, target, target_handle,
                    data) -> str:
        now = time.time()
        if edge_id and self._execute('SELECT id FROM flow_edges WHERE id = ?', (edge_id,)):
            self._execute('''
                UPDATE flow_edges
                   SET source = ?, source_handle = ?, target = ?, target_handle = ?,
                       data = ?, last_touched = ?
                 WHERE id = ?
            ''', (source, source_handle, target, target_handle, json.dumps(data), now, edge_id))
            return edge_id

        edge_id = edge_id or str(uuid.uuid4())
        self._execute('''
            INSERT INTO flow_edges
                (id, flow_id, source, source_handle, target, target_handle, data, last_touched)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (edge_id, flow_id, source, source_handle, target, target_handle,
              json.dumps(data), now))
        return edge_id

    def remove_edge(self, edge_id: str):
        self._execute('DELETE FROM flow_edges WHERE id = ?', (edge_id,))

    def list_edges_by_flow(self, flow_id: str) -> List[PersistedEdge]:
        rows = self._execute(
            'SELECT * FROM flow_edges WHERE flow_id = ? ORDER BY rowid', (flow_id,))
        return [
            PersistedEdge(row['id'], row['flow_id'], row['source'], row['target'],
                          row['source_handle'], row['target_handle'], json.loads(row['data']))
            for row in rows
        ]

    def update_flow_preview(self, flow_id: str, code: str):
        now = time.time()
        if self._execute('SELECT id FROM flows WHERE id = ?', (flow_id,)):
            self._execute('UPDATE flows SET code_preview = ?, last_edited = ? WHERE id = ?',
                          (code, now, flow_id))
        else:
            self._execute('''
                INSERT INTO flows (id, title, last_edited, code_preview) VALUES (?, '', ?, ?)
            ''', (flow_id, now, code))

    def get_flow_preview(self, flow_id: str) -> Optional[str]:
        rows = self._execute('SELECT code_preview FROM flows WHERE id = ?', (flow_id,))
        return rows[0]['code_preview'] if rows else None


class HttpFlowStore(FlowStore):
    """Store backed by a Convex-style HTTP function API.

    Mutations go to ``POST {base_url}/api/mutation`` and queries to
    ``POST {base_url}/api/query`` with ``{"path": "<module>:<function>", "args": {...}}``.
    """

    def __init__(self, base_url: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def _call(self, endpoint: str, path: str, args: Dict[str, Any]) -> Any:
        payload = {
            'path': path,
            'args': {key: value for key, value in args.items() if value is not None},
            'format': 'json',
        }
        try:
            resp = self.session.post(f"{self.base_url}/api/{endpoint}", json=payload,
                                     timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.warning("Flow store call %s failed: %s", path, e)
            raise CollaboratorFailure(f"Flow store call {path} failed: {e}", "persistence", e) from e

        if not isinstance(body, dict):
            raise CollaboratorFailure(
                f"Flow store call {path} failed: unexpected response {body!r}", "persistence")
        if body.get('status') != 'success':
            message = body.get('errorMessage', 'unknown error')
            raise CollaboratorFailure(f"Flow store call {path} failed: {message}", "persistence")
        return body.get('value')

    def create_flow(self, title: str, owner_id: Optional[str] = None) -> str:
        return self._call('mutation', 'flows:create', {'ownerId': owner_id, 'title': title})

    def upsert_node(self, node_id, flow_id, kind, data, x, y) -> str:
        return self._call('mutation', 'nodes:upsert', {
            'id': node_id, 'flowId': flow_id, 'type': kind, 'data': data,
            'x': float(x), 'y': float(y),
        })

    def remove_node(self, node_id: str):
        self._call('mutation', 'nodes:remove', {'id': node_id})

    def list_nodes_by_flow(self, flow_id: str) -> List[PersistedNode]:
        docs = self._call('query', 'nodes:listByFlow', {'flowId': flow_id}) or []
        return [
            PersistedNode(doc['_id'], doc['flowId'], doc['type'], doc.get('data') or {},
                          doc.get('x', 0.0), doc.get('y', 0.0))
            for doc in docs
        ]

    def upsert_edge(self, edge_id, flow_id, source, source_handle, target, target_handle,
                    data) -> str:
        return self._call('mutation', 'edges:upsert', {
            'id': edge_id, 'flowId': flow_id, 'source': source, 'sourceHandle': source_handle,
            'target': target, 'targetHandle': target_handle, 'data': data,
        })

    def remove_edge(self, edge_id: str):
        self._call('mutation', 'edges:remove', {'id': edge_id})

    def list_edges_by_flow(self, flow_id: str) -> List[PersistedEdge]:
        docs = self._call('query', 'edges:listByFlow', {'flowId': flow_id}) or []
        return [
            PersistedEdge(doc['_id'], doc['flowId'], doc['source'], doc['target'],
                          doc.get('sourceHandle'), doc.get('targetHandle'), doc.get('data') or {})
            for doc in docs
        ]

    def update_flow_preview(self, flow_id: str, code: str):
        self._call('mutation', 'flows:updatePreview', {'flowId': flow_id, 'code': code})


def store_from_config(config: SyncConfig) -> Optional[FlowStore]:
    """Build the store the configuration names; the HTTP store wins over SQLite."""
    if config.store_url:
        return HttpFlowStore(config.store_url, timeout=config.store_timeout)
    if config.sqlite_path:
        return SQLiteFlowStore(config.sqlite_path)
    return None
