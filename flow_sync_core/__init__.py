"""
Flow Sync Core - keeps a visual node graph and its TypeScript source in step.

This package provides the structural TypeScript parser, the code generator, the
graph adapter that gives visual connections their meaning, and the controller
that synchronizes both views without feedback loops.
"""

__version__ = "0.1.0"
__author__ = "Flow Sync Development Team"

from .exceptions import FlowSyncError, ParseError, TokenizeError, ValidationError, CollaboratorFailure
from .ir import IRNode, NodeKind, LiteralKind, SourceRange, Parameter, Member, ObjectProperty
from .lexer import tokenize, Token, TokenType
from .typescript_parser import TypeScriptParser
from .typescript_generator import TypeScriptGenerator
from .models import VisualNode, VisualEdge, VisualGraph, Handle, HandleDirection
from .graph_adapter import GraphAdapter
from .node_factory import create_node, default_attributes
from .layout import LayoutEngine, LayeredLayout
from .persistence import (
    FlowStore, InMemoryFlowStore, SQLiteFlowStore, HttpFlowStore, store_from_config,
)
from .diagnostics import (
    Diagnostic, Severity, DiagnosticsProvider, LexerDiagnosticsProvider,
    TscDiagnosticsProvider, map_diagnostics_to_nodes, provider_from_config,
)
from .config import SyncConfig
from .sync_controller import SyncController, SyncDirection, SyncNotice

__all__ = [
    # Errors
    'FlowSyncError', 'ParseError', 'TokenizeError', 'ValidationError', 'CollaboratorFailure',

    # IR
    'IRNode', 'NodeKind', 'LiteralKind', 'SourceRange', 'Parameter', 'Member', 'ObjectProperty',

    # Text side
    'tokenize', 'Token', 'TokenType', 'TypeScriptParser', 'TypeScriptGenerator',

    # Graph side
    'VisualNode', 'VisualEdge', 'VisualGraph', 'Handle', 'HandleDirection', 'GraphAdapter',
    'create_node', 'default_attributes',

    # Collaborators
    'LayoutEngine', 'LayeredLayout',
    'FlowStore', 'InMemoryFlowStore', 'SQLiteFlowStore', 'HttpFlowStore', 'store_from_config',
    'Diagnostic', 'Severity', 'DiagnosticsProvider', 'LexerDiagnosticsProvider',
    'TscDiagnosticsProvider', 'map_diagnostics_to_nodes', 'provider_from_config',

    # Synchronization
    'SyncConfig', 'SyncController', 'SyncDirection', 'SyncNotice',
]
