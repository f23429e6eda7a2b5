"""
Naming conventions for bindings the generator has to invent.

Expression nodes rendered at top level are materialized as ``export const <name>``.
The name is ``<prefix>_<sanitized id>``; on reparse the same prefix tells the parser
that the declaration came from the generator and should become that kind again.
"""

import re
from typing import Dict, Optional

from .ir import IRNode, NodeKind

GENERATED_PREFIXES: Dict[NodeKind, str] = {
    NodeKind.BINARY_OP: "bin",
    NodeKind.CONSOLE: "log",
    NodeKind.CALL: "call",
    NodeKind.PROPERTY_ACCESS: "prop",
    NodeKind.CONDITIONAL: "cond",
    NodeKind.LITERAL: "lit",
    NodeKind.OBJECT: "obj",
    NodeKind.API: "api",
}

_GENERATED_NAME = re.compile(
    r'^(?P<prefix>' + '|'.join(sorted(GENERATED_PREFIXES.values())) + r')_[A-Za-z0-9_]+$'
)
_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_]')


def synthesized_name(kind: Optional[NodeKind], node_id: str) -> str:
    """Deterministic identifier for a node, derived only from its kind and id."""
    prefix = GENERATED_PREFIXES.get(kind, "node") if kind is not None else "node"
    return f"{prefix}_{_UNSAFE_CHARS.sub('_', node_id)}"


def match_generated_name(name: str) -> Optional[NodeKind]:
    """Return the kind whose generated-name convention ``name`` follows, if any."""
    match = _GENERATED_NAME.match(name)
    if not match:
        return None
    prefix = match.group('prefix')
    for kind, kind_prefix in GENERATED_PREFIXES.items():
        if kind_prefix == prefix:
            return kind
    return None


def materialized_name(node: IRNode) -> str:
    """Name under which a top-level expression node is bound in generated code."""
    declared = getattr(node.attributes, 'name', None)
    if declared:
        return declared
    return synthesized_name(NodeKind.lookup(node.kind), node.id)
