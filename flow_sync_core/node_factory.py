"""
Factory for nodes created on the canvas.

New nodes get a random id and the starter attributes the palette shows for their
kind; the user fills in the rest through connections and edits.
"""

from typing import Optional, Tuple, Union

from .ir import (
    NodeKind, NodeAttributes, new_node_id, LiteralKind, ObjectProperty, InterfaceAttrs,
    FunctionAttrs, VariableAttrs, LiteralAttrs, BinaryOpAttrs, CallAttrs, PropertyAccessAttrs,
    ConditionalAttrs, ObjectAttrs, ConsoleAttrs, ApiAttrs, ImportAttrs, ExportAttrs, UnknownAttrs,
)
from .models import VisualNode


def default_attributes(kind: Union[NodeKind, str]) -> NodeAttributes:
    """Starter attributes for a freshly created node of ``kind``."""
    node_kind = NodeKind.lookup(kind)
    if node_kind == NodeKind.VARIABLE:
        return VariableAttrs(name="newVar", declared_type="number")
    if node_kind == NodeKind.FUNCTION:
        return FunctionAttrs(name="myFunction", parameters=[], is_async=False)
    if node_kind == NodeKind.BINARY_OP:
        return BinaryOpAttrs(operator="+")
    if node_kind == NodeKind.LITERAL:
        return LiteralAttrs(value="0", literal_kind=LiteralKind.NUMBER)
    if node_kind == NodeKind.API:
        return ApiAttrs(name="fetchData", method="GET",
                        endpoint="https://api.example.com/endpoint", headers=[])
    if node_kind == NodeKind.CONSOLE:
        return ConsoleAttrs(label="log")
    if node_kind == NodeKind.CALL:
        return CallAttrs(func_name=None, args=[])
    if node_kind == NodeKind.PROPERTY_ACCESS:
        return PropertyAccessAttrs(property="prop")
    if node_kind == NodeKind.CONDITIONAL:
        return ConditionalAttrs()
    if node_kind == NodeKind.OBJECT:
        return ObjectAttrs(properties=[ObjectProperty("id", "''"), ObjectProperty("name", "''")])
    if node_kind == NodeKind.INTERFACE:
        return InterfaceAttrs(name="NewInterface")
    if node_kind == NodeKind.IMPORT:
        return ImportAttrs(module="./module", default="NewImport")
    if node_kind == NodeKind.EXPORT:
        return ExportAttrs(named=["NewExport"])

    kind_name = str(kind)
    return UnknownAttrs(raw={'name': f"New{kind_name[:1].upper()}{kind_name[1:]}"})


def create_node(kind: Union[NodeKind, str], position: Tuple[float, float] = (0.0, 0.0),
                parent_id: Optional[str] = None, node_id: Optional[str] = None) -> VisualNode:
    """Create a visual node with default attributes for ``kind``."""
    return VisualNode(
        id=node_id or new_node_id(),
        kind=kind,
        position=position,
        data=default_attributes(kind),
        parent_id=parent_id,
    )
