"""
TypeScript Code Generator from IR nodes.

This module renders an IR node list back into TypeScript source text. Top-level
nodes are rendered in list order, one statement each, separated by a blank line;
children are only consulted by the renderer of their parent.
"""

import json
import logging
from typing import List, Dict, Optional, Tuple

from .ir import (
    IRNode, NodeKind, SourceRange, LiteralKind, KIND_ATTRIBUTES, UnknownAttrs,
    attributes_from_dict, children_index, InterfaceAttrs, FunctionAttrs, VariableAttrs,
    LiteralAttrs, ApiAttrs,
)
from .naming import materialized_name

logger = logging.getLogger(__name__)

PLACEHOLDER_BODY = "// TODO: implement function body"
CONSOLE_METHODS = ('log', 'info', 'warn', 'error', 'debug')


def quote_string(value: str) -> str:
    """Render raw string contents as a double-quoted literal, keeping existing escapes."""
    out = []
    index = 0
    while index < len(value):
        ch = value[index]
        if ch == '\\' and index + 1 < len(value):
            out.append(value[index:index + 2])
            index += 2
            continue
        if ch == '"':
            out.append('\\"')
        elif ch == '\n':
            out.append('\\n')
        elif ch == '\\':
            out.append('\\\\')
        else:
            out.append(ch)
        index += 1
    return '"' + ''.join(out) + '"'


def render_literal(attrs: LiteralAttrs) -> str:
    """Expression text of a literal: quoted for strings, raw token otherwise."""
    if attrs.literal_kind == LiteralKind.STRING:
        return quote_string(attrs.value or '')
    return attrs.value or 'undefined'


class TypeScriptGenerator:
    """Generates TypeScript code from IR nodes."""

    def __init__(self, indent_size: int = 2):
        self.indent_size = indent_size

    def generate(self, nodes: List[IRNode]) -> str:
        """Generate TypeScript source for a node list."""
        text, _ = self.generate_with_ranges(nodes)
        return text

    def generate_with_ranges(self, nodes: List[IRNode]) -> Tuple[str, Dict[str, SourceRange]]:
        """Generate source text and the offsets each top-level node was rendered at."""
        children = children_index(nodes)
        ranges: Dict[str, SourceRange] = {}
        blocks: List[str] = []
        offset = 0

        for node in nodes:
            if not node.is_top_level:
                continue
            block = self._generate_node(node, children.get(node.id, []))
            if blocks:
                offset += 2
            ranges[node.id] = SourceRange(offset, offset + len(block))
            offset += len(block)
            blocks.append(block)

        return "\n\n".join(blocks), ranges

    def _indent(self, text: str = "", level: int = 1) -> str:
        """Return properly indented text."""
        if not text:
            return text
        return " " * (level * self.indent_size) + text

    def _attributes(self, node: IRNode):
        kind = NodeKind.lookup(node.kind)
        attrs = node.attributes
        if kind is not None and not isinstance(attrs, KIND_ATTRIBUTES[kind]):
            raw = attrs.raw if isinstance(attrs, UnknownAttrs) else {}
            attrs = attributes_from_dict(kind, raw)
        return kind, attrs

    def _generate_node(self, node: IRNode, children: List[IRNode]) -> str:
        kind, attrs = self._attributes(node)
        if kind is None:
            logger.debug("Rendering marker for unknown node kind %r (%s)", node.kind_name, node.id)
            return f"// Unknown node type: {node.kind_name}"

        renderer = getattr(self, f"_generate_{kind.name.lower()}")
        return renderer(node, attrs, children)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def _generate_interface(self, node: IRNode, attrs: InterfaceAttrs, children) -> str:
        header = f"export interface {attrs.name}"
        if attrs.extends:
            header += f" extends {', '.join(attrs.extends)}"
        lines = [header + " {"]
        for member in attrs.members:
            optional = '?' if member.optional else ''
            lines.append(self._indent(f"{member.name}{optional}: {member.type or 'any'};"))
        lines.append("}")
        return "\n".join(lines)

    def _generate_variable(self, node: IRNode, attrs: VariableAttrs, children) -> str:
        return "export " + self._declaration(attrs)

    def _declaration(self, attrs: VariableAttrs) -> str:
        type_annotation = f": {attrs.declared_type}" if attrs.declared_type else ""
        initializer = attrs.initializer if attrs.initializer else "undefined"
        return f"{attrs.keyword or 'const'} {attrs.name}{type_annotation} = {initializer};"

    def _generate_function(self, node: IRNode, attrs: FunctionAttrs, children: List[IRNode]) -> str:
        async_prefix = 'async ' if attrs.is_async else ''
        params = ", ".join(param.render() for param in attrs.parameters)
        return_type = f": {attrs.return_type}" if attrs.return_type else ""
        lines = [f"export {async_prefix}function {attrs.name}({params}){return_type} {{"]
        lines.extend(self._indent(line) for line in self._function_body(attrs, children))
        lines.append("}")
        return "\n".join(lines)

    def _function_body(self, attrs: FunctionAttrs, children: List[IRNode]) -> List[str]:
        """Body lines, unindented, in order of preference."""
        if attrs.raw_body and attrs.raw_body.strip():
            return attrs.raw_body.split("\n")

        for child in children:
            kind, child_attrs = self._attributes(child)
            if kind == NodeKind.BINARY_OP and child_attrs.lhs and child_attrs.rhs:
                return [f"return {child_attrs.lhs} {child_attrs.operator} {child_attrs.rhs};"]

        if len(attrs.parameters) >= 2:
            first, second = attrs.parameters[0].name, attrs.parameters[1].name
            return [f"return {first} + {second};"]

        lines = []
        taken = {param.name for param in attrs.parameters}
        for child in children:
            kind, child_attrs = self._attributes(child)
            if kind != NodeKind.VARIABLE or not child_attrs.name:
                continue
            if child_attrs.name in taken:
                logger.debug("Skipping local %r that shadows a parameter or earlier local",
                             child_attrs.name)
                continue
            taken.add(child_attrs.name)
            lines.append(self._declaration(child_attrs))
        lines.append(PLACEHOLDER_BODY)
        return lines

    def _generate_api(self, node: IRNode, attrs: ApiAttrs, children) -> str:
        options = [
            self._indent(f"method: {json.dumps(attrs.method or 'GET')},", 2),
            self._indent(f"headers: {json.dumps(dict(attrs.headers))},", 2),
        ]
        if attrs.body:
            options.append(self._indent(f"body: {attrs.body},", 2))
        lines = [
            f"export async function {attrs.name or 'fetchData'}() {{",
            self._indent(f"const response = await fetch({json.dumps(attrs.endpoint or '')}, {{"),
            *options,
            self._indent("});"),
            self._indent("if (!response.ok) {"),
            self._indent("throw new Error(`Request failed with status ${response.status}`);", 2),
            self._indent("}"),
            self._indent("return response.json();"),
            "}",
        ]
        return "\n".join(lines)

    def _generate_import(self, node: IRNode, attrs, children) -> str:
        clauses = []
        if attrs.default:
            clauses.append(attrs.default)
        if attrs.namespace:
            clauses.append(f"* as {attrs.namespace}")
        elif attrs.named:
            clauses.append("{ " + ", ".join(attrs.named) + " }")
        if not clauses:
            return f"import {quote_string(attrs.module)};"
        type_prefix = 'type ' if attrs.type_only else ''
        return f"import {type_prefix}{', '.join(clauses)} from {quote_string(attrs.module)};"

    def _generate_export(self, node: IRNode, attrs, children) -> str:
        if attrs.default:
            return f"export default {attrs.default};"
        source = f" from {quote_string(attrs.module)}" if attrs.module else ""
        if attrs.is_star:
            alias = f" as {attrs.namespace}" if attrs.namespace else ""
            return f"export *{alias}{source};"
        named = "{ " + ", ".join(attrs.named) + " }" if attrs.named else "{}"
        return f"export {named}{source};"

    # ------------------------------------------------------------------
    # Expressions materialized as top-level bindings
    # ------------------------------------------------------------------

    def _binding(self, node: IRNode, initializer: str) -> str:
        return f"export const {materialized_name(node)} = {initializer};"

    def _not_connected(self, node: IRNode, what: str) -> str:
        return f"// {what} {materialized_name(node)} is not fully connected"

    def _generate_literal(self, node: IRNode, attrs, children) -> str:
        return self._binding(node, render_literal(attrs))

    def _generate_binary_op(self, node: IRNode, attrs, children) -> str:
        if not (attrs.lhs and attrs.rhs):
            return self._not_connected(node, f"Operation {attrs.operator!r}")
        return self._binding(node, f"{attrs.lhs} {attrs.operator} {attrs.rhs}")

    def _generate_call(self, node: IRNode, attrs, children) -> str:
        if not attrs.func_name:
            return self._not_connected(node, "Call")
        return self._binding(node, f"{attrs.func_name}({', '.join(attrs.args)})")

    def _generate_console(self, node: IRNode, attrs, children) -> str:
        method = attrs.label if attrs.label in CONSOLE_METHODS else 'log'
        value = attrs.value_expr or 'undefined'
        return self._binding(node, f"(() => {{ console.{method}({value}); return {value}; }})()")

    def _generate_property_access(self, node: IRNode, attrs, children) -> str:
        if not (attrs.obj_expr and attrs.property):
            return self._not_connected(node, "Property access")
        return self._binding(node, f"({attrs.obj_expr}).{attrs.property}")

    def _generate_conditional(self, node: IRNode, attrs, children) -> str:
        if not (attrs.test_expr and attrs.when_true and attrs.when_false):
            return self._not_connected(node, "Conditional")
        return self._binding(node, f"{attrs.test_expr} ? {attrs.when_true} : {attrs.when_false}")

    def _generate_object(self, node: IRNode, attrs, children) -> str:
        entries = []
        for prop in attrs.properties:
            if not prop.key:
                continue
            entries.append(f"{prop.key}: {prop.value}" if prop.value else prop.key)
        body = "{ " + ", ".join(entries) + " }" if entries else "{}"
        return self._binding(node, body)
