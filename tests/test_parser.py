"""
Unit tests for the structural TypeScript parser.
"""

import pytest
from hypothesis import given, strategies as st

from flow_sync_core.exceptions import TokenizeError
from flow_sync_core.ir import (
    NodeKind, LiteralKind, Member, Parameter, ApiAttrs, IRNode, make_node_id,
    validate_parent_references,
)
from flow_sync_core.typescript_parser import TypeScriptParser
from flow_sync_core.typescript_generator import TypeScriptGenerator


def kinds(nodes):
    return [node.kind for node in nodes]


class TestTypeScriptParser:
    """Test cases for TypeScriptParser."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = TypeScriptParser()

    def test_interface(self):
        """Test parsing an interface with two members."""
        nodes = self.parser.parse("interface User { id: string; name: string; }")

        assert len(nodes) == 1
        interface = nodes[0]
        assert interface.kind == NodeKind.INTERFACE
        assert interface.attributes.name == "User"
        assert interface.attributes.members == [
            Member(name="id", type="string"),
            Member(name="name", type="string"),
        ]
        assert interface.parent_id is None

    def test_interface_optional_member_and_extends(self):
        """Test optional members and extends clauses."""
        nodes = self.parser.parse(
            "export interface Admin extends User, Auditable {\n"
            "  level?: number;\n"
            "  tags: Array<string>;\n"
            "}"
        )

        attrs = nodes[0].attributes
        assert attrs.extends == ["User", "Auditable"]
        assert attrs.members == [
            Member(name="level", type="number", optional=True),
            Member(name="tags", type="Array<string>"),
        ]

    def test_function_with_sum(self):
        """Test a typed function that returns a sum."""
        text = "function sum(a: number, b: number): number { return a + b; }"
        nodes = self.parser.parse(text)

        assert kinds(nodes) == [NodeKind.FUNCTION, NodeKind.BINARY_OP]
        function, binary = nodes
        assert function.attributes.name == "sum"
        assert function.attributes.parameters == [
            Parameter(name="a", type="number"),
            Parameter(name="b", type="number"),
        ]
        assert function.attributes.return_type == "number"
        assert function.attributes.raw_body == "return a + b;"
        assert function.source_range == (0, len(text))

        assert binary.parent_id == function.id
        assert binary.attributes.operator == "+"
        assert binary.attributes.lhs == "a"
        assert binary.attributes.rhs == "b"

    def test_async_function_with_generics(self):
        """Test that type parameters are skipped and async is kept."""
        nodes = self.parser.parse(
            "export async function load<T>(url: string): Promise<T> {\n"
            "  return fetch(url);\n"
            "}"
        )

        function = nodes[0]
        assert function.kind == NodeKind.FUNCTION
        assert function.attributes.is_async is True
        assert function.attributes.return_type == "Promise<T>"
        assert nodes[1].kind == NodeKind.CALL
        assert nodes[1].attributes.func_name == "fetch"
        assert nodes[1].attributes.args == ["url"]

    def test_generated_call_name_is_reclassified(self):
        """Test that a call_ declaration with a call initializer becomes a call node."""
        nodes = self.parser.parse("const call_result = sum(2, 3);")

        call = nodes[0]
        assert call.kind == NodeKind.CALL
        assert call.attributes.func_name == "sum"
        assert call.attributes.args == ["2", "3"]
        assert call.attributes.name == "call_result"
        assert kinds(nodes[1:]) == [NodeKind.LITERAL, NodeKind.LITERAL]
        assert all(node.parent_id == call.id for node in nodes[1:])

    def test_plain_name_stays_variable(self):
        """Test that an ordinary declaration keeps its initializer text."""
        nodes = self.parser.parse("const result = sum(2, 3);")

        variable = nodes[0]
        assert variable.kind == NodeKind.VARIABLE
        assert variable.attributes.name == "result"
        assert variable.attributes.initializer == "sum(2, 3)"
        assert variable.attributes.keyword == "const"
        assert nodes[1].kind == NodeKind.CALL
        assert nodes[1].parent_id == variable.id

    def test_reclassification_can_be_disabled(self):
        """Test the switch that turns name-based reclassification off."""
        parser = TypeScriptParser(reclassify_generated_names=False)
        nodes = parser.parse("const call_result = sum(2, 3);")

        assert nodes[0].kind == NodeKind.VARIABLE
        assert nodes[0].attributes.initializer == "sum(2, 3)"

    def test_generated_name_with_wrong_shape_stays_variable(self):
        """Test that the name alone is not enough for reclassification."""
        nodes = self.parser.parse("const bin_total = compute();")

        assert nodes[0].kind == NodeKind.VARIABLE
        assert nodes[0].attributes.name == "bin_total"

    def test_console_binding_is_reclassified(self):
        """Test recognition of the console pass-through binding."""
        nodes = self.parser.parse(
            "export const log_a1 = (() => { console.warn(total); return total; })();")

        assert len(nodes) == 1
        console = nodes[0]
        assert console.kind == NodeKind.CONSOLE
        assert console.attributes.value_expr == "total"
        assert console.attributes.label == "warn"
        assert console.attributes.name == "log_a1"

    def test_literal_kinds(self):
        """Test string, number, negative number and boolean literals."""
        nodes = self.parser.parse(
            "const lit_s = 'hi';\nconst lit_n = -4.5;\nconst lit_b = true;")

        assert kinds(nodes) == [NodeKind.LITERAL] * 3
        assert [n.attributes.value for n in nodes] == ["hi", "-4.5", "true"]
        assert [n.attributes.literal_kind for n in nodes] == [
            LiteralKind.STRING, LiteralKind.NUMBER, LiteralKind.BOOLEAN,
        ]

    def test_every_declarator_is_parsed(self):
        """Test a statement with several declarators."""
        nodes = self.parser.parse("let a = 1, b: string, c = a;")

        variables = [n for n in nodes if n.kind == NodeKind.VARIABLE]
        assert [v.attributes.name for v in variables] == ["a", "b", "c"]
        assert all(v.attributes.keyword == "let" for v in variables)
        assert variables[1].attributes.declared_type == "string"
        assert variables[1].attributes.initializer is None
        assert variables[2].attributes.initializer == "a"

    def test_expression_kinds_in_initializer(self):
        """Test conditional, object and property access inside an initializer."""
        nodes = self.parser.parse("const view = ready ? { id: user.id, name } : null;")

        variable, conditional = nodes[0], nodes[1]
        assert conditional.kind == NodeKind.CONDITIONAL
        assert conditional.parent_id == variable.id
        assert conditional.attributes.test_expr == "ready"
        assert conditional.attributes.when_false == "null"

        obj = nodes[2]
        assert obj.kind == NodeKind.OBJECT
        assert obj.parent_id == conditional.id
        assert [(p.key, p.value) for p in obj.attributes.properties] == [
            ("id", "user.id"), ("name", None),
        ]

        access = nodes[3]
        assert access.kind == NodeKind.PROPERTY_ACCESS
        assert access.parent_id == obj.id
        assert access.attributes.obj_expr == "user"
        assert access.attributes.property == "id"

    def test_parentheses_are_transparent(self):
        """Test that a parenthesized expression maps to its inner node."""
        nodes = self.parser.parse("const x = (a * (b - 1));")

        assert kinds(nodes) == [
            NodeKind.VARIABLE, NodeKind.BINARY_OP, NodeKind.BINARY_OP, NodeKind.LITERAL,
        ]
        assert nodes[1].attributes.operator == "*"
        assert nodes[2].attributes.operator == "-"
        assert nodes[2].parent_id == nodes[1].id

    def test_unrecognized_expressions_still_walk_children(self):
        """Test that sub-expressions of unmodeled expressions are still walked."""
        nodes = self.parser.parse("const items = [1, 'two'];\nconst fn = (x) => x + 1;")

        assert kinds(nodes) == [
            NodeKind.VARIABLE, NodeKind.LITERAL, NodeKind.LITERAL,
            NodeKind.VARIABLE, NodeKind.BINARY_OP, NodeKind.LITERAL,
        ]
        assert nodes[1].parent_id == nodes[0].id
        assert nodes[4].parent_id == nodes[3].id

    def test_function_body_locals(self):
        """Test that body declarations become child variables."""
        nodes = self.parser.parse(
            "function f() {\n"
            "  const x = a * 2;\n"
            "  console.log(x);\n"
            "}"
        )

        function = nodes[0]
        assert function.attributes.raw_body == "const x = a * 2;\nconsole.log(x);"
        assert kinds(nodes) == [
            NodeKind.FUNCTION, NodeKind.VARIABLE, NodeKind.BINARY_OP, NodeKind.LITERAL,
            NodeKind.CALL, NodeKind.PROPERTY_ACCESS,
        ]
        assert nodes[1].parent_id == function.id
        assert nodes[2].parent_id == nodes[1].id
        assert nodes[4].parent_id == function.id
        assert nodes[4].attributes.func_name == "console.log"
        assert nodes[5].parent_id == nodes[4].id

    def test_empty_body_has_no_raw_body(self):
        """Test that a blank body is recorded as None."""
        nodes = self.parser.parse("function noop() {\n\n}")
        assert nodes[0].attributes.raw_body is None

    def test_imports(self):
        """Test the import forms."""
        nodes = self.parser.parse(
            'import { a, b as c } from "./m";\n'
            "import React, * as R from 'react';\n"
            'import type { T } from "./types";\n'
            'import "./side-effect";\n'
        )

        assert kinds(nodes) == [NodeKind.IMPORT] * 4
        assert nodes[0].attributes.named == ["a", "b as c"]
        assert nodes[0].attributes.module == "./m"
        assert nodes[1].attributes.default == "React"
        assert nodes[1].attributes.namespace == "R"
        assert nodes[2].attributes.type_only is True
        assert nodes[3].attributes.module == "./side-effect"
        assert nodes[3].attributes.named == []

    def test_exports(self):
        """Test the export forms that become export nodes."""
        nodes = self.parser.parse(
            'export { a, b } from "./m";\n'
            'export * as ns from "./n";\n'
            "export default total;\n"
            "export { local };\n"
        )

        assert kinds(nodes) == [NodeKind.EXPORT] * 4
        assert nodes[0].attributes.named == ["a", "b"]
        assert nodes[0].attributes.module == "./m"
        assert nodes[1].attributes.is_star is True
        assert nodes[1].attributes.namespace == "ns"
        assert nodes[2].attributes.default == "total"
        assert nodes[3].attributes.module is None

    def test_unsupported_statements_are_skipped(self):
        """Test that type aliases, classes and control flow are left out."""
        nodes = self.parser.parse(
            "type Alias = string;\n"
            "class A { x = 1 }\n"
            "if (ready) { start(); }\n"
            "while (true) {}\n"
            "const z = 1;\n"
        )

        assert kinds(nodes) == [NodeKind.VARIABLE, NodeKind.LITERAL]
        assert nodes[0].attributes.name == "z"

    def test_tokenize_error_propagates(self):
        """Test that text the lexer rejects raises TokenizeError."""
        with pytest.raises(TokenizeError) as exc_info:
            self.parser.parse("const a = (1;")
        assert exc_info.value.offset == 10

    def test_ids_follow_span_and_kind(self):
        """Test the id derivation of a parsed node."""
        nodes = self.parser.parse("const a = 1;")

        variable = nodes[0]
        assert variable.source_range == (0, 11)
        assert variable.id == make_node_id(0, 11, NodeKind.VARIABLE)

    def test_api_function_round_trip(self):
        """Test that a generated request function is read back as an api node."""
        api = ApiAttrs(
            name="createUser",
            method="POST",
            endpoint="https://api.example.com/users",
            headers=[("Content-Type", "application/json")],
            body="JSON.stringify({ name: 'Ada' })",
        )
        text = TypeScriptGenerator().generate([IRNode(id="n1", kind=NodeKind.API, attributes=api)])

        nodes = self.parser.parse(text)

        assert len(nodes) == 1
        assert nodes[0].kind == NodeKind.API
        assert nodes[0].attributes == api

    def test_hand_written_fetch_stays_function(self):
        """Test that an async function only becomes an api node on the exact template."""
        nodes = self.parser.parse(
            "async function getData() {\n"
            "  const response = await fetch('/x');\n"
            "  return response.json();\n"
            "}"
        )
        assert nodes[0].kind == NodeKind.FUNCTION


_STATEMENTS = [
    "const a = 1;",
    "let b: string = 'x' + y;",
    "interface P { id: number; }",
    "function f(x, y) { return x * y; }",
    "const call_c = go(1, z.w);",
    "export const cond_k = ok ? 1 : 2;",
    "import { q } from './q';",
    "class Skipped {}",
    "const o = { k: 1, n: f(2) };",
]


@given(st.lists(st.sampled_from(_STATEMENTS), max_size=8))
def test_parse_is_deterministic(statements):
    """Property test: parsing the same text twice yields the same ids and kinds."""
    text = "\n".join(statements)
    parser = TypeScriptParser()

    first = parser.parse(text)
    second = TypeScriptParser().parse(text)

    assert [(n.id, n.kind) for n in first] == [(n.id, n.kind) for n in second]


@given(st.lists(st.sampled_from(_STATEMENTS), max_size=8))
def test_parse_has_no_orphans(statements):
    """Property test: every parent id resolves within the parsed list."""
    nodes = TypeScriptParser().parse("\n".join(statements))
    assert validate_parent_references(nodes) == []
