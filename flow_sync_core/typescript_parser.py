"""
TypeScript to IR Parser.

This module converts TypeScript source text into the flat IR node list the graph
editor works with. It is a structural parser, not a compiler front end: it walks
top-level declarations (interfaces, functions, variable statements, imports and
exports) and, inside function bodies and initializers, the expression shapes that
have a node kind of their own. Anything it does not understand is skipped rather
than guessed at.

Node ids are derived from each construct's (start, end, kind) so that reparsing
unchanged text yields the same ids.
"""

import json
import logging
import re
import textwrap
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .ir import (
    IRNode, NodeKind, SourceRange, make_node_id, LiteralKind, Parameter, Member,
    ObjectProperty, InterfaceAttrs, FunctionAttrs, VariableAttrs, LiteralAttrs,
    BinaryOpAttrs, CallAttrs, PropertyAccessAttrs, ConditionalAttrs, ObjectAttrs,
    ConsoleAttrs, ApiAttrs, ImportAttrs, ExportAttrs,
)
from .lexer import Token, TokenType, tokenize
from .naming import match_generated_name

logger = logging.getLogger(__name__)


BINARY_PRECEDENCE = {
    '??': 1,
    '||': 2,
    '&&': 3,
    '|': 4,
    '^': 5,
    '&': 6,
    '==': 7, '!=': 7, '===': 7, '!==': 7,
    '<': 8, '>': 8, '<=': 8, '>=': 8, 'instanceof': 8, 'in': 8,
    '<<': 9, '>>': 9, '>>>': 9,
    '+': 10, '-': 10,
    '*': 11, '/': 11, '%': 11,
    '**': 12,
}

ASSIGNMENT_OPERATORS = {
    '=', '+=', '-=', '*=', '/=', '%=', '**=', '<<=', '>>=', '>>>=', '&=', '|=', '^=',
    '&&=', '||=', '??=',
}

PREFIX_OPERATORS = {'!', '~', '+', '-', '++', '--'}
PREFIX_WORDS = {'typeof', 'void', 'delete', 'await'}

STATEMENT_STARTERS = {
    'import', 'export', 'function', 'const', 'let', 'var', 'interface', 'type', 'class',
    'async', 'enum', 'declare', 'abstract', 'namespace', 'module', 'return', 'if', 'for',
    'while', 'switch', 'try', 'do', 'throw', 'break', 'continue',
}

# Tokens that may follow a closing brace without ending the statement it belongs to
_BLOCK_CONTINUATIONS = {
    '.', '?.', '(', '[', ',', '=', '?', ':', ';', '+', '-', '*', '/', '%', '&&', '||',
    '??', '===', '!==', '==', '!=', '<', '>', '<=', '>=', '|', '&',
}

# Tokens after which a type annotation is not finished yet
_TYPE_CONTINUATIONS = {':', '|', '&', '<', ',', '=>', '(', '[', '?', '.', '{'}

_TYPE_ARGUMENT_PUNCTS = {
    '.', ',', '[', ']', '|', '&', '<', '>', '>>', '>>>', '=>', '(', ')', '{', '}', ':', ';', '?',
}

_CONSOLE_IIFE = re.compile(
    r'^\(\(\)\s*=>\s*\{\s*console\.(?P<label>log|info|warn|error|debug)\((?P<value>.*)\);'
    r'\s*return\s+(?P=value);\s*\}\)\(\)$',
    re.DOTALL,
)

_API_BODY = re.compile(
    r'^const response = await fetch\((?P<endpoint>"(?:[^"\\]|\\.)*"), \{\n'
    r'\s*method: "(?P<method>[A-Z]+)",\n'
    r'\s*headers: (?P<headers>\{.*?\}),\n'
    r'(?:\s*body: (?P<body>.*?),\n)?'
    r'\s*\}\);\n'
    r'if \(!response\.ok\) \{\n'
    r'\s*throw new Error\(`Request failed with status \$\{response\.status\}`\);\n'
    r'\}\n'
    r'return response\.json\(\);$',
    re.DOTALL,
)


class _Unrecognized(Exception):
    """Internal signal: the construct at the cursor has no IR counterpart."""


@dataclass
class Expr:
    """Lightweight expression tree used only while walking a statement."""
    kind: str
    start: int
    end: int
    children: List['Expr'] = field(default_factory=list)
    operator: Optional[str] = None
    name: Optional[str] = None
    properties: List[Tuple[str, Optional['Expr']]] = field(default_factory=list)


def unwrap_parens(expr: Expr) -> Expr:
    while expr.kind == 'paren':
        expr = expr.children[0]
    return expr


def unquote(token_text: str) -> str:
    """Strip the quotes of a string token, leaving escapes as written."""
    return token_text[1:-1]


def dedent_body(text: str) -> Optional[str]:
    """Normalize a function body to its dedented statements, or None when blank."""
    lines = text.split('\n')
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return None
    lines[0] = lines[0].lstrip() if len(lines) == 1 else lines[0]
    body = textwrap.dedent('\n'.join(lines))
    body = '\n'.join(line.rstrip() for line in body.split('\n')).strip()
    return body or None


class TypeScriptParser:
    """Parses TypeScript source text into IR nodes."""

    def __init__(self, reclassify_generated_names: bool = True):
        self.reclassify_generated_names = reclassify_generated_names

    def parse(self, source_text: str) -> List[IRNode]:
        """Parse source text into a flat IR node list.

        Raises TokenizeError when the text cannot be tokenized; every other
        problem degrades to leaving the construct out of the result.
        """
        tokens = tokenize(source_text)
        walker = _SourceWalker(source_text, tokens, self.reclassify_generated_names)
        return walker.run()


class _SourceWalker:
    """Holds the cursor and output of a single parse call."""

    def __init__(self, text: str, tokens: List[Token], reclassify: bool):
        self.text = text
        self.tokens = tokens
        self.reclassify = reclassify
        self.index = 0
        self.limit = len(tokens) - 1
        self.nodes: List[IRNode] = []

    # ------------------------------------------------------------------
    # Cursor helpers
    # ------------------------------------------------------------------

    def peek(self, offset: int = 0) -> Token:
        index = min(self.index + offset, self.limit)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.peek()
        if self.index < self.limit:
            self.index += 1
        return token

    def at_end(self) -> bool:
        return self.index >= self.limit

    def expect_punct(self, value: str) -> Token:
        token = self.peek()
        if not token.is_punct(value):
            raise _Unrecognized(f"expected {value!r}, found {token.value!r}")
        return self.advance()

    def expect_identifier(self) -> Token:
        token = self.peek()
        if token.type != TokenType.IDENTIFIER:
            raise _Unrecognized(f"expected identifier, found {token.value!r}")
        return self.advance()

    def accept_semicolon(self) -> Optional[Token]:
        if self.peek().is_punct(';'):
            return self.advance()
        return None

    def end_statement(self):
        """Consume a statement terminator, honouring automatic semicolon insertion."""
        token = self.peek()
        if token.is_punct(';'):
            self.advance()
        elif not (self.at_end() or token.newline_before or token.is_punct('}')):
            raise _Unrecognized(f"unexpected {token.value!r} after statement")

    def matching_close(self, open_index: int) -> int:
        """Index of the bracket closing the one at ``open_index``."""
        depth = 0
        for index in range(open_index, len(self.tokens)):
            token = self.tokens[index]
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                depth -= 1
                if depth == 0:
                    return index
        raise _Unrecognized("unbalanced brackets")

    def skip_balanced(self) -> Token:
        close = self.matching_close(self.index)
        self.index = close + 1
        return self.tokens[close]

    def skip_statement(self):
        """Advance past one statement the parser does not model."""
        depth = 0
        first = True
        while self.index < self.limit:
            token = self.peek()
            if (not first and depth == 0 and token.newline_before
                    and token.is_word(*STATEMENT_STARTERS)):
                return
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                if depth == 0:
                    return
                depth -= 1
                self.advance()
                first = False
                if depth == 0 and token.value == '}':
                    follower = self.peek()
                    if not (follower.is_word('else', 'catch', 'finally', 'while', 'as')
                            or (follower.type == TokenType.PUNCTUATOR
                                and follower.value in _BLOCK_CONTINUATIONS)):
                        return
                continue
            elif token.is_punct(';') and depth == 0:
                self.advance()
                return
            self.advance()
            first = False

    def skip_type(self, stops: Tuple[str, ...] = (), stop_at_brace: bool = False) -> str:
        """Consume a type annotation and return its source text."""
        depth = 0
        angle = 0
        start = self.peek().start
        end = start
        prev: Optional[Token] = None
        while self.index < self.limit:
            token = self.peek()
            if depth == 0 and angle == 0:
                if token.type == TokenType.PUNCTUATOR and token.value in stops:
                    break
                if (stop_at_brace and token.is_punct('{') and prev is not None
                        and not prev.is_punct(*_TYPE_CONTINUATIONS)):
                    break
                if (prev is not None and token.newline_before and not token.is_punct('|', '&')
                        and not prev.is_punct(*_TYPE_CONTINUATIONS)):
                    break
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                if depth == 0:
                    break
                depth -= 1
            elif token.is_punct('<'):
                angle += 1
            elif token.is_punct('>', '>>', '>>>'):
                angle = max(0, angle - len(token.value))
            end = token.end
            prev = token
            self.advance()
        if end == start:
            raise _Unrecognized("empty type annotation")
        return self.text[start:end]

    def source(self, start: int, end: int) -> str:
        return self.text[start:end]

    # ------------------------------------------------------------------
    # Node emission
    # ------------------------------------------------------------------

    def emit(self, kind: NodeKind, attributes, start: int, end: int,
             parent_id: Optional[str] = None) -> IRNode:
        node = IRNode(
            id=make_node_id(start, end, kind),
            kind=kind,
            attributes=attributes,
            parent_id=parent_id,
            source_range=SourceRange(start, end),
        )
        self.nodes.append(node)
        return node

    # ------------------------------------------------------------------
    # Top level
    # ------------------------------------------------------------------

    def run(self) -> List[IRNode]:
        while not self.at_end():
            self.statement(self.top_level_statement)
        return self.nodes

    def statement(self, handler, *args):
        """Run one statement handler, rolling back and skipping on a recognition gap."""
        start_index = self.index
        mark = len(self.nodes)
        try:
            handler(*args)
        except _Unrecognized as gap:
            token = self.tokens[start_index]
            logger.debug("Skipping unrecognized statement at offset %d: %s", token.start, gap)
            del self.nodes[mark:]
            self.index = start_index
            self.skip_statement()
        if self.index == start_index:
            self.advance()

    def at_function(self) -> bool:
        token = self.peek()
        if token.is_word('function'):
            return True
        following = self.peek(1)
        return (token.is_word('async') and following.is_word('function')
                and not following.newline_before)

    def top_level_statement(self):
        token = self.peek()
        following = self.peek(1)
        if token.is_punct(';'):
            self.advance()
        elif token.is_word('import') and not following.is_punct('(', '.'):
            self.import_declaration()
        elif token.is_word('export'):
            self.export_declaration()
        elif self.at_function():
            self.function_declaration(token.start)
        elif token.is_word('interface') and following.type == TokenType.IDENTIFIER:
            self.interface_declaration(token.start)
        elif token.is_word('const', 'let', 'var') and not following.is_word('enum'):
            self.variable_statement(token.start, parent_id=None)
        else:
            raise _Unrecognized(f"unsupported top-level statement {token.value!r}")

    def import_declaration(self):
        start = self.advance().start
        attrs = ImportAttrs()
        token = self.peek()
        if token.is_word('type') and (self.peek(1).is_punct('{', '*')
                                      or (self.peek(1).type == TokenType.IDENTIFIER
                                          and not self.peek(1).is_word('from'))):
            attrs.type_only = True
            self.advance()

        if self.peek().type == TokenType.STRING:
            attrs.module = unquote(self.advance().value)
        else:
            if self.peek().type == TokenType.IDENTIFIER:
                attrs.default = self.advance().value
                if self.peek().is_punct(','):
                    self.advance()
            if self.peek().is_punct('*'):
                self.advance()
                if not self.advance().is_word('as'):
                    raise _Unrecognized("namespace import without 'as'")
                attrs.namespace = self.expect_identifier().value
            elif self.peek().is_punct('{'):
                attrs.named = self.specifier_list()
            if not self.advance().is_word('from'):
                raise _Unrecognized("import without 'from'")
            module = self.advance()
            if module.type != TokenType.STRING:
                raise _Unrecognized("import module is not a string")
            attrs.module = unquote(module.value)

        end = self.tokens[self.index - 1].end
        self.end_statement()
        self.emit(NodeKind.IMPORT, attrs, start, end)

    def specifier_list(self) -> List[str]:
        """Read ``{ a, b as c }`` and return the specifiers as normalized text."""
        self.expect_punct('{')
        specifiers: List[str] = []
        current: List[str] = []
        while not self.peek().is_punct('}'):
            token = self.advance()
            if token.is_punct(','):
                if current:
                    specifiers.append(' '.join(current))
                current = []
            else:
                current.append(token.value)
        self.expect_punct('}')
        if current:
            specifiers.append(' '.join(current))
        return specifiers

    def export_declaration(self):
        start = self.advance().start
        token = self.peek()

        if token.is_word('default'):
            self.advance()
            if self.at_function():
                self.function_declaration(start)
                return
            if self.peek().is_word('class', 'interface', 'abstract'):
                raise _Unrecognized("default-exported class or interface")
            expr = self.parse_expression()
            self.end_statement()
            self.emit(NodeKind.EXPORT, ExportAttrs(default=self.source(expr.start, expr.end)),
                      start, expr.end)
            return

        if token.is_punct('*'):
            self.advance()
            attrs = ExportAttrs(is_star=True)
            if self.peek().is_word('as'):
                self.advance()
                attrs.namespace = self.expect_identifier().value
            if not self.advance().is_word('from'):
                raise _Unrecognized("star export without 'from'")
            module = self.advance()
            if module.type != TokenType.STRING:
                raise _Unrecognized("export module is not a string")
            attrs.module = unquote(module.value)
            self.end_statement()
            self.emit(NodeKind.EXPORT, attrs, start, module.end)
            return

        if token.is_punct('{'):
            attrs = ExportAttrs(named=self.specifier_list())
            end = self.tokens[self.index - 1].end
            if self.peek().is_word('from'):
                self.advance()
                module = self.advance()
                if module.type != TokenType.STRING:
                    raise _Unrecognized("export module is not a string")
                attrs.module = unquote(module.value)
                end = module.end
            self.end_statement()
            self.emit(NodeKind.EXPORT, attrs, start, end)
            return

        if self.at_function():
            self.function_declaration(start)
        elif token.is_word('interface'):
            self.interface_declaration(start)
        elif token.is_word('const', 'let', 'var') and not self.peek(1).is_word('enum'):
            self.variable_statement(start, parent_id=None)
        else:
            raise _Unrecognized(f"unsupported export of {token.value!r}")

    # ------------------------------------------------------------------
    # Interfaces
    # ------------------------------------------------------------------

    def interface_declaration(self, start: int):
        self.advance()
        attrs = InterfaceAttrs(name=self.expect_identifier().value)
        if self.peek().is_punct('<'):
            self.skip_type_parameters()
        if self.peek().is_word('extends'):
            self.advance()
            while True:
                attrs.extends.append(self.skip_type(stops=(',', '{'), stop_at_brace=True))
                if not self.peek().is_punct(','):
                    break
                self.advance()

        open_index = self.index
        self.expect_punct('{')
        close_index = self.matching_close(open_index)
        while self.index < close_index:
            token = self.peek()
            if token.is_punct(';', ','):
                self.advance()
                continue
            member = self.interface_member(close_index)
            if member is not None:
                attrs.members.append(member)
        self.index = close_index + 1
        self.emit(NodeKind.INTERFACE, attrs, start, self.tokens[close_index].end)

    def interface_member(self, close_index: int) -> Optional[Member]:
        member_start = self.index
        if self.peek().is_word('readonly') and self.peek(1).type in (TokenType.IDENTIFIER,
                                                                   TokenType.STRING):
            self.advance()
        token = self.peek()
        if token.type in (TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER):
            self.advance()
            optional = False
            if self.peek().is_punct('?'):
                optional = True
                self.advance()
            if self.peek().is_punct(':'):
                self.advance()
                try:
                    type_text = self.skip_type(stops=(';', ','))
                except _Unrecognized:
                    type_text = None
                if type_text is not None:
                    return Member(name=token.value, type=type_text, optional=optional)

        logger.debug("Skipping unsupported interface member at offset %d",
                     self.tokens[member_start].start)
        self.index = member_start
        self.skip_member(close_index)
        return None

    def skip_member(self, close_index: int):
        depth = 0
        first = True
        while self.index < close_index:
            token = self.peek()
            if depth == 0 and not first and (token.is_punct(';', ',') or token.newline_before):
                return
            if token.is_punct('(', '[', '{'):
                depth += 1
            elif token.is_punct(')', ']', '}'):
                depth -= 1
            self.advance()
            first = False

    def skip_type_parameters(self):
        angle = 0
        while not self.at_end():
            token = self.advance()
            if token.is_punct('<'):
                angle += 1
            elif token.is_punct('>', '>>', '>>>'):
                angle -= len(token.value)
                if angle <= 0:
                    return
        raise _Unrecognized("unterminated type parameter list")

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def function_declaration(self, start: int):
        is_async = False
        if self.peek().is_word('async'):
            is_async = True
            self.advance()
        self.advance()  # function
        if self.peek().is_punct('*'):
            raise _Unrecognized("generator functions are not modeled")
        name = self.expect_identifier().value
        if self.peek().is_punct('<'):
            self.skip_type_parameters()
        parameters = self.parameter_list()
        return_type = None
        if self.peek().is_punct(':'):
            self.advance()
            return_type = self.skip_type(stops=(';',), stop_at_brace=True)
        if not self.peek().is_punct('{'):
            raise _Unrecognized(f"function {name} has no body")

        open_index = self.index
        close_index = self.matching_close(open_index)
        open_token = self.tokens[open_index]
        close_token = self.tokens[close_index]
        raw_body = dedent_body(self.source(open_token.end, close_token.start))

        api = self.match_api(name, is_async, parameters, raw_body)
        if api is not None:
            self.emit(NodeKind.API, api, start, close_token.end)
            self.index = close_index + 1
            return

        function = self.emit(
            NodeKind.FUNCTION,
            FunctionAttrs(name=name, parameters=parameters, return_type=return_type,
                          is_async=is_async, raw_body=raw_body),
            start, close_token.end,
        )

        self.index = open_index + 1
        saved_limit = self.limit
        self.limit = close_index
        try:
            while self.index < close_index:
                self.statement(self.body_statement, function.id)
        finally:
            self.limit = saved_limit
        self.index = close_index + 1

    def parameter_list(self) -> List[Parameter]:
        self.expect_punct('(')
        parameters: List[Parameter] = []
        while not self.peek().is_punct(')'):
            while self.peek().is_punct('@'):
                self.advance()
                self.parse_call_member()
            while (self.peek().is_word('public', 'private', 'protected', 'readonly')
                   and self.peek(1).type == TokenType.IDENTIFIER):
                self.advance()

            name_start = self.peek().start
            if self.peek().is_punct('...'):
                self.advance()
            if self.peek().is_punct('{', '['):
                name_end = self.skip_balanced().end
            else:
                name_end = self.expect_identifier().end
            parameter = Parameter(name=self.source(name_start, name_end))

            if self.peek().is_punct('?'):
                parameter.optional = True
                self.advance()
            if self.peek().is_punct(':'):
                self.advance()
                parameter.type = self.skip_type(stops=(',', ')', '='))
            if self.peek().is_punct('='):
                self.advance()
                default = self.parse_assignment()
                parameter.default = self.source(default.start, default.end)
            parameters.append(parameter)

            if self.peek().is_punct(','):
                self.advance()
            elif not self.peek().is_punct(')'):
                raise _Unrecognized("malformed parameter list")
        self.expect_punct(')')
        return parameters

    def match_api(self, name: str, is_async: bool, parameters: List[Parameter],
                  raw_body: Optional[str]) -> Optional[ApiAttrs]:
        """Recognize the request function the generator emits for ``api`` nodes."""
        if not (self.reclassify and is_async and not parameters and raw_body):
            return None
        match = _API_BODY.match(raw_body)
        if not match:
            return None
        try:
            endpoint = json.loads(match.group('endpoint'))
            headers = json.loads(match.group('headers'))
        except ValueError:
            return None
        if not isinstance(headers, dict):
            return None
        return ApiAttrs(
            name=name,
            method=match.group('method'),
            endpoint=endpoint,
            headers=[(str(key), str(value)) for key, value in headers.items()],
            body=match.group('body'),
        )

    def body_statement(self, function_id: str):
        token = self.peek()
        if token.is_punct(';'):
            self.advance()
        elif token.is_word('return'):
            self.advance()
            following = self.peek()
            if not (following.is_punct(';', '}') or following.newline_before or self.at_end()):
                expr = self.parse_expression()
                self.walk(expr, function_id)
            self.end_statement()
        elif token.is_word('const', 'let', 'var') and self.peek(1).type == TokenType.IDENTIFIER:
            self.variable_statement(token.start, parent_id=function_id)
        elif token.type == TokenType.IDENTIFIER and token.value in STATEMENT_STARTERS:
            raise _Unrecognized(f"{token.value} statement")
        elif token.is_punct('{'):
            raise _Unrecognized("block statement")
        else:
            expr = self.parse_expression()
            self.end_statement()
            self.walk(expr, function_id)

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def variable_statement(self, start: int, parent_id: Optional[str]):
        keyword = self.advance().value
        first = True
        while True:
            name_token = self.expect_identifier()
            span_start = start if first else name_token.start
            if self.peek().is_punct('!'):
                self.advance()
            declared_type = None
            if self.peek().is_punct(':'):
                self.advance()
                declared_type = self.skip_type(stops=('=', ';', ','))
            initializer = None
            if self.peek().is_punct('='):
                self.advance()
                initializer = self.parse_assignment()
            span_end = initializer.end if initializer else self.tokens[self.index - 1].end

            self.declaration(name_token.value, declared_type, initializer, keyword,
                             span_start, span_end, parent_id)
            first = False
            if not self.peek().is_punct(','):
                break
            self.advance()
        self.end_statement()

    def declaration(self, name: str, declared_type: Optional[str], initializer: Optional[Expr],
                    keyword: str, start: int, end: int, parent_id: Optional[str]):
        if self.reclassify and initializer is not None:
            generated_kind = match_generated_name(name)
            if generated_kind is not None and self.reclassified(
                    generated_kind, name, initializer, start, end, parent_id):
                return

        variable = self.emit(
            NodeKind.VARIABLE,
            VariableAttrs(
                name=name,
                declared_type=declared_type,
                initializer=self.source(initializer.start, initializer.end) if initializer else None,
                keyword=keyword,
            ),
            start, end, parent_id,
        )
        if initializer is not None:
            self.walk(initializer, variable.id)

    def reclassified(self, kind: NodeKind, name: str, initializer: Expr,
                     start: int, end: int, parent_id: Optional[str]) -> bool:
        """Emit ``kind`` for a generated-name declaration whose initializer has that shape."""
        expr = unwrap_parens(initializer)
        text = self.source(initializer.start, initializer.end)

        if kind == NodeKind.CONSOLE:
            match = _CONSOLE_IIFE.match(text)
            if not match:
                return False
            attrs = ConsoleAttrs(value_expr=match.group('value').strip(),
                                 label=match.group('label'), name=name)
            self.emit(kind, attrs, start, end, parent_id)
            return True

        attrs = self.expression_attributes(expr)
        if attrs is None or attrs[0] != kind:
            return False
        node_kind, attributes, children = attrs
        attributes.name = name
        node = self.emit(node_kind, attributes, start, end, parent_id)
        for child in children:
            self.walk(child, node.id)
        return True

    # ------------------------------------------------------------------
    # Expression walk
    # ------------------------------------------------------------------

    def expression_attributes(self, expr: Expr):
        """Map an expression to (kind, attributes, sub-expressions to walk), or None."""
        text = self.source
        if expr.kind == 'call':
            callee, args = expr.children[0], expr.children[1:]
            attrs = CallAttrs(func_name=text(callee.start, callee.end),
                              args=[text(arg.start, arg.end) for arg in args])
            return NodeKind.CALL, attrs, [callee] + args
        if expr.kind == 'member':
            target = expr.children[0]
            inner = unwrap_parens(target)
            attrs = PropertyAccessAttrs(obj_expr=text(inner.start, inner.end), property=expr.name)
            return NodeKind.PROPERTY_ACCESS, attrs, [target]
        if expr.kind == 'binary':
            left, right = expr.children
            attrs = BinaryOpAttrs(operator=expr.operator, lhs=text(left.start, left.end),
                                  rhs=text(right.start, right.end))
            return NodeKind.BINARY_OP, attrs, [left, right]
        if expr.kind == 'conditional':
            test, when_true, when_false = expr.children
            attrs = ConditionalAttrs(test_expr=text(test.start, test.end),
                                     when_true=text(when_true.start, when_true.end),
                                     when_false=text(when_false.start, when_false.end))
            return NodeKind.CONDITIONAL, attrs, [test, when_true, when_false]
        if expr.kind == 'object':
            properties = [
                ObjectProperty(key=key, value=text(value.start, value.end) if value else None)
                for key, value in expr.properties
            ]
            return NodeKind.OBJECT, ObjectAttrs(properties=properties), list(expr.children)
        if expr.kind == 'string':
            return NodeKind.LITERAL, LiteralAttrs(value=unquote(text(expr.start, expr.end)),
                                                  literal_kind=LiteralKind.STRING), []
        if expr.kind == 'number':
            return NodeKind.LITERAL, LiteralAttrs(value=text(expr.start, expr.end),
                                                  literal_kind=LiteralKind.NUMBER), []
        if expr.kind == 'boolean':
            return NodeKind.LITERAL, LiteralAttrs(value=text(expr.start, expr.end),
                                                  literal_kind=LiteralKind.BOOLEAN), []
        return None

    def walk(self, expr: Expr, parent_id: str):
        """Emit one child node per recognized sub-expression of ``expr``."""
        if expr.kind == 'paren':
            self.walk(expr.children[0], parent_id)
            return
        if expr.kind == 'identifier':
            return

        mapped = self.expression_attributes(expr)
        if mapped is None:
            logger.debug("Recognition gap: %s expression at offset %d", expr.kind, expr.start)
            for child in expr.children:
                self.walk(child, parent_id)
            return

        kind, attributes, children = mapped
        node = self.emit(kind, attributes, expr.start, expr.end, parent_id)
        for child in children:
            self.walk(child, node.id)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def parse_expression(self) -> Expr:
        return self.parse_assignment()

    def parse_assignment(self) -> Expr:
        if self.at_arrow():
            return self.parse_arrow()
        left = self.parse_conditional()
        token = self.peek()
        if token.type == TokenType.PUNCTUATOR and token.value in ASSIGNMENT_OPERATORS:
            self.advance()
            right = self.parse_assignment()
            return Expr('other', left.start, right.end, [right])
        return left

    def parse_conditional(self) -> Expr:
        test = self.parse_binary(1)
        if not self.peek().is_punct('?'):
            return test
        self.advance()
        when_true = self.parse_assignment()
        self.expect_punct(':')
        when_false = self.parse_assignment()
        return Expr('conditional', test.start, when_false.end, [test, when_true, when_false])

    def parse_binary(self, min_precedence: int) -> Expr:
        left = self.parse_unary()
        while True:
            token = self.peek()
            if token.is_word('as', 'satisfies') and not token.newline_before:
                self.advance()
                end = self.skip_asserted_type()
                left = Expr('other', left.start, end, [left])
                continue
            if token.type == TokenType.PUNCTUATOR or token.is_word('instanceof', 'in'):
                precedence = BINARY_PRECEDENCE.get(token.value)
            else:
                precedence = None
            if precedence is None or precedence < min_precedence:
                return left
            self.advance()
            next_min = precedence if token.value == '**' else precedence + 1
            right = self.parse_binary(next_min)
            left = Expr('binary', left.start, right.end, [left, right], operator=token.value)

    def skip_asserted_type(self) -> int:
        if self.peek().is_word('const'):
            return self.advance().end
        end = self.expect_identifier().end
        while self.peek().is_punct('.'):
            self.advance()
            end = self.expect_identifier().end
        if self.peek().is_punct('<'):
            depth = 0
            while not self.at_end():
                token = self.advance()
                end = token.end
                if token.is_punct('<'):
                    depth += 1
                elif token.is_punct('>', '>>', '>>>'):
                    depth -= len(token.value)
                    if depth <= 0:
                        break
        while self.peek().is_punct('[') and self.peek(1).is_punct(']'):
            self.advance()
            end = self.advance().end
        return end

    def parse_unary(self) -> Expr:
        token = self.peek()
        if (token.type == TokenType.PUNCTUATOR and token.value in PREFIX_OPERATORS) or \
                (token.is_word(*PREFIX_WORDS) and not self.peek(1).is_punct(')', ';', ',')):
            self.advance()
            operand = self.parse_unary()
            if token.value == '-' and operand.kind == 'number':
                return Expr('number', token.start, operand.end)
            return Expr('other', token.start, operand.end, [operand])
        if token.is_punct('<'):
            raise _Unrecognized("angle-bracket type assertion")
        expr = self.parse_call_member()
        following = self.peek()
        if following.is_punct('++', '--') and not following.newline_before:
            self.advance()
            return Expr('other', expr.start, following.end, [expr])
        return expr

    def parse_call_member(self) -> Expr:
        token = self.peek()
        if token.is_word('new') and not self.peek(1).is_punct('.'):
            self.advance()
            target = self.parse_primary()
            while self.peek().is_punct('.'):
                self.advance()
                name = self.member_name()
                target = Expr('member', target.start, name.end, [target], name=name.value)
            children = [target]
            end = target.end
            if self.peek().is_punct('('):
                args, close = self.parse_arguments()
                children.extend(args)
                end = close.end
            expr = Expr('other', token.start, end, children)
        else:
            expr = self.parse_primary()

        while True:
            token = self.peek()
            if token.is_punct('.'):
                self.advance()
                name = self.member_name()
                expr = Expr('member', expr.start, name.end, [expr], name=name.value)
            elif token.is_punct('?.'):
                self.advance()
                if self.peek().is_punct('('):
                    args, close = self.parse_arguments()
                    expr = Expr('other', expr.start, close.end, [expr] + args)
                elif self.peek().is_punct('['):
                    self.advance()
                    index = self.parse_expression()
                    close = self.expect_punct(']')
                    expr = Expr('other', expr.start, close.end, [expr, index])
                else:
                    name = self.member_name()
                    expr = Expr('other', expr.start, name.end, [expr])
            elif token.is_punct('('):
                args, close = self.parse_arguments()
                expr = Expr('call', expr.start, close.end, [expr] + args)
            elif token.is_punct('<') and self.try_type_arguments():
                continue
            elif token.is_punct('['):
                self.advance()
                index = self.parse_expression()
                close = self.expect_punct(']')
                expr = Expr('other', expr.start, close.end, [expr, index])
            elif token.type == TokenType.TEMPLATE and not token.newline_before:
                self.advance()
                expr = Expr('other', expr.start, token.end, [expr])
            elif token.is_punct('!') and not token.newline_before:
                self.advance()
                expr = Expr('other', expr.start, token.end, [expr])
            else:
                return expr

    def member_name(self) -> Token:
        if self.peek().is_punct('#'):
            self.advance()
        return self.expect_identifier()

    def try_type_arguments(self) -> bool:
        """Skip ``<...>`` when it is a type argument list followed by a call."""
        saved = self.index
        depth = 0
        while not self.at_end():
            token = self.advance()
            if token.type == TokenType.PUNCTUATOR:
                if token.value not in _TYPE_ARGUMENT_PUNCTS:
                    break
                if token.value == '<':
                    depth += 1
                elif token.value in ('>', '>>', '>>>'):
                    depth -= len(token.value)
                    if depth <= 0:
                        if depth == 0 and self.peek().is_punct('('):
                            return True
                        break
            elif token.type not in (TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER):
                break
        self.index = saved
        return False

    def parse_arguments(self) -> Tuple[List[Expr], Token]:
        self.expect_punct('(')
        args: List[Expr] = []
        while not self.peek().is_punct(')'):
            if self.peek().is_punct('...'):
                spread = self.advance()
                inner = self.parse_assignment()
                args.append(Expr('other', spread.start, inner.end, [inner]))
            else:
                args.append(self.parse_assignment())
            if self.peek().is_punct(','):
                self.advance()
            elif not self.peek().is_punct(')'):
                raise _Unrecognized("malformed argument list")
        close = self.expect_punct(')')
        return args, close

    def parse_primary(self) -> Expr:
        token = self.peek()
        if token.type == TokenType.IDENTIFIER:
            if token.value in ('true', 'false'):
                self.advance()
                return Expr('boolean', token.start, token.end)
            if token.value == 'function' or (token.value == 'async'
                                             and self.peek(1).is_word('function')):
                return self.parse_function_expression()
            if token.value == 'class':
                raise _Unrecognized("class expression")
            self.advance()
            return Expr('identifier', token.start, token.end)
        if token.type == TokenType.NUMBER:
            self.advance()
            return Expr('number', token.start, token.end)
        if token.type == TokenType.STRING:
            self.advance()
            return Expr('string', token.start, token.end)
        if token.type in (TokenType.TEMPLATE, TokenType.REGEX):
            self.advance()
            return Expr('other', token.start, token.end)
        if token.is_punct('('):
            self.advance()
            inner = self.parse_expression()
            close = self.expect_punct(')')
            return Expr('paren', token.start, close.end, [inner])
        if token.is_punct('['):
            return self.parse_array()
        if token.is_punct('{'):
            return self.parse_object()
        raise _Unrecognized(f"unexpected token {token.value!r}")

    def parse_function_expression(self) -> Expr:
        start = self.peek().start
        if self.peek().is_word('async'):
            self.advance()
        self.advance()
        if self.peek().is_punct('*'):
            self.advance()
        if self.peek().type == TokenType.IDENTIFIER:
            self.advance()
        if self.peek().is_punct('<'):
            self.skip_type_parameters()
        self.parameter_list()
        if self.peek().is_punct(':'):
            self.advance()
            self.skip_type(stops=(';',), stop_at_brace=True)
        if not self.peek().is_punct('{'):
            raise _Unrecognized("function expression without body")
        close = self.skip_balanced()
        return Expr('other', start, close.end)

    def parse_array(self) -> Expr:
        open_token = self.expect_punct('[')
        elements: List[Expr] = []
        while not self.peek().is_punct(']'):
            if self.peek().is_punct(','):
                self.advance()
                continue
            if self.peek().is_punct('...'):
                spread = self.advance()
                inner = self.parse_assignment()
                elements.append(Expr('other', spread.start, inner.end, [inner]))
            else:
                elements.append(self.parse_assignment())
            if not self.peek().is_punct(',', ']'):
                raise _Unrecognized("malformed array literal")
        close = self.expect_punct(']')
        return Expr('other', open_token.start, close.end, elements)

    def parse_object(self) -> Expr:
        open_token = self.expect_punct('{')
        properties: List[Tuple[str, Optional[Expr]]] = []
        children: List[Expr] = []
        while not self.peek().is_punct('}'):
            token = self.peek()
            if token.is_punct('...'):
                self.advance()
                children.append(self.parse_assignment())
            else:
                if (token.is_word('get', 'set', 'async')
                        and not self.peek(1).is_punct(':', ',', '(', '}')):
                    self.advance()
                    token = self.peek()
                if token.is_punct('['):
                    self.skip_balanced()
                    key = None
                elif token.type in (TokenType.IDENTIFIER, TokenType.STRING, TokenType.NUMBER):
                    self.advance()
                    key = token.value
                else:
                    raise _Unrecognized(f"unexpected object key {token.value!r}")

                if self.peek().is_punct(':'):
                    self.advance()
                    value = self.parse_assignment()
                    children.append(value)
                    if key is not None:
                        properties.append((key, value))
                elif self.peek().is_punct('(', '<'):
                    self.skip_method()
                elif key is not None and token.type == TokenType.IDENTIFIER:
                    properties.append((key, None))
                else:
                    raise _Unrecognized("malformed object property")

            if self.peek().is_punct(','):
                self.advance()
            elif not self.peek().is_punct('}'):
                raise _Unrecognized("malformed object literal")
        close = self.expect_punct('}')
        return Expr('object', open_token.start, close.end, children, properties=properties)

    def skip_method(self):
        if self.peek().is_punct('<'):
            self.skip_type_parameters()
        self.parameter_list()
        if self.peek().is_punct(':'):
            self.advance()
            self.skip_type(stops=(',', '}'), stop_at_brace=True)
        if not self.peek().is_punct('{'):
            raise _Unrecognized("method without body")
        self.skip_balanced()

    # ------------------------------------------------------------------
    # Arrow functions
    # ------------------------------------------------------------------

    def at_arrow(self) -> bool:
        token = self.peek()
        offset = 0
        if token.is_word('async') and (self.peek(1).type == TokenType.IDENTIFIER
                                       or self.peek(1).is_punct('(')) \
                and not self.peek(1).newline_before:
            offset = 1
            token = self.peek(1)
        if token.type == TokenType.IDENTIFIER:
            return self.peek(offset + 1).is_punct('=>')
        if not token.is_punct('('):
            return False

        try:
            close_index = self.matching_close(self.index + offset)
        except _Unrecognized:
            return False
        following = self.tokens[min(close_index + 1, self.limit)]
        if following.is_punct('=>'):
            return True
        if not following.is_punct(':'):
            return False

        saved = self.index
        self.index = close_index + 2
        try:
            self.skip_type(stops=('=>', ';', ',', ')'))
            return self.peek().is_punct('=>')
        except _Unrecognized:
            return False
        finally:
            self.index = saved

    def parse_arrow(self) -> Expr:
        start = self.peek().start
        if self.peek().is_word('async') and not self.peek(1).is_punct('=>'):
            self.advance()
        if self.peek().is_punct('('):
            self.skip_balanced()
        else:
            self.expect_identifier()
        if self.peek().is_punct(':'):
            self.advance()
            self.skip_type(stops=('=>',))
        self.expect_punct('=>')
        if self.peek().is_punct('{'):
            close = self.skip_balanced()
            return Expr('other', start, close.end)
        body = self.parse_assignment()
        return Expr('other', start, body.end, [body])
