"""
TypeScript lexer.

Produces the flat token stream the structural parser walks. Comments and whitespace
are dropped; each token remembers whether a line break preceded it so the parser
can apply automatic-semicolon rules. Text that cannot be tokenized raises
``TokenizeError`` with the offending offset.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .exceptions import TokenizeError


class TokenType(Enum):
    IDENTIFIER = "identifier"
    NUMBER = "number"
    STRING = "string"
    TEMPLATE = "template"
    REGEX = "regex"
    PUNCTUATOR = "punctuator"
    EOF = "eof"


@dataclass
class Token:
    type: TokenType
    value: str
    start: int
    end: int
    newline_before: bool = False

    def is_punct(self, *values: str) -> bool:
        return self.type == TokenType.PUNCTUATOR and self.value in values

    def is_word(self, *values: str) -> bool:
        return self.type == TokenType.IDENTIFIER and self.value in values


PUNCTUATORS = sorted([
    '>>>=', '...', '===', '!==', '**=', '<<=', '>>=', '>>>', '&&=', '||=', '??=',
    '=>', '==', '!=', '<=', '>=', '&&', '||', '??', '?.', '++', '--', '+=', '-=',
    '*=', '/=', '%=', '&=', '|=', '^=', '**', '<<', '>>',
    '{', '}', '(', ')', '[', ']', ';', ',', '.', '<', '>', '+', '-', '*', '/',
    '%', '&', '|', '^', '!', '~', '?', ':', '=', '@', '#',
], key=len, reverse=True)

OPENERS = {'(': ')', '[': ']', '{': '}'}
CLOSERS = {')': '(', ']': '[', '}': '{'}

# Words after which a slash starts a regular expression rather than a division
_REGEX_PRECEDERS = {
    'return', 'typeof', 'case', 'in', 'of', 'new', 'delete', 'void', 'throw',
    'else', 'do', 'yield', 'await', 'instanceof',
}

_WHITESPACE = re.compile(r'[ \t\r\n\f\v\u00a0\ufeff\u2028\u2029]+')
_IDENTIFIER = re.compile(r'(?:[^\W\d]|\$)(?:\w|\$)*')
_NUMBER = re.compile(
    r'0[xX][0-9a-fA-F_]+n?|0[bB][01_]+n?|0[oO][0-7_]+n?'
    r'|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d+)?n?'
)


class Lexer:
    """Single-use tokenizer over one source text."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.tokens: List[Token] = []
        self._brackets: List[Tuple[str, int]] = []

    def tokenize(self) -> List[Token]:
        text = self.text
        newline = False
        while self.pos < len(text):
            ch = text[self.pos]

            ws = _WHITESPACE.match(text, self.pos)
            if ws:
                newline = newline or '\n' in ws.group(0) or '\r' in ws.group(0)
                self.pos = ws.end()
                continue

            if text.startswith('//', self.pos):
                end = text.find('\n', self.pos)
                self.pos = len(text) if end == -1 else end
                continue

            if text.startswith('/*', self.pos):
                end = text.find('*/', self.pos + 2)
                if end == -1:
                    raise TokenizeError("Unterminated block comment", self.pos)
                newline = newline or '\n' in text[self.pos:end]
                self.pos = end + 2
                continue

            start = self.pos
            if ch in '"\'':
                self._emit(TokenType.STRING, start, self._scan_string(start), newline)
            elif ch == '`':
                self._emit(TokenType.TEMPLATE, start, self._scan_template(start), newline)
            elif ch == '/' and self._regex_allowed():
                end = self._scan_regex(start)
                if end is None:
                    self._emit_punctuator(start, newline)
                else:
                    self._emit(TokenType.REGEX, start, end, newline)
            else:
                ident = _IDENTIFIER.match(text, start)
                number = _NUMBER.match(text, start) if ch.isdigit() or ch == '.' else None
                if number and number.end() > start:
                    self._emit(TokenType.NUMBER, start, number.end(), newline)
                elif ident:
                    self._emit(TokenType.IDENTIFIER, start, ident.end(), newline)
                else:
                    self._emit_punctuator(start, newline)
            newline = False

        if self._brackets:
            opener, offset = self._brackets[-1]
            raise TokenizeError(f"Unclosed '{opener}'", offset)

        self.tokens.append(Token(TokenType.EOF, '', len(text), len(text), newline))
        return self.tokens

    def _emit(self, token_type: TokenType, start: int, end: int, newline: bool):
        self.tokens.append(Token(token_type, self.text[start:end], start, end, newline))
        self.pos = end

    def _emit_punctuator(self, start: int, newline: bool):
        for punct in PUNCTUATORS:
            if self.text.startswith(punct, start):
                self._track_bracket(punct, start)
                self._emit(TokenType.PUNCTUATOR, start, start + len(punct), newline)
                return
        raise TokenizeError(f"Unexpected character {self.text[start]!r}", start)

    def _track_bracket(self, punct: str, offset: int):
        if punct in OPENERS:
            self._brackets.append((punct, offset))
        elif punct in CLOSERS:
            if not self._brackets or self._brackets[-1][0] != CLOSERS[punct]:
                raise TokenizeError(f"Unmatched '{punct}'", offset)
            self._brackets.pop()

    def _scan_string(self, start: int) -> int:
        quote = self.text[start]
        pos = start + 1
        while pos < len(self.text):
            ch = self.text[pos]
            if ch == '\\':
                pos += 2
                continue
            if ch == quote:
                return pos + 1
            if ch == '\n':
                break
            pos += 1
        raise TokenizeError("Unterminated string literal", start)

    def _scan_template(self, start: int) -> int:
        text = self.text
        pos = start + 1
        while pos < len(text):
            ch = text[pos]
            if ch == '\\':
                pos += 2
            elif ch == '`':
                return pos + 1
            elif text.startswith('${', pos):
                pos = self._scan_substitution(pos + 2)
            else:
                pos += 1
        raise TokenizeError("Unterminated template literal", start)

    def _scan_substitution(self, pos: int) -> int:
        """Skip a ``${ ... }`` body and return the offset after its closing brace."""
        text = self.text
        depth = 1
        while pos < len(text):
            ch = text[pos]
            if ch in '"\'':
                pos = self._scan_string(pos)
            elif ch == '`':
                pos = self._scan_template(pos)
            elif ch == '{':
                depth += 1
                pos += 1
            elif ch == '}':
                depth -= 1
                pos += 1
                if depth == 0:
                    return pos
            else:
                pos += 1
        raise TokenizeError("Unterminated template substitution", pos)

    def _regex_allowed(self) -> bool:
        if not self.tokens:
            return True
        prev = self.tokens[-1]
        if prev.type == TokenType.PUNCTUATOR:
            return prev.value not in (')', ']', '}', '++', '--')
        if prev.type == TokenType.IDENTIFIER:
            return prev.value in _REGEX_PRECEDERS
        return False

    def _scan_regex(self, start: int) -> Optional[int]:
        """Return the end of a regex literal, or None when this slash is a division."""
        text = self.text
        pos = start + 1
        in_class = False
        while pos < len(text):
            ch = text[pos]
            if ch == '\n':
                return None
            if ch == '\\':
                pos += 2
                continue
            if ch == '[':
                in_class = True
            elif ch == ']':
                in_class = False
            elif ch == '/' and not in_class:
                if pos == start + 1:
                    return None
                flags = _IDENTIFIER.match(text, pos + 1)
                return flags.end() if flags else pos + 1
            pos += 1
        return None


def tokenize(text: str) -> List[Token]:
    """Tokenize TypeScript source text, raising TokenizeError on failure."""
    return Lexer(text).tokenize()
