"""
Unit tests for the TypeScript lexer.
"""

import pytest
from hypothesis import given, strategies as st

from flow_sync_core.exceptions import TokenizeError, ParseError
from flow_sync_core.lexer import tokenize, TokenType


class TestTokenize:
    """Test cases for tokenize()."""

    def test_simple_declaration(self):
        """Test tokens of a plain const declaration."""
        tokens = tokenize("const x = 1;")
        assert [(t.type, t.value) for t in tokens] == [
            (TokenType.IDENTIFIER, "const"),
            (TokenType.IDENTIFIER, "x"),
            (TokenType.PUNCTUATOR, "="),
            (TokenType.NUMBER, "1"),
            (TokenType.PUNCTUATOR, ";"),
            (TokenType.EOF, ""),
        ]

    def test_offsets_match_source(self):
        """Test that token offsets slice back to the token text."""
        text = "let total = price * 2;"
        for token in tokenize(text)[:-1]:
            assert text[token.start:token.end] == token.value

    def test_comments_are_skipped(self):
        """Test that line and block comments produce no tokens."""
        tokens = tokenize("a // trailing\n/* block\ncomment */ b")
        assert [t.value for t in tokens[:-1]] == ["a", "b"]

    def test_newline_before_is_tracked(self):
        """Test the newline flag used for semicolon insertion."""
        tokens = tokenize("a\n// c\nb c")
        assert tokens[0].newline_before is False
        assert tokens[1].newline_before is True
        assert tokens[2].newline_before is False

    def test_longest_punctuator_wins(self):
        """Test that multi-character operators are single tokens."""
        tokens = tokenize("a === b ?? c => d")
        puncts = [t.value for t in tokens if t.type == TokenType.PUNCTUATOR]
        assert puncts == ["===", "??", "=>"]

    def test_template_with_substitution(self):
        """Test that a template literal with nested braces is one token."""
        tokens = tokenize('`a ${b + "}"} c`')
        assert tokens[0].type == TokenType.TEMPLATE
        assert tokens[0].value == '`a ${b + "}"} c`'

    def test_regex_literal(self):
        """Test regex detection after an operator."""
        tokens = tokenize("const r = /ab+c/g;")
        assert tokens[3].type == TokenType.REGEX
        assert tokens[3].value == "/ab+c/g"

    def test_division_is_not_regex(self):
        """Test that a slash after an identifier is division."""
        tokens = tokenize("a / b / c")
        assert [t.type for t in tokens[:-1]] == [
            TokenType.IDENTIFIER, TokenType.PUNCTUATOR, TokenType.IDENTIFIER,
            TokenType.PUNCTUATOR, TokenType.IDENTIFIER,
        ]

    def test_numbers(self):
        """Test decimal, hex and exponent numbers."""
        tokens = tokenize("1.5 0xFF 2e10 .5")
        assert [t.type for t in tokens[:-1]] == [TokenType.NUMBER] * 4


class TestTokenizeErrors:
    """Test cases for tokenization failures."""

    def test_unterminated_string(self):
        """Test that an unterminated string reports its start offset."""
        with pytest.raises(TokenizeError) as exc_info:
            tokenize('const s = "abc')
        assert exc_info.value.offset == 10

    def test_unterminated_block_comment(self):
        """Test that an unterminated block comment fails."""
        with pytest.raises(TokenizeError):
            tokenize("a /* never closed")

    def test_unterminated_template(self):
        """Test that an unterminated template fails."""
        with pytest.raises(TokenizeError):
            tokenize("`abc")

    def test_unclosed_brace(self):
        """Test that an unclosed opener reports the opener's offset."""
        with pytest.raises(TokenizeError) as exc_info:
            tokenize("function f() {")
        assert exc_info.value.offset == 13

    def test_unmatched_closer(self):
        """Test that a stray closer fails."""
        with pytest.raises(TokenizeError) as exc_info:
            tokenize("a)")
        assert exc_info.value.offset == 1

    def test_mismatched_brackets(self):
        """Test that crossing brackets fail."""
        with pytest.raises(TokenizeError):
            tokenize("(a]")

    def test_unexpected_character(self):
        """Test that a character starting no token fails."""
        with pytest.raises(TokenizeError) as exc_info:
            tokenize("let a = 1 \\")
        assert exc_info.value.offset == 10

    def test_tokenize_error_is_parse_error(self):
        """Test the error hierarchy and message format."""
        with pytest.raises(ParseError) as exc_info:
            tokenize("'open")
        assert "offset 0" in str(exc_info.value)


@given(st.lists(st.sampled_from(["a", "1", "+", "(b)", "'s'", "[c]", "{d}", "x.y"]), max_size=20))
def test_balanced_input_always_tokenizes(parts):
    """Property test: balanced token soup always tokenizes and ends with EOF."""
    tokens = tokenize(" ".join(parts))
    assert tokens[-1].type == TokenType.EOF
