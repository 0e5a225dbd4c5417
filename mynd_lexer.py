# mynd_lexer.py
# Lexer for the mynd todo notation
# License: MIT
"""
Hand-written scanner for the mynd todo notation.

The notation has exactly one keyword and two string forms:

    todo water the plants
    todo {
        call the plumber
        ask about the boiler
    }

Features:
 - lazy `next_token()` API; once EOF is reached it is returned forever
 - byte-exact spans: every token carries (offset, line, col) start/end positions
   where offset counts UTF-8 bytes and col counts code points
 - never fails: malformed input degrades to INLINE_STRING / EOF tokens
 - iter_tokens generator + tokenize convenience
"""

from __future__ import annotations
import enum
import string
from dataclasses import dataclass
from typing import Iterator, List, Optional

KEYWORD_TODO = "todo"

_ASCII_WHITESPACE = frozenset(" \t\n\r\x0c")
_ASCII_LETTERS = frozenset(string.ascii_letters)
_WORD_CHARS = _ASCII_LETTERS | {"_"}


@dataclass(frozen=True)
class Position:
    """Zero-based source position."""
    offset: int = 0   # UTF-8 byte offset
    line: int = 0
    col: int = 0      # code points since the start of the line

    def spanning_to(self, end: "Position") -> "Span":
        return Span(self, end)


@dataclass(frozen=True)
class Span:
    """Half-open [start, end) region of the source."""
    start: Position = Position()
    end: Position = Position()

    def __len__(self) -> int:
        return self.end.offset - self.start.offset


class TokenKind(enum.Enum):
    KEYWORD = "todo keyword"
    INLINE_STRING = "text"
    BLOCK_STRING = "text block"
    EOF = "EOF"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    span: Span


def _utf8_width(ch: str) -> int:
    cp = ord(ch)
    if cp < 0x80:
        return 1
    if cp < 0x800:
        return 2
    if cp < 0x10000:
        return 3
    return 4


class MyndLexer:
    def __init__(self, src: str):
        self.src = src or ""
        self._index = 0     # index into self.src (code points)
        self._offset = 0
        self._line = 0
        self._col = 0

    # -------------------------
    # Cursor helpers
    # -------------------------
    def _mark(self) -> Position:
        return Position(self._offset, self._line, self._col)

    def _peek(self) -> Optional[str]:
        if self._index < len(self.src):
            return self.src[self._index]
        return None

    def _advance(self) -> None:
        ch = self.src[self._index]
        self._index += 1
        self._offset += _utf8_width(ch)
        if ch == "\n":
            self._line += 1
            self._col = 0
        else:
            self._col += 1

    def _skip_whitespace(self) -> None:
        ch = self._peek()
        while ch is not None and ch in _ASCII_WHITESPACE:
            self._advance()
            ch = self._peek()

    def _read_until(self, stop: str) -> None:
        ch = self._peek()
        while ch is not None and ch != stop:
            self._advance()
            ch = self._peek()

    # -------------------------
    # Public API
    # -------------------------
    def next_token(self) -> Token:
        self._skip_whitespace()
        ch = self._peek()
        if ch is None:
            here = self._mark()
            return Token(TokenKind.EOF, "", here.spanning_to(here))
        if ch == "{":
            return self._block_string()
        if ch in _ASCII_LETTERS:
            return self._keyword_or_string()
        return self._inline_string(self._index, self._mark())

    def iter_tokens(self) -> Iterator[Token]:
        """Yield tokens up to, not including, EOF."""
        while True:
            tok = self.next_token()
            if tok.kind is TokenKind.EOF:
                return
            yield tok

    def __iter__(self) -> Iterator[Token]:
        return self.iter_tokens()

    # -------------------------
    # Token rules
    # -------------------------
    def _keyword_or_string(self) -> Token:
        start_index = self._index
        start = self._mark()
        ch = self._peek()
        while ch is not None and ch in _WORD_CHARS:
            self._advance()
            ch = self._peek()
        word = self.src[start_index:self._index]
        if word == KEYWORD_TODO:
            return Token(TokenKind.KEYWORD, word, start.spanning_to(self._mark()))
        # not the keyword: the run is the head of an inline string
        return self._inline_string(start_index, start)

    def _inline_string(self, start_index: int, start: Position) -> Token:
        self._read_until("\n")
        text = self.src[start_index:self._index]
        return Token(TokenKind.INLINE_STRING, text, start.spanning_to(self._mark()))

    def _block_string(self) -> Token:
        start = self._mark()
        self._advance()  # '{'
        body_start = self._index
        self._read_until("}")
        text = self.src[body_start:self._index]
        if self._peek() == "}":
            self._advance()
        return Token(TokenKind.BLOCK_STRING, text, start.spanning_to(self._mark()))


def tokenize(src: str) -> List[Token]:
    """Convenience: every token of `src`, EOF included as the last entry."""
    lexer = MyndLexer(src)
    tokens = list(lexer.iter_tokens())
    tokens.append(lexer.next_token())
    return tokens


# -------------------------
# CLI self-test (executable)
# -------------------------
if __name__ == "__main__":
    SAMPLE = """
todo water the plants

todo {
    call the plumber
    ask about the boiler
}
"""
    for tok in tokenize(SAMPLE):
        print(tok)

    toks = tokenize("todo run this test")
    assert toks[0].kind is TokenKind.KEYWORD
    assert toks[1].text == "run this test" and toks[1].span.start.offset == 5
    assert toks[-1].kind is TokenKind.EOF
    print("Lexer self-test passed.")
