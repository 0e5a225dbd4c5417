# mynd_parser.py
# Error-tolerant parser for the mynd todo notation
# License: MIT
"""
Parser for the mynd todo notation.

    text  := entry* EOF
    entry := 'todo' (INLINE_STRING | BLOCK_STRING)

Parsing is total: every top-level construct yields exactly one outcome, either
an `Item` or a `ParseError` value, kept in document order. Errors are data and
are never raised, so one typo never hides the rest of the buffer.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import ClassVar, Iterator, List, Optional, Union

from mynd_lexer import MyndLexer, Span, Token, TokenKind


class ItemKind(enum.Enum):
    ONE_LINE = "one-line"
    MULTILINE = "multiline"


@dataclass(frozen=True)
class Item:
    message: str
    span: Span
    kind: ItemKind


# -------------------------
# Parse errors (values, not exceptions)
# -------------------------
@dataclass(frozen=True)
class ParseError:
    span: Span

    message: ClassVar[str]

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ExtraText(ParseError):
    message: ClassVar[str] = "dangling text; without todo"


@dataclass(frozen=True)
class UnexpectedEof(ParseError):
    message: ClassVar[str] = "reached an unexpected end of file"


@dataclass(frozen=True)
class UnexpectedToken(ParseError):
    expected: TokenKind = TokenKind.INLINE_STRING
    found: TokenKind = TokenKind.KEYWORD

    @property
    def message(self) -> str:
        return f"expected a {self.expected}, but found a {self.found}"


Outcome = Union[Item, ParseError]


@dataclass
class ParseOutcome:
    """Ordered outcomes of one parse, one per top-level construct."""
    entries: List[Outcome] = field(default_factory=list)

    def __iter__(self) -> Iterator[Outcome]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, idx: int) -> Outcome:
        return self.entries[idx]

    @property
    def items(self) -> List[Item]:
        return [e for e in self.entries if isinstance(e, Item)]

    @property
    def errors(self) -> List[ParseError]:
        return [e for e in self.entries if isinstance(e, ParseError)]

    @property
    def ok(self) -> bool:
        return not self.errors


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def normalize_block(text: str) -> str:
    """Canonical message of a block: left-trimmed, non-blank lines joined by newlines."""
    # only \n (or \r\n) ends a line; other Unicode line breaks stay in the text
    lines = (_strip_cr(line).lstrip() for line in text.strip().split("\n"))
    return "\n".join(line for line in lines if line)


class MyndParser:
    def __init__(self, lexer: MyndLexer):
        self.lexer = lexer
        self._peeked: Optional[Token] = None

    # -------------------------
    # Token helpers
    # -------------------------
    def _next_token(self) -> Token:
        if self._peeked is not None:
            tok, self._peeked = self._peeked, None
            return tok
        return self.lexer.next_token()

    def peek(self) -> Token:
        if self._peeked is None:
            self._peeked = self.lexer.next_token()
        return self._peeked

    # -------------------------
    # Grammar
    # -------------------------
    def parse(self) -> ParseOutcome:
        outcome = ParseOutcome()
        tok = self._next_token()
        if tok.kind is TokenKind.EOF:
            outcome.entries.append(UnexpectedEof(tok.span))
            return outcome

        while tok.kind is not TokenKind.EOF:
            if tok.kind is TokenKind.KEYWORD:
                outcome.entries.append(self._parse_todo())
            elif tok.kind in (TokenKind.INLINE_STRING, TokenKind.BLOCK_STRING):
                outcome.entries.append(ExtraText(tok.span))
            else:
                raise AssertionError(f"unhandled token kind {tok.kind!r}")
            tok = self._next_token()
        return outcome

    def _parse_todo(self) -> Outcome:
        tok = self._next_token()
        if tok.kind is TokenKind.INLINE_STRING:
            return Item(tok.text, tok.span, ItemKind.ONE_LINE)
        if tok.kind is TokenKind.BLOCK_STRING:
            return Item(normalize_block(tok.text), tok.span, ItemKind.MULTILINE)
        if tok.kind is TokenKind.KEYWORD:
            return UnexpectedToken(tok.span, expected=TokenKind.INLINE_STRING, found=TokenKind.KEYWORD)
        if tok.kind is TokenKind.EOF:
            # EOF is sticky in the lexer, so the outer loop stops on its own
            return UnexpectedEof(tok.span)
        raise AssertionError(f"unhandled token kind {tok.kind!r}")


def parse_text(text: str) -> ParseOutcome:
    return MyndParser(MyndLexer(text)).parse()


# -------------------------
# CLI self-test (executable)
# -------------------------
if __name__ == "__main__":
    sample = """todo run this test

    todo {
        run this test with a single line todo
        as well as this multiline todo
    }
stray words
todo"""
    for entry in parse_text(sample):
        print(entry)

    out = parse_text("todo a\ntodo b\ntodo a")
    assert [i.message for i in out.items] == ["a", "b", "a"]
    assert isinstance(parse_text("")[0], UnexpectedEof)
    print("Parser self-test passed.")
