from mynd_lexer import MyndLexer, Position, Span, Token, TokenKind, tokenize


def _span(start, end):
    return Span(Position(*start), Position(*end))


def test_lexes_single_line_todo():
    tokens = tokenize("todo run this test")

    assert tokens == [
        Token(TokenKind.KEYWORD, "todo", _span((0, 0, 0), (4, 0, 4))),
        Token(TokenKind.INLINE_STRING, "run this test", _span((5, 0, 5), (18, 0, 18))),
        Token(TokenKind.EOF, "", _span((18, 0, 18), (18, 0, 18))),
    ]


def test_lexes_multi_line_todo():
    src = (
        "\n"
        "todo run this test\n"
        "todo {\n"
        "    run this test with a single line toodo\n"
        "    as well as this multiline todo\n"
        "    blah blah\n"
        "}"
    )
    lexer = MyndLexer(src)

    assert lexer.next_token() == Token(TokenKind.KEYWORD, "todo", _span((1, 1, 0), (5, 1, 4)))
    assert lexer.next_token() == Token(TokenKind.INLINE_STRING, "run this test", _span((6, 1, 5), (19, 1, 18)))
    assert lexer.next_token() == Token(TokenKind.KEYWORD, "todo", _span((20, 2, 0), (24, 2, 4)))

    block = lexer.next_token()
    assert block.kind is TokenKind.BLOCK_STRING
    assert block.text == (
        "\n"
        "    run this test with a single line toodo\n"
        "    as well as this multiline todo\n"
        "    blah blah\n"
    )
    assert block.span == _span((25, 2, 5), (120, 6, 1))
    assert lexer.next_token().kind is TokenKind.EOF


def test_span_reproduces_source_slice():
    src = "todo one\n  todo {two\nthree}\ntodo four"
    raw = src.encode("utf-8")
    for tok in MyndLexer(src):
        sliced = raw[tok.span.start.offset:tok.span.end.offset].decode("utf-8")
        if tok.kind is TokenKind.BLOCK_STRING:
            assert sliced == "{" + tok.text + "}"
        else:
            assert sliced == tok.text


def test_offsets_count_utf8_bytes_and_columns_count_code_points():
    tokens = tokenize("todo café ☕")

    assert tokens[1].text == "café ☕"
    assert tokens[1].span == _span((5, 0, 5), (14, 0, 11))
    assert tokens[2].span == _span((14, 0, 11), (14, 0, 11))


def test_word_that_is_not_the_keyword_becomes_inline_text():
    assert [(t.kind, t.text) for t in MyndLexer("todos are fun")] == [
        (TokenKind.INLINE_STRING, "todos are fun"),
    ]
    assert [(t.kind, t.text) for t in MyndLexer("todo_list ready")] == [
        (TokenKind.INLINE_STRING, "todo_list ready"),
    ]


def test_keyword_directly_followed_by_block():
    tokens = tokenize("todo{x}")

    assert tokens[0] == Token(TokenKind.KEYWORD, "todo", _span((0, 0, 0), (4, 0, 4)))
    assert tokens[1] == Token(TokenKind.BLOCK_STRING, "x", _span((4, 0, 4), (7, 0, 7)))


def test_non_alphabetic_line_is_inline_text():
    tokens = tokenize("- [ ] buy milk\n")

    assert tokens[0] == Token(TokenKind.INLINE_STRING, "- [ ] buy milk", _span((0, 0, 0), (14, 0, 14)))
    assert tokens[1].kind is TokenKind.EOF
    assert tokens[1].span.start == Position(15, 1, 0)


def test_first_closing_brace_ends_block():
    tokens = tokenize("todo {a {b} c}")

    assert tokens[1].kind is TokenKind.BLOCK_STRING
    assert tokens[1].text == "a {b"
    assert tokens[2] == Token(TokenKind.INLINE_STRING, "c}", _span((12, 0, 12), (14, 0, 14)))


def test_unterminated_block_runs_to_end_of_input():
    tokens = tokenize("todo {abc\ndef")

    assert tokens[1] == Token(TokenKind.BLOCK_STRING, "abc\ndef", _span((5, 0, 5), (13, 1, 3)))
    assert tokens[2].kind is TokenKind.EOF


def test_whitespace_advances_line_and_column():
    tokens = tokenize("\r\n\ttodo x")

    assert tokens[0].span.start == Position(3, 1, 1)


def test_eof_is_returned_forever():
    lexer = MyndLexer("todo")
    lexer.next_token()

    first = lexer.next_token()
    assert first.kind is TokenKind.EOF
    assert lexer.next_token() == first
    assert lexer.next_token() == first


def test_empty_input_is_just_eof():
    assert tokenize("") == [Token(TokenKind.EOF, "", Span())]


def test_vertical_tab_is_not_skipped_as_whitespace():
    tokens = tokenize("\x0btodo a")

    assert tokens[0] == Token(TokenKind.INLINE_STRING, "\x0btodo a", _span((0, 0, 0), (7, 0, 7)))


def test_form_feed_is_skipped_as_whitespace():
    tokens = tokenize("\x0ctodo a")

    assert tokens[0] == Token(TokenKind.KEYWORD, "todo", _span((1, 0, 1), (5, 0, 5)))
