import io
import json

from mynd_identity import content_hash
from mynd_lsp_server import MyndLSPServer, read_message, uri_to_path, write_message
from mynd_persist import MemoryTodosDB
from mynd_reconcile import DocumentState, DocumentSynchronizer
from mynd_todos import TodoStore

URI = "file:///notes/today.todo"


def frame(payload):
    body = json.dumps(payload).encode("utf-8")
    return b"Content-Length: %d\r\n\r\n" % len(body) + body


def request(id_, method, params=None):
    return frame({"jsonrpc": "2.0", "id": id_, "method": method, "params": params or {}})


def notify(method, params=None):
    return frame({"jsonrpc": "2.0", "method": method, "params": params or {}})


def did_open(text, version=1, uri=URI):
    return notify("textDocument/didOpen", {
        "textDocument": {"uri": uri, "languageId": "mynd", "version": version, "text": text},
    })


def did_change(text, version, uri=URI):
    return notify("textDocument/didChange", {
        "textDocument": {"uri": uri, "version": version},
        "contentChanges": [{"text": text}],
    })


def decode(raw):
    reader = io.BytesIO(raw)
    messages = []
    while True:
        msg = read_message(reader)
        if msg is None:
            return messages
        messages.append(msg)


def run_session(*chunks):
    db = MemoryTodosDB()
    server = MyndLSPServer(DocumentSynchronizer(TodoStore(db)))
    out = io.BytesIO()
    code = server.serve(io.BytesIO(b"".join(chunks)), out)
    return code, decode(out.getvalue()), server, db


def published(messages):
    return [m["params"] for m in messages if m.get("method") == "textDocument/publishDiagnostics"]


def test_full_session():
    code, messages, server, db = run_session(
        request(1, "initialize", {"processId": None, "rootUri": None, "capabilities": {}}),
        notify("initialized"),
        did_open("todo a\nstray"),
        did_change("todo b", 2),
        request(2, "shutdown"),
        notify("exit"),
    )

    assert code == 0
    init = messages[0]
    assert init["id"] == 1
    assert init["result"]["capabilities"]["textDocumentSync"]["change"] == 1
    assert messages[1]["method"] == "window/logMessage"

    diags = published(messages)
    assert [d["version"] for d in diags] == [1, 2]
    assert diags[0]["diagnostics"] == [{
        "range": {"start": {"line": 1, "character": 0}, "end": {"line": 1, "character": 5}},
        "severity": 1,
        "source": "mynd",
        "message": "dangling text; without todo",
    }]
    assert diags[1]["diagnostics"] == []

    assert messages[-1] == {"jsonrpc": "2.0", "id": 2, "result": None}
    assert db.saves == 1
    assert [t.message for t in db.records] == ["b"]


def test_exit_without_shutdown_is_an_error_exit():
    code, _, _, db = run_session(did_open("todo a"), notify("exit"))

    assert code == 1
    assert db.saves == 0


def test_end_of_stream_stops_the_server():
    code, messages, _, _ = run_session(did_open("todo a"))

    assert code == 1
    assert len(published(messages)) == 1


def test_unknown_request_gets_method_not_found():
    _, messages, _, _ = run_session(request(7, "textDocument/hover"), notify("$/cancelRequest"))

    assert messages == [{
        "jsonrpc": "2.0",
        "id": 7,
        "error": {"code": -32601, "message": "Method not found"},
    }]


def test_did_save_reads_file_and_flushes(tmp_path):
    path = tmp_path / "today.todo"
    path.write_text("todo from disk\n", encoding="utf-8")
    uri = path.as_uri()

    _, _, server, db = run_session(
        did_open("", uri=uri),
        notify("textDocument/didSave", {"textDocument": {"uri": uri}}),
    )

    assert db.saves == 1
    assert [t.message for t in db.records] == ["from disk"]
    assert uri_to_path(uri) == str(path)


def test_did_close_clears_diagnostics_and_forgets_document():
    _, messages, server, db = run_session(
        did_open("todo a\nstray"),
        notify("textDocument/didClose", {"textDocument": {"uri": URI}}),
    )

    assert published(messages)[-1] == {"uri": URI, "diagnostics": []}
    assert server.sync.engine.state(URI) is DocumentState.UNKNOWN
    assert server.store.get(content_hash("a")) is not None


def test_busy_store_is_reported_to_client():
    db = MemoryTodosDB()
    server = MyndLSPServer(DocumentSynchronizer(TodoStore(db)))
    out = io.BytesIO()

    with server.store.transaction():
        server.serve(io.BytesIO(did_open("todo a")), out)

    messages = decode(out.getvalue())
    assert [m["method"] for m in messages] == ["window/logMessage", "textDocument/publishDiagnostics"]
    assert messages[0]["params"]["type"] == 1
    assert "failed to acquire lock" in messages[0]["params"]["message"]
    assert db.records == []
    assert server.sync.engine.state(URI) is DocumentState.UNKNOWN


def test_framing_tolerates_extra_headers_and_skips_headerless_messages():
    out = io.BytesIO()
    write_message(out, {"jsonrpc": "2.0", "method": "x", "params": {"text": "café"}})
    raw = b"X-Junk: 1\r\n\r\n" + out.getvalue().replace(
        b"\r\n\r\n", b"\r\nContent-Type: application/vscode-jsonrpc; charset=utf-8\r\n\r\n", 1)

    reader = io.BytesIO(raw)
    assert read_message(reader) == {}
    assert read_message(reader) == {"jsonrpc": "2.0", "method": "x", "params": {"text": "café"}}
    assert read_message(reader) is None


def test_saved_file_with_invalid_utf8_is_still_reconciled(tmp_path):
    path = tmp_path / "today.todo"
    path.write_bytes(b"todo ok\n\xff\xfe\n")
    uri = path.as_uri()

    _, messages, server, db = run_session(
        did_open("", version=4, uri=uri),
        notify("textDocument/didSave", {"textDocument": {"uri": uri}}),
        request(2, "shutdown"),
    )

    after_save = published(messages)[-1]
    assert after_save["version"] == 4
    assert [d["message"] for d in after_save["diagnostics"]] == ["dangling text; without todo"]
    assert [t.message for t in db.records] == ["ok"]
    assert messages[-1] == {"jsonrpc": "2.0", "id": 2, "result": None}


def test_null_text_document_is_ignored():
    params = {"textDocument": None, "contentChanges": [{"text": "todo x"}]}
    _, messages, server, _ = run_session(
        notify("textDocument/didOpen", params),
        notify("textDocument/didChange", params),
        notify("textDocument/didSave", params),
        notify("textDocument/didClose", params),
        did_open("todo a"),
        request(3, "shutdown"),
    )

    assert [m.get("method") for m in messages] == ["textDocument/publishDiagnostics", None]
    assert [t.message for t in server.store.get_all()] == ["a"]


def test_unpaired_surrogate_in_text_is_replaced():
    code, messages, server, db = run_session(
        did_open("todo a\ud800"),
        request(2, "shutdown"),
        notify("exit"),
    )

    assert code == 0
    assert published(messages)[0]["diagnostics"] == []
    assert [t.message for t in db.records] == ["a\ufffd"]
    assert db.records[0].id == content_hash("a\ufffd")


def test_crashing_handler_is_reported_and_session_continues():
    def boom(params, id_):
        raise RuntimeError("kaboom")

    server = MyndLSPServer(DocumentSynchronizer(TodoStore(MemoryTodosDB())))
    server._request_handlers["initialize"] = boom
    server._request_handlers["textDocument/didOpen"] = boom
    out = io.BytesIO()

    code = server.serve(io.BytesIO(b"".join([
        request(1, "initialize"),
        did_open("todo a"),
        frame([1, 2, 3]),
        request(2, "shutdown"),
        notify("exit"),
    ])), out)

    messages = decode(out.getvalue())
    assert code == 0
    assert messages[0] == {
        "jsonrpc": "2.0",
        "id": 1,
        "error": {"code": -32603, "message": "RuntimeError: kaboom"},
    }
    assert messages[1]["method"] == "window/logMessage"
    assert messages[1]["params"] == {"type": 1, "message": "textDocument/didOpen failed: RuntimeError: kaboom"}
    assert messages[2] == {"jsonrpc": "2.0", "id": 2, "result": None}


def test_change_without_version_keeps_last_known_version():
    _, messages, _, _ = run_session(
        did_open("todo a", version=3),
        notify("textDocument/didChange", {"textDocument": {"uri": URI}, "contentChanges": [{"text": "todo b"}]}),
    )

    assert [d["version"] for d in published(messages)] == [3, 3]
