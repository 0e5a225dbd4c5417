"""
mynd_lsp_server.py

Language Server Protocol (LSP) server for mynd todo documents.

Any document opened in the editor is parsed as todo notation and kept in sync
with the todo store: items typed into the buffer become todos, items deleted
from the buffer are retracted, and malformed lines are reported as
diagnostics at their exact position.

- JSON-RPC 2.0 over stdio (default) or a single TCP client, Content-Length framed.
- Full-text document sync; notifications are handled in arrival order on the
  reader thread, so reconciliation of one document is never concurrent.
- Store failures are forwarded to the client as window/logMessage errors.
- A handler that raises is reported to the client (error response or
  logMessage) and the session keeps running.
- The store is flushed on didSave and on shutdown.

Usage:
  python mynd_lsp_server.py --stdio
  python mynd_lsp_server.py --tcp --host 127.0.0.1 --port 2088
  python mynd_lsp_server.py --help
"""

from __future__ import annotations
import argparse
import json
import logging
import re
import socket
import sys
import threading
from typing import Any, BinaryIO, Callable, Dict, List, Optional
from urllib.parse import unquote, urlparse

from mynd_config import MyndConfig, load_config
from mynd_persist import MemoryTodosDB, open_database
from mynd_reconcile import DocumentSynchronizer, SyncResult
from mynd_todos import MyndError, StoreError, TodoStore

LOG = logging.getLogger("mynd.lsp")

_CONTENT_LENGTH_RE = re.compile(rb"Content-Length:\s*(\d+)", re.IGNORECASE)

# window/logMessage types
MSG_ERROR = 1
MSG_WARNING = 2
MSG_INFO = 3

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

TEXT_DOCUMENT_SYNC_FULL = 1


_LONE_SURROGATE_RE = re.compile("[\ud800-\udfff]")


def read_message(reader: BinaryIO) -> Optional[Dict[str, Any]]:
    """Read one Content-Length framed JSON-RPC message; None on end of stream."""
    header = b""
    while True:
        line = reader.readline()
        if not line:
            return None
        if line in (b"\r\n", b"\n"):
            if header:
                break
            continue
        header += line
    m = _CONTENT_LENGTH_RE.search(header)
    if not m:
        LOG.warning("dropping message without Content-Length header")
        return {}
    length = int(m.group(1))
    body = reader.read(length)
    if len(body) < length:
        return None
    return json.loads(body.decode("utf-8", errors="replace"))


def write_message(writer: BinaryIO, payload: Dict[str, Any]) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    writer.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii"))
    writer.write(body)
    writer.flush()


def uri_to_path(uri: str) -> str:
    if uri.startswith("file://"):
        p = unquote(urlparse(uri).path)
        if sys.platform == "win32" and re.match(r"^/[A-Za-z]:", p):
            p = p[1:]
        return p
    return uri


class MyndLSPServer:
    def __init__(self, synchronizer: DocumentSynchronizer):
        self.sync = synchronizer
        self.store = synchronizer.store
        # uri -> last version the client reported
        self._versions: Dict[str, Optional[int]] = {}
        self._writer: Optional[BinaryIO] = None
        self._send_lock = threading.Lock()
        self._running = False
        self._shutdown_requested = False
        self._request_handlers: Dict[str, Callable[[Any, Any], None]] = {
            "initialize": self._handle_initialize,
            "initialized": self._handle_initialized,
            "shutdown": self._handle_shutdown,
            "exit": self._handle_exit,
            "textDocument/didOpen": self._handle_did_open,
            "textDocument/didChange": self._handle_did_change,
            "textDocument/didSave": self._handle_did_save,
            "textDocument/didClose": self._handle_did_close,
        }

    # -- JSON-RPC output helpers --
    def _send(self, payload: Dict[str, Any]) -> None:
        if self._writer is None:
            LOG.debug("no client attached; dropping %s", payload.get("method") or payload.get("id"))
            return
        with self._send_lock:
            try:
                write_message(self._writer, payload)
                LOG.debug(">> %s", payload.get("method") or payload.get("id"))
            except (OSError, ValueError):
                LOG.exception("send failed")

    def _send_response(self, id_: Any, result: Any = None, error: Optional[Dict[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": id_}
        if error is not None:
            payload["error"] = error
        else:
            payload["result"] = result
        self._send(payload)

    def _send_notification(self, method: str, params: Any = None) -> None:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        self._send(payload)

    def log_message(self, type_: int, message: str) -> None:
        self._send_notification("window/logMessage", {"type": type_, "message": message})

    def publish_diagnostics(self, uri: str, diagnostics: List[Dict[str, Any]], version: Optional[int] = None) -> None:
        params: Dict[str, Any] = {"uri": uri, "diagnostics": diagnostics}
        if version is not None:
            params["version"] = version
        self._send_notification("textDocument/publishDiagnostics", params)

    # -- lifecycle --
    def _handle_initialize(self, params: Any, id_: Any) -> None:
        caps = {
            "capabilities": {
                "textDocumentSync": {
                    "openClose": True,
                    "change": TEXT_DOCUMENT_SYNC_FULL,
                    "save": {"includeText": True},
                },
            },
            "serverInfo": {"name": "mynd"},
        }
        self._send_response(id_, caps)

    def _handle_initialized(self, params: Any, id_: Any) -> None:
        self.log_message(MSG_INFO, "mynd server initialized!")

    def _handle_shutdown(self, params: Any, id_: Any) -> None:
        self._shutdown_requested = True
        self._flush_store()
        self._send_response(id_, None)

    def _handle_exit(self, params: Any, id_: Any) -> None:
        self._running = False

    # -- document sync --
    def _on_change(self, uri: str, text: str, version: Optional[int]) -> SyncResult:
        # JSON escapes can carry unpaired surrogates, which have no UTF-8 form
        text = _LONE_SURROGATE_RE.sub("\ufffd", text)
        result = self.sync.on_change(uri, text, version)
        if result.fatal:
            self.log_message(MSG_ERROR, f"no changes applied: {result.fatal}")
        for failure in result.failures:
            self.log_message(MSG_ERROR, str(failure))
        self.publish_diagnostics(uri, [d.to_lsp() for d in result.diagnostics], version)
        return result

    def _handle_did_open(self, params: Dict[str, Any], id_: Any = None) -> None:
        doc = params.get("textDocument") or {}
        uri = doc.get("uri")
        if not uri:
            return
        version = doc.get("version")
        self._versions[uri] = version
        self._on_change(uri, doc.get("text") or "", version)

    def _handle_did_change(self, params: Dict[str, Any], id_: Any = None) -> None:
        doc = params.get("textDocument") or {}
        uri = doc.get("uri")
        changes = params.get("contentChanges") or []
        if not uri or not changes:
            return
        # full sync: the last change carries the whole buffer
        text = (changes[-1] or {}).get("text") or ""
        version = doc.get("version")
        if version is not None:
            self._versions[uri] = version
        self._on_change(uri, text, self._versions.get(uri))

    def _handle_did_save(self, params: Dict[str, Any], id_: Any = None) -> None:
        uri = (params.get("textDocument") or {}).get("uri")
        if not uri:
            return
        text = params.get("text")
        if text is None:
            path = uri_to_path(uri)
            try:
                with open(path, "r", encoding="utf-8", errors="replace") as f:
                    text = f.read()
            except OSError as e:
                LOG.warning("failed to read file after save: %s", e)
                self.log_message(MSG_WARNING, f"failed to read file after save: {e}")
                return
        self._on_change(uri, text, self._versions.get(uri))
        self._flush_store()

    def _handle_did_close(self, params: Dict[str, Any], id_: Any = None) -> None:
        uri = (params.get("textDocument") or {}).get("uri")
        if not uri:
            return
        self._versions.pop(uri, None)
        self.sync.on_close(uri)
        self.publish_diagnostics(uri, [])

    def _flush_store(self) -> None:
        try:
            self.store.flush()
        except StoreError as e:
            LOG.error("flush failed: %s", e)
            self.log_message(MSG_ERROR, f"failed to save todos: {e}")

    # -- dispatch --
    def _dispatch_message(self, msg: Dict[str, Any]) -> None:
        method = msg.get("method")
        id_ = msg.get("id")
        if method is None:
            # responses from the client are not expected
            return
        LOG.debug("<< %s", method)
        handler = self._request_handlers.get(method)
        if handler is None:
            if id_ is not None:
                self._send_response(id_, None, {"code": METHOD_NOT_FOUND, "message": "Method not found"})
            else:
                LOG.debug("Unhandled notification: %s", method)
            return
        try:
            handler(msg.get("params") or {}, id_)
        except MyndError as e:
            LOG.error("%s failed: %s", method, e)
            self._report_failure(method, id_, str(e))
        except Exception as e:
            LOG.exception("handler for %s crashed", method)
            self._report_failure(method, id_, f"{type(e).__name__}: {e}")

    def _report_failure(self, method: str, id_: Any, message: str) -> None:
        if id_ is not None:
            self._send_response(id_, None, {"code": INTERNAL_ERROR, "message": message})
        else:
            self.log_message(MSG_ERROR, f"{method} failed: {message}")

    def serve(self, reader: BinaryIO, writer: BinaryIO) -> int:
        self._writer = writer
        self._running = True
        while self._running:
            try:
                msg = read_message(reader)
            except ValueError:
                LOG.exception("malformed message")
                continue
            if msg is None:
                break
            if not isinstance(msg, dict):
                LOG.warning("dropping non-object message")
                continue
            if msg:
                self._dispatch_message(msg)
        self._running = False
        return 0 if self._shutdown_requested else 1

    def serve_stdio(self) -> int:
        LOG.info("mynd LSP server (stdio) starting")
        return self.serve(sys.stdin.buffer, sys.stdout.buffer)

    def serve_tcp(self, host: str, port: int) -> int:
        LOG.info("Starting TCP LSP server on %s:%d", host, port)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((host, port))
            s.listen(1)
            conn, addr = s.accept()
            LOG.info("Client connected: %s", addr)
            with conn, conn.makefile("rwb") as conn_file:
                return self.serve(conn_file, conn_file)


# -------------------------
# Argparse + CLI
# -------------------------
def configure_logging(level: str) -> None:
    root = logging.getLogger("mynd")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        root.addHandler(h)


def build_server(config: MyndConfig, ephemeral: bool = False) -> MyndLSPServer:
    db = MemoryTodosDB() if ephemeral else open_database(config)
    return MyndLSPServer(DocumentSynchronizer(TodoStore(db)))


def add_server_arguments(p: argparse.ArgumentParser) -> None:
    transport = p.add_mutually_exclusive_group()
    transport.add_argument("--stdio", action="store_true", help="serve LSP over stdio (default)")
    transport.add_argument("--tcp", action="store_true", help="serve LSP over TCP (single client)")
    p.add_argument("--host", default="127.0.0.1", help="TCP host to bind")
    p.add_argument("--port", type=int, default=2088, help="TCP port to bind")
    p.add_argument("--ephemeral", action="store_true", help="keep todos in memory only")


def run_server(args: argparse.Namespace, config: MyndConfig) -> int:
    server = build_server(config, ephemeral=args.ephemeral)
    try:
        if args.tcp:
            return server.serve_tcp(args.host, args.port)
        return server.serve_stdio()
    except KeyboardInterrupt:
        return 0


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mynd-lsp", description="mynd todo language server")
    add_server_arguments(p)
    p.add_argument("--log-level", default=None, help="logging level (DEBUG/INFO/WARNING/ERROR)")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_argparser().parse_args(argv)
    try:
        config = load_config()
    except MyndError as e:
        print(f"mynd-lsp: {e}", file=sys.stderr)
        return 2
    configure_logging(args.log_level or config.log_level)
    try:
        return run_server(args, config)
    except MyndError as e:
        LOG.error("server failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
