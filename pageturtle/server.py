"""Development server for Pageturtle.

Serves the latest build with live reload:
- HTML responses get a reload script that knows the revision it was served from.
- Missing paths return a 404; there are no directory listings.
- Source folders are watched; changes are debounced, rebuilt incrementally and
  announced to browsers over a websocket.

Three activities run side by side: the HTTP server, the watchdog observer and
one consumer thread that rebuilds. The observer only ever enqueues paths into
a bounded ChangeQueue; the consumer is the only thread that builds. Requests
read ``DevServer.snapshot``, an immutable BuildSnapshot replaced by a single
assignment after each successful rebuild, so a request never sees half a build.

Key classes:
- DevServer: Wires the orchestrator, HTTP server, websocket server and watcher.
- ChangeQueue: Bounded, non-blocking change queue with trailing debounce.
- _SnapshotHandler: HTTP request handler serving from the snapshot.
- _ChangeHandler: File system event handler feeding the queue.
"""

from __future__ import annotations

import asyncio
import json
import mimetypes
import queue
import threading
import time
from collections.abc import Callable
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import unquote, urlsplit

import click
import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import Orchestrator
from .config import SiteConfig, load_config
from .errors import BuildError
from .protocols import ChangeSink
from .snapshot import BuildSnapshot, DirectoryPublisher, OutputArtifact

RELOAD_SCRIPT_TEMPLATE = """<script>
(() => {{
  const revision = {revision};
  const showError = (message) => {{
    let box = document.getElementById('pageturtle-error');
    if (!box) {{
      box = document.createElement('pre');
      box.id = 'pageturtle-error';
      box.style.cssText = 'position:fixed;inset:0;margin:0;padding:2em;z-index:99999;' +
        'background:rgba(20,20,20,.92);color:#ff8080;white-space:pre-wrap;font:14px monospace';
      document.body.appendChild(box);
    }}
    box.textContent = 'Build failed\\n\\n' + message;
  }};
  const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
  ws.onmessage = (event) => {{
    const data = JSON.parse(event.data || '{{}}');
    if (data.type === 'error' || data.error) showError(data.error || data.message || '');
    else if (data.revision > revision) location.reload();
  }};
}})();
</script>
"""

# Name patterns editors use for swap, backup and lock files.
_TEMP_SUFFIXES = ("~", ".swp", ".swx", ".swo", ".tmp", ".part", ".crdownload")
_TEMP_PREFIXES = (".#", "#", ".~")
_IGNORED_EVENTS = frozenset({"opened", "closed_no_write"})


class ServerState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    SERVING = "serving"
    RELOADING = "reloading"


def reload_script(revision: int, ws_port: int) -> str:
    return RELOAD_SCRIPT_TEMPLATE.format(revision=revision, ws_port=ws_port)


def inject_reload_script(html: bytes, script: str) -> bytes:
    """Insert the reload script before the last ``</body>``, or append it."""
    marker = b"</body>"
    encoded = script.encode("utf-8")
    index = html.rfind(marker)
    if index == -1:
        return html + encoded
    return html[:index] + encoded + html[index:]


def resolve_request_path(snapshot: BuildSnapshot, raw_path: str) -> OutputArtifact | None:
    """Find the artifact a request path refers to.

    ``/`` and ``/posts/a/`` map to their ``index.html``; ``/posts/a`` falls
    back to ``posts/a/index.html``. Paths escaping the output root never match.
    """
    path = unquote(urlsplit(raw_path).path)
    parts = [part for part in PurePosixPath("/" + path).parts[1:] if part]
    if any(part in (".", "..") for part in parts):
        return None
    relative = "/".join(parts)
    if not relative or path.endswith("/"):
        return snapshot.get(f"{relative}/index.html" if relative else "index.html")
    return snapshot.get(relative) or snapshot.get(f"{relative}/index.html")


def is_editor_temp(path: Path) -> bool:
    name = path.name
    if name.endswith(_TEMP_SUFFIXES) or name.startswith(_TEMP_PREFIXES):
        return True
    # vim probes directory writability with a file named 4913
    return name == "4913"


def _is_within(path: Path, folder: Path) -> bool:
    try:
        path.relative_to(folder)
    except ValueError:
        return False
    return True


class ChangeQueue:
    """Bounded single-consumer queue of changed paths.

    Producers never block: when the queue is full the change is dropped, since
    a rebuild that will pick it up is already pending.
    """

    _CLOSE = object()

    def __init__(self, maxsize: int = 512):
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    def put(self, path: str) -> bool:
        """Enqueue a changed path; return False if it was dropped."""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(path)
        except queue.Full:
            return False
        return True

    def close(self) -> None:
        """Wake the consumer and make it stop."""
        self._closed.set()
        try:
            self._queue.put_nowait(self._CLOSE)
        except queue.Full:
            # The consumer is about to drain a full queue and checks the flag.
            return

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def next_batch(self, debounce: float, max_windows: int = 10) -> list[str] | None:
        """Wait for a burst of changes and return it once things settle.

        Blocks until the first change arrives, then keeps collecting until no
        change has arrived for ``debounce`` seconds, or until ``max_windows``
        debounce windows have passed since the first change so a constant
        stream of events cannot postpone a rebuild forever.

        Returns:
            Changed paths in arrival order without duplicates, or None once
            the queue is closed.
        """
        first = self._queue.get()
        if first is self._CLOSE or self.closed:
            return None
        batch = [first]
        started = time.monotonic()
        hard_limit = started + debounce * max_windows
        quiet_until = started + debounce
        while True:
            timeout = min(quiet_until, hard_limit) - time.monotonic()
            if timeout <= 0:
                break
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                break
            if item is self._CLOSE:
                return None
            batch.append(item)
            quiet_until = time.monotonic() + debounce
        if self.closed:
            return None
        return list(dict.fromkeys(batch))


class _SnapshotHandler(BaseHTTPRequestHandler):
    """HTTP request handler that serves the dev server's current snapshot.

    Attributes:
        dev_server: Server whose ``snapshot`` is served; bound per subclass.
    """

    dev_server: DevServer

    def do_GET(self):
        self._respond(include_body=True)

    def do_HEAD(self):
        self._respond(include_body=False)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def _respond(self, include_body: bool) -> None:
        snapshot = self.dev_server.snapshot
        script = reload_script(snapshot.revision, self.dev_server.ws_port)
        artifact = resolve_request_path(snapshot, self.path)
        if artifact is None:
            body = inject_reload_script(_not_found_page(self.path), script)
            self._send(404, "text/html; charset=utf-8", body, include_body)
            return
        content_type = mimetypes.guess_type(artifact.path)[0] or "application/octet-stream"
        data = artifact.data
        if content_type == "text/html":
            data = inject_reload_script(data, script)
        if content_type.startswith("text/") or content_type in ("application/xml", "application/javascript"):
            content_type += "; charset=utf-8"
        self._send(200, content_type, data, include_body)

    def _send(self, status: int, content_type: str, body: bytes, include_body: bool) -> None:
        self.send_response(status)
        self.send_header("Content-type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if include_body:
            self.wfile.write(body)


def _not_found_page(path: str) -> bytes:
    safe = path.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return (
        "<!doctype html><html><head><title>404 Not Found</title></head>"
        f"<body><h1>404 Not Found</h1><p>{safe}</p></body></html>"
    ).encode("utf-8")


class DevServer:
    """Development server with incremental rebuilds and live reload.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration with the dev ports applied.
        http_port: Port for the HTTP server.
        ws_port: Port for websocket connections.
        orchestrator: Incremental builder, also publishing to ``output_dir``.
        snapshot: Snapshot currently being served.
        state: Current ServerState.
        last_error: Failure of the most recent rebuild, if it failed.
        queue: Changes waiting for the consumer.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
        config: SiteConfig | None = None,
    ):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for the HTTP port.
            ws_port: Optional override for the websocket port (defaults to HTTP port + 1).
            config: Preloaded configuration; read from the project when omitted.
        """
        self.project_root = project_root
        self.config = (config or load_config(project_root)).with_ports(http_port, ws_port)
        self.http_port = self.config.port
        self.ws_port = self.config.ws_port
        self.publisher = DirectoryPublisher(self.config.output_dir)
        self.orchestrator = Orchestrator(self.config, self.publisher)
        self.snapshot = BuildSnapshot(revision=0)
        self.state = ServerState.IDLE
        self.last_error: BuildError | None = None
        self.queue = ChangeQueue()
        self._observer: Observer | None = None
        self._httpd: ThreadingHTTPServer | None = None
        self._consumer: threading.Thread | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()

    def start(self) -> None:  # pragma: no cover - integration path
        click.echo("Building site...")
        self.rebuild()
        self._httpd = self.make_http_server("", self.http_port)
        threading.Thread(target=self._httpd.serve_forever, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._consumer = threading.Thread(target=self.consume, daemon=True)
        self._consumer.start()
        self._start_watcher()
        click.echo(f"Serving at http://localhost:{self.http_port} (live reload on port {self.ws_port})")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self.queue.close()
        if self._consumer:
            self._consumer.join()
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
        if self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        self.publisher.discard()
        self.state = ServerState.IDLE

    def make_http_server(self, host: str, port: int) -> ThreadingHTTPServer:
        """Create (but do not start) the HTTP server bound to this dev server."""
        handler = type("_BoundSnapshotHandler", (_SnapshotHandler,), {"dev_server": self})
        return ThreadingHTTPServer((host, port), handler)

    def rebuild(self) -> bool:
        """Run one build pass and publish its outcome.

        On success the served snapshot is replaced and browsers are told to
        reload. On failure the error is reported, browsers show it, and the
        previous snapshot keeps being served.

        Returns:
            True if the build succeeded.
        """
        self.state = ServerState.BUILDING
        try:
            result = self.orchestrator.build()
        except BuildError as exc:
            self.last_error = exc
            self.state = ServerState.SERVING
            click.echo(click.style("Build failed:", fg="red", bold=True) + f" {exc}", err=True)
            self._broadcast({"type": "error", "revision": self.snapshot.revision, "message": str(exc)})
            return False
        self.snapshot = result.snapshot
        self.last_error = None
        self.state = ServerState.RELOADING
        click.echo(
            click.style(f"Revision {result.revision}", fg="green")
            + f": {len(result.rendered)} rendered, {len(result.skipped)} unchanged"
        )
        self._broadcast({"type": "reload", "revision": result.revision})
        self.state = ServerState.SERVING
        return True

    def consume(self) -> None:
        """Rebuild once per debounced batch of changes until the queue closes."""
        while True:
            batch = self.queue.next_batch(self.config.debounce_seconds)
            if batch is None:
                return
            noun = "change" if len(batch) == 1 else "changes"
            click.echo(f"{len(batch)} {noun} detected; rebuilding...")
            self.rebuild()

    def is_ignored(self, path: Path) -> bool:
        """Whether a changed path must not trigger a rebuild.

        The watcher covers the whole project root; only files inside a source
        folder count, and editor temp files never do.
        """
        publisher = self.publisher
        output = (publisher.output_dir, publisher.staging_dir, publisher.backup_dir)
        if any(_is_within(path, folder) for folder in output):
            return True
        config = self.config
        sources = (config.posts_dir, config.pages_dir, config.templates_dir, config.assets_dir)
        if not any(_is_within(path, folder) for folder in sources):
            return True
        return is_editor_temp(path)

    def hello(self) -> dict[str, Any]:
        message: dict[str, Any] = {"type": "hello", "revision": self.snapshot.revision}
        if self.last_error is not None:
            message["error"] = str(self.last_error)
        return message

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            click.echo(f"WebSocket server failed to start (port {self.ws_port}): {exc}", err=True)
        except RuntimeError:
            # stop() halted the loop before the server future resolved
            return

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.send(json.dumps(self.hello()))
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast(self, payload: dict[str, Any]) -> None:
        if not self._loop.is_running():
            return
        message = json.dumps(payload)
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self.queue, self.is_ignored)
        observer = Observer()
        # Source folders created after startup are picked up too.
        observer.schedule(handler, str(self.config.project_root), recursive=True)
        observer.start()
        self._observer = observer


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, sink: ChangeSink, ignore: Callable[[Path], bool]):
        super().__init__()
        self.sink = sink
        self.ignore = ignore

    def on_any_event(self, event):
        if event.is_directory or event.event_type in _IGNORED_EVENTS:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = Path(raw if isinstance(raw, str) else raw.decode())
            if self.ignore(path):
                continue
            self.sink.put(str(path))
