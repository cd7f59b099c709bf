from __future__ import annotations

import asyncio
import html
import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from .errors import AttemptAbandonedError, AuthError, BindError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
_MAX_HEADER_LINES = 100

_SUCCESS_PAGE = """<!doctype html>
<html>
  <body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Authorization successful!</h1>
    <p>You can close this window and return to your notes.</p>
    <script>setTimeout(() => window.close(), 2000);</script>
  </body>
</html>
"""

_ERROR_PAGE = """<!doctype html>
<html>
  <body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Authorization failed</h1>
    <p>{message}</p>
    <p>You can close this window and return to your notes.</p>
    <script>setTimeout(() => window.close(), 3000);</script>
  </body>
</html>
"""

_NOT_FOUND_PAGE = "<!doctype html><html><body><p>Not found</p></body></html>\n"

_REASONS = {200: "OK", 400: "Bad Request", 404: "Not Found"}


@dataclass(frozen=True)
class CallbackParams:
    code: str | None = None
    state: str | None = None
    error: str | None = None

    @classmethod
    def from_query(cls, query: str) -> CallbackParams:
        values = parse_qs(query, keep_blank_values=True)

        def first(name: str) -> str | None:
            items = values.get(name)
            return items[0] if items else None

        return cls(code=first("code"), state=first("state"), error=first("error"))


Validator = Callable[[CallbackParams], AuthError | None]


def render_success_page() -> str:
    return _SUCCESS_PAGE


def render_error_page(message: str) -> str:
    return _ERROR_PAGE.format(message=html.escape(message, quote=True))


class LoopbackListener:
    """Single-use HTTP listener that receives the provider's redirect.

    The first request to the callback path is validated, answered, and then the
    listener stops accepting connections. The outcome is delivered through
    ``wait_for_callback``.
    """

    def __init__(
        self,
        *,
        validate: Validator,
        host: str = "127.0.0.1",
        port: int = 8080,
        path: str = CALLBACK_PATH,
    ) -> None:
        self._validate = validate
        self._host = host
        self._port = port
        self._path = path
        self._server: asyncio.Server | None = None
        self._result: asyncio.Future[CallbackParams] | None = None
        self._claimed = False
        self._connections: set[asyncio.StreamWriter] = set()

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        self._result = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(self._handle, self._host, self._port)
        except OSError as exc:
            raise BindError(self._port, exc.strerror or str(exc)) from exc
        logger.info(
            "Loopback listener started",
            extra={"event": "listener_started", "port": self._port},
        )

    async def wait_for_callback(self) -> CallbackParams:
        if self._result is None:
            raise RuntimeError("Listener was not started")
        try:
            return await asyncio.shield(self._result)
        except asyncio.CancelledError:
            if self._result.cancelled():
                raise AttemptAbandonedError() from None
            raise

    async def close(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.cancel()
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        for writer in list(self._connections):
            writer.close()
        await server.wait_closed()
        logger.info(
            "Loopback listener closed",
            extra={"event": "listener_closed", "port": self._port},
        )

    def _stop_accepting(self) -> None:
        if self._server is not None:
            self._server.close()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._connections.add(writer)
        try:
            try:
                request_line = await reader.readline()
                if not request_line:
                    return
                await _skip_headers(reader)
            except ValueError:
                # Line longer than the stream limit.
                await _respond(writer, 400, render_error_page("Malformed request"))
                return
            parts = request_line.decode("latin-1").split()
            target = urlsplit(parts[1]) if len(parts) >= 2 else None
            if target is None or target.path != self._path or self._claimed:
                await _respond(writer, 404, _NOT_FOUND_PAGE)
                return

            self._claimed = True
            params = CallbackParams.from_query(target.query)
            verdict = self._validate(params)
            self._stop_accepting()
            try:
                if verdict is None:
                    await _respond(writer, 200, render_success_page())
                else:
                    await _respond(writer, 400, render_error_page(str(verdict)))
            except ConnectionError:
                logger.warning(
                    "Browser disconnected before the response was sent",
                    extra={"event": "callback_response_failed", "port": self._port},
                )
            self._resolve(params, verdict)
        except ConnectionError:
            logger.debug("Loopback connection reset", extra={"event": "connection_reset"})
        finally:
            self._connections.discard(writer)
            writer.close()

    def _resolve(self, params: CallbackParams, verdict: AuthError | None) -> None:
        if self._result is None or self._result.done():
            return
        if verdict is None:
            self._result.set_result(params)
        else:
            self._result.set_exception(verdict)


async def _skip_headers(reader: asyncio.StreamReader) -> None:
    for _ in range(_MAX_HEADER_LINES):
        line = await reader.readline()
        if line in (b"\r\n", b"\n", b""):
            return


async def _respond(writer: asyncio.StreamWriter, status: int, body: str) -> None:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status} {_REASONS[status]}\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    writer.write(head.encode("latin-1") + payload)
    await writer.drain()
