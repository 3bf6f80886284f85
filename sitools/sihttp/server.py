"""A WSGI HTTP server with optional TLS and CORS handling."""

from __future__ import annotations

import logging
import ssl
import threading
from http import HTTPStatus
from socketserver import ThreadingMixIn
from typing import Any, Callable, Iterable, Sequence
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

WsgiApp = Callable[..., Iterable[bytes]]

DEFAULT_CORS_METHODS = ("GET", "HEAD", "POST")
DEFAULT_CORS_HEADERS = ("Accept", "Accept-Language", "Content-Language", "Origin")
_MATCH_ALL = "*"

_TLS12_CIPHERS = ":".join([
    "RC4-SHA",
    "DES-CBC3-SHA",
    "AES128-SHA",
    "AES256-SHA",
    "AES128-SHA256",
    "AES128-GCM-SHA256",
    "AES256-GCM-SHA384",
    "ECDHE-ECDSA-RC4-SHA",
    "ECDHE-ECDSA-AES128-SHA",
    "ECDHE-ECDSA-AES256-SHA",
    "ECDHE-RSA-RC4-SHA",
    "ECDHE-RSA-DES-CBC3-SHA",
    "ECDHE-RSA-AES128-SHA",
    "ECDHE-RSA-AES256-SHA",
    "ECDHE-ECDSA-AES128-SHA256",
    "ECDHE-RSA-AES128-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
])

_log = logging.getLogger(__name__)


def _status_line(code: int) -> str:
    return f"{code} {HTTPStatus(code).phrase}"


def _canonical(name: str) -> str:
    return "-".join(part.capitalize() for part in name.strip().split("-"))


def cors_middleware(app: WsgiApp, allowed_origins: Sequence[str] | None,
                    allowed_headers: Sequence[str] | None,
                    allowed_methods: Sequence[str] | None) -> WsgiApp:
    """Wrap a WSGI app with CORS handling.

    Origins: empty allows every origin, "*" anywhere allows every origin.
    Headers are added to the simple headers. Methods replace the defaults
    (GET, HEAD, POST) when given, even as an empty sequence.
    """
    origins = list(allowed_origins or [])
    if _MATCH_ALL in origins:
        origins = [_MATCH_ALL]

    headers = list(DEFAULT_CORS_HEADERS)
    for name in allowed_headers or []:
        canonical = _canonical(name)
        if canonical and canonical not in headers:
            headers.append(canonical)

    if allowed_methods is None:
        methods = list(DEFAULT_CORS_METHODS)
    else:
        methods = []
        for method in allowed_methods:
            normalized = method.strip().upper()
            if normalized and normalized not in methods:
                methods.append(normalized)

    def origin_allowed(origin: str) -> bool:
        if not origin:
            return False
        if not origins:
            return True
        return any(allowed in (origin, _MATCH_ALL) for allowed in origins)

    def empty(start_response: Callable[..., Any], code: int,
              extra: list[tuple[str, str]] | None = None) -> list[bytes]:
        start_response(_status_line(code), list(extra or []))
        return [b""]

    def middleware(environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        origin = environ.get("HTTP_ORIGIN", "")
        preflight = environ.get("REQUEST_METHOD", "GET") == "OPTIONS"

        if not origin_allowed(origin):
            if not preflight:
                return app(environ, start_response)
            return empty(start_response, 200)

        extra: list[tuple[str, str]] = []
        if preflight:
            if "HTTP_ACCESS_CONTROL_REQUEST_METHOD" not in environ:
                return empty(start_response, 400)
            method = environ["HTTP_ACCESS_CONTROL_REQUEST_METHOD"]
            if method not in methods:
                return empty(start_response, 405)
            granted = []
            for requested in environ.get("HTTP_ACCESS_CONTROL_REQUEST_HEADERS", "").split(","):
                canonical = _canonical(requested)
                if not canonical or canonical in DEFAULT_CORS_HEADERS:
                    continue
                if canonical not in headers:
                    return empty(start_response, 403)
                granted.append(canonical)
            if granted:
                extra.append(("Access-Control-Allow-Headers", ",".join(granted)))
            if method not in DEFAULT_CORS_METHODS:
                extra.append(("Access-Control-Allow-Methods", method))

        if len(origins) > 1:
            extra.append(("Vary", "Origin"))
        return_origin = _MATCH_ALL if not origins or _MATCH_ALL in origins else origin
        extra.append(("Access-Control-Allow-Origin", return_origin))

        if preflight:
            return empty(start_response, 200, extra)

        def start(status: str, response_headers: list[tuple[str, str]],
                  exc_info: Any = None) -> Any:
            names = {name.lower() for name, _ in response_headers}
            merged = [h for h in extra if h[0].lower() not in names] + list(response_headers)
            if exc_info is None:
                return start_response(status, merged)
            return start_response(status, merged, exc_info)

        return app(environ, start)

    return middleware


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    allow_reuse_address = True


class _RequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        _log.debug("%s - " + format, self.address_string(), *args)


def _split_addr(addr: str, default_port: int) -> tuple[str, int]:
    host, _, port = addr.rpartition(":")
    if not _:
        return addr, default_port
    return host.strip("[]"), int(port) if port else default_port


class Server:
    """An HTTP server serving a WSGI app, with TLS when a certificate is given."""

    def __init__(self, handler: WsgiApp, tls_context: ssl.SSLContext | None, addr: str,
                 write_timeout: float, read_timeout: float, pem: str = "", key: str = "",
                 allowed_origins: Sequence[str] | None = None,
                 allowed_headers: Sequence[str] | None = None,
                 allowed_methods: Sequence[str] | None = None) -> None:
        self.tls_context = tls_context
        self.addr = addr
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout
        self.pem = pem
        self.key = key
        if not allowed_origins and not allowed_headers and not allowed_methods:
            self.handler = handler
        else:
            self.handler = cors_middleware(handler, list(allowed_origins or []),
                                           list(allowed_headers or []),
                                           list(allowed_methods or []))
        self.started = threading.Event()
        self._lock = threading.Lock()
        self._closed = False
        self._httpd: WSGIServer | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """The bound (host, port) while serving, else None."""
        httpd = self._httpd
        return None if httpd is None else httpd.server_address[:2]

    def start(self) -> None:
        """Listen and serve until stop() is called; returns at once if already stopped."""
        use_tls = bool(self.pem) or bool(self.key)
        host, port = _split_addr(self.addr, 443 if use_tls else 80)
        timeouts = [t for t in (self.read_timeout, self.write_timeout) if t and t > 0]
        connection_timeout = max(timeouts) if timeouts else None

        class _Handler(_RequestHandler):
            timeout = connection_timeout

        with self._lock:
            if self._closed:
                return
            httpd = make_server(host, port, self.handler,
                                server_class=_ThreadingWSGIServer, handler_class=_Handler)
            if use_tls:
                context = self.tls_context or ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
                context.load_cert_chain(self.pem, self.key or None)
                httpd.socket = context.wrap_socket(httpd.socket, server_side=True)
            self._httpd = httpd
        self.started.set()
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def stop(self) -> None:
        """Stop serving; the server cannot be started again."""
        with self._lock:
            self._closed = True
            httpd, self._httpd = self._httpd, None
        if httpd is not None:
            httpd.shutdown()


def new_server(handler: WsgiApp, tls_context: ssl.SSLContext | None, addr: str,
               write_timeout: float, read_timeout: float) -> Server:
    """Return a plain HTTP server."""
    return new_server_cors(handler, tls_context, addr, write_timeout, read_timeout,
                           "", "", None, None, None)


def new_server_tls(handler: WsgiApp, tls_context: ssl.SSLContext | None, addr: str,
                   write_timeout: float, read_timeout: float, pem: str, key: str) -> Server:
    """Return a server that serves TLS when pem or key is given."""
    return new_server_cors(handler, tls_context, addr, write_timeout, read_timeout,
                           pem, key, None, None, None)


def new_server_cors(handler: WsgiApp, tls_context: ssl.SSLContext | None, addr: str,
                    write_timeout: float, read_timeout: float, pem: str, key: str,
                    allowed_origins: Sequence[str] | None,
                    allowed_headers: Sequence[str] | None,
                    allowed_methods: Sequence[str] | None) -> Server:
    """Return a server, wrapping handler with CORS when any CORS list is given."""
    return Server(handler, tls_context, addr, write_timeout, read_timeout, pem, key,
                  allowed_origins, allowed_headers, allowed_methods)


def create_tls_config_min_tls(min_tls_version: int | ssl.TLSVersion) -> ssl.SSLContext:
    """Return a server TLS context with the given minimum version and preferred ciphers."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion(min_tls_version)
    context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    context.set_ciphers(_TLS12_CIPHERS)
    return context