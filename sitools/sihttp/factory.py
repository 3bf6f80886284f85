"""Construction of preconfigured HTTP clients."""

from __future__ import annotations

import ssl
from dataclasses import dataclass
from typing import Any

import requests
from requests.adapters import HTTPAdapter

DEFAULT_CLIENT_TIMEOUT = 30.0


@dataclass
class Transport:
    """Connection settings for a StandardClient. Times are in seconds."""

    max_idle_conns: int = 50
    idle_conn_timeout: float = 60.0
    disable_compression: bool = False
    tls_context: ssl.SSLContext | None = None
    disable_keep_alives: bool = False
    dial_timeout: float = 5.0

    @property
    def verify(self) -> bool:
        """Whether server certificates are verified."""
        if self.tls_context is None:
            return True
        return self.tls_context.verify_mode != ssl.CERT_NONE


class _TransportAdapter(HTTPAdapter):
    def __init__(self, transport: Transport) -> None:
        self._tls_context = transport.tls_context
        size = max(1, transport.max_idle_conns)
        super().__init__(pool_connections=size, pool_maxsize=size)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        if self._tls_context is not None:
            kwargs["ssl_context"] = self._tls_context
        super().init_poolmanager(*args, **kwargs)


class StandardClient:
    """A pooled HTTP client with a per-request timeout and transport settings."""

    def __init__(self, timeout: float | None = DEFAULT_CLIENT_TIMEOUT,
                 transport: Transport | None = None) -> None:
        self.timeout = timeout
        self.transport = transport if transport is not None else Transport()
        self._session = requests.Session()
        adapter = _TransportAdapter(self.transport)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._extra_headers: dict[str, str] = {}
        if self.transport.disable_compression:
            self._extra_headers["Accept-Encoding"] = "identity"
        if self.transport.disable_keep_alives:
            self._extra_headers["Connection"] = "close"

    def send(self, request: requests.Request | requests.PreparedRequest) -> requests.Response:
        """Send a request and return the response."""
        if isinstance(request, requests.Request):
            prepared = self._session.prepare_request(request)
        else:
            prepared = request
        for name, value in self._extra_headers.items():
            prepared.headers.setdefault(name, value)
        return self._session.send(
            prepared,
            timeout=(self.transport.dial_timeout, self.timeout),
            verify=self.transport.verify,
            allow_redirects=True,
        )

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

    def __enter__(self) -> StandardClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def default_insecure_standard_client() -> StandardClient:
    """Return a client that does not verify server certificates."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return default_standard_client(context)


def default_standard_client(tls_context: ssl.SSLContext | None) -> StandardClient:
    """Return a client with the default pool and timeout settings."""
    transport = Transport(
        max_idle_conns=50,
        idle_conn_timeout=60.0,
        disable_compression=False,
        tls_context=tls_context,
        disable_keep_alives=False,
        dial_timeout=5.0,
    )
    return new_standard_client(DEFAULT_CLIENT_TIMEOUT, transport)


def new_standard_client(client_timeout: float | None, transport: Transport | None) -> StandardClient:
    """Return a client with the given timeout and transport."""
    return StandardClient(timeout=client_timeout, transport=transport)