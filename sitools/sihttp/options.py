"""Request options, client options and body codecs for the HTTP client."""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Callable

import requests

RequestOption = Callable[[requests.PreparedRequest], None]
ClientOption = Callable[[Any], None]
Encoder = Callable[[Any], bytes]
Decoder = Callable[[bytes], Any]


@dataclass(frozen=True)
class Token:
    """An access token as handed out by a token source."""

    access_token: str
    token_type: str = "Bearer"


def _as_bytes(value: str | bytes | bytearray) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def hmac_sha256_hex(secret: str | bytes, data: Any) -> str:
    """Return the hex-encoded HMAC-SHA256 of data, which may be bytes, text or a readable."""
    mac = hmac.new(_as_bytes(secret), digestmod=hashlib.sha256)
    if hasattr(data, "read"):
        for chunk in iter(lambda: data.read(65536), b""):
            if not chunk:
                break
            mac.update(_as_bytes(chunk))
    else:
        mac.update(_as_bytes(data))
    return mac.hexdigest()


def with_header_set(key: str, value: str) -> RequestOption:
    """Replace the header with a single value."""
    def apply(request: requests.PreparedRequest) -> None:
        request.headers[key] = value
    return apply


def with_header_add(key: str, value: str) -> RequestOption:
    """Add a value to the header, keeping values already present."""
    def apply(request: requests.PreparedRequest) -> None:
        existing = request.headers.get(key)
        request.headers[key] = value if existing is None else f"{existing}, {value}"
    return apply


def with_basic_auth(username: str, password: str) -> RequestOption:
    """Set a Basic Authorization header."""
    def apply(request: requests.PreparedRequest) -> None:
        credentials = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        request.headers["Authorization"] = "Basic " + credentials
    return apply


def with_bearer_token(token: str) -> RequestOption:
    """Set a Bearer Authorization header unless one is already present."""
    def apply(request: requests.PreparedRequest) -> None:
        if "Authorization" in request.headers:
            return
        request.headers["Authorization"] = "Bearer " + token
    return apply


def with_token_source(token_source: Any) -> RequestOption:
    """Set Authorization from a token source (an object with token() or a callable)."""
    fetch = getattr(token_source, "token", token_source)

    def apply(request: requests.PreparedRequest) -> None:
        token = fetch()
        if "Authorization" in request.headers:
            return
        request.headers["Authorization"] = f"{token.token_type} {token.access_token}"
    return apply


def with_header_hmac256(key: str, secret: str | bytes) -> RequestOption:
    """Set a header to the HMAC-SHA256 of the request body.

    Skipped when the header exists, the body is multipart form data, or the
    body cannot be read again.
    """
    def apply(request: requests.PreparedRequest) -> None:
        if key in request.headers:
            return
        if "multipart/form-data" in request.headers.get("Content-Type", ""):
            return
        body = request.body
        if not isinstance(body, (bytes, bytearray, str)):
            return
        request.headers[key] = hmac_sha256_hex(secret, body)
    return apply


def with_base_url(base_url: str) -> ClientOption:
    """Prefix every request URL with base_url."""
    def apply(client: Any) -> None:
        client.base_url = base_url
    return apply


def with_default_headers(default_headers: dict[str, str]) -> ClientOption:
    """Set headers applied to every request that does not already carry them."""
    def apply(client: Any) -> None:
        client.default_headers = default_headers
    return apply


def with_reader_opt(opt: Decoder) -> ClientOption:
    """Register a response body decoder."""
    def apply(client: Any) -> None:
        client.reader_opts.append(opt)
    return apply


def with_writer_opt(opt: Encoder) -> ClientOption:
    """Register a request body encoder."""
    def apply(client: Any) -> None:
        client.writer_opts.append(opt)
    return apply


def with_request_opt(opt: RequestOption) -> ClientOption:
    """Register a request option applied to every request."""
    def apply(client: Any) -> None:
        client.request_opts.append(opt)
    return apply


def with_request_header_hmac256(key: str, secret: str | bytes) -> ClientOption:
    """Sign every request body into the given header."""
    return with_request_opt(with_header_hmac256(key, secret))


def with_retry_attempts(attempts: int) -> ClientOption:
    """Set how many times a request is retried after a retryable failure."""
    def apply(client: Any) -> None:
        client.retry_attempts = attempts
    return apply


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def json_encoder() -> Encoder:
    """Return an encoder producing compact UTF-8 JSON."""
    def encode(value: Any) -> bytes:
        return json.dumps(
            value, separators=(",", ":"), ensure_ascii=False, default=_json_default
        ).encode("utf-8")
    return encode


def json_decoder() -> Decoder:
    """Return a decoder parsing a JSON body."""
    def decode(data: bytes) -> Any:
        return json.loads(data)
    return decode