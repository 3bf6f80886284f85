"""An HTTP client with default headers, body codecs, request options and retries."""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Iterable, Mapping, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from sitools.sihttp.http_error import HttpError
from sitools.sihttp.options import Decoder, Encoder, RequestOption, json_encoder

T = TypeVar("T")

Header = Mapping[str, "str | Iterable[str]"]

DEFAULT_RETRY_DELAY = 0.02


def _raw_bytes(data: bytes) -> bytes:
    return data


def set_header(request: requests.PreparedRequest, header: Header | None) -> None:
    """Copy header onto the request; the first value replaces, later values are added."""
    if not header:
        return
    for name, values in header.items():
        if isinstance(values, (str, bytes)):
            values = [values]
        values = [v.decode("latin-1") if isinstance(v, bytes) else v for v in values]
        if not values:
            continue
        request.headers[name] = ", ".join(values)


def set_queries(request: requests.PreparedRequest, queries: Mapping[str, str] | None) -> None:
    """Add queries to the request URL, re-encoding the query string sorted by key."""
    if not queries:
        return
    parts = urlsplit(request.url or "")
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    pairs.extend(queries.items())
    pairs.sort(key=lambda pair: pair[0])
    request.url = urlunsplit(parts._replace(query=urlencode(pairs)))


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class Client:
    """Wraps a client that sends requests (anything with send(request))."""

    def __init__(self, client: Any, *args: Callable[[Client], None] | None) -> None:
        self.client = client
        self.base_url = ""
        self.default_headers: dict[str, str] = {}
        self.retry_attempts = 0
        self.retry_delay = DEFAULT_RETRY_DELAY
        self.request_opts: list[RequestOption] = []
        self.writer_opts: list[Encoder] = []
        self.reader_opts: list[Decoder] = []
        for option in args:
            if option is not None:
                option(self)

    # sending

    def do(self, request: requests.Request | requests.PreparedRequest) -> requests.Response:
        """Send the request after filling in default headers that are missing."""
        if isinstance(request, requests.Request):
            request = request.prepare()
        for name, value in (self.default_headers or {}).items():
            if not request.headers.get(name):
                request.headers[name] = value
        return self.client.send(request)

    def do_read(self, request: requests.Request | requests.PreparedRequest) -> bytes:
        """Send the request and return the whole response body.

        Raises HttpError when the status is outside 100-399.
        """
        response = self.do(request)
        try:
            body = response.content
        finally:
            response.close()
        if not 100 <= response.status_code <= 399:
            raise HttpError(response, body)
        return body

    def do_decode(self, request: requests.Request | requests.PreparedRequest) -> Any:
        """Send the request and return the decoded response body.

        Raises HttpError when decoding fails or the status is outside 100-399.
        """
        response = self.do(request)
        try:
            body = response.content
        finally:
            response.close()
        try:
            value = self._decoder()(body)
        except Exception as exc:
            raise HttpError(response, body) from exc
        if not 100 <= response.status_code <= 399:
            raise HttpError(response, body)
        return value

    # verbs

    def request(self, method: str, url: str, header: Header | None,
                queries: Mapping[str, str] | None, body: Any,
                *args: RequestOption) -> bytes:
        """Send a request and return the response body, retrying retryable failures."""
        return self._retry(lambda: self._request(
            method, self.base_url + url, header, queries, body, args))

    def request_decode(self, method: str, url: str, header: Header | None,
                       queries: Mapping[str, str] | None, body: Any,
                       *args: RequestOption) -> Any:
        """Send a request and return the decoded response body."""
        return self._retry(lambda: self._request_decode(
            method, self.base_url + url, header, queries, body, args))

    def get(self, url: str, header: Header | None,
            queries: Mapping[str, str] | None, *args: RequestOption) -> bytes:
        return self.request("GET", url, header, queries, None, *args)

    def get_decode(self, url: str, header: Header | None,
                   queries: Mapping[str, str] | None, *args: RequestOption) -> Any:
        return self.request_decode("GET", url, header, queries, None, *args)

    def post(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> bytes:
        return self.request("POST", url, header, None, body, *args)

    def post_decode(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> Any:
        return self.request_decode("POST", url, header, None, body, *args)

    def put(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> bytes:
        return self.request("PUT", url, header, None, body, *args)

    def put_decode(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> Any:
        return self.request_decode("PUT", url, header, None, body, *args)

    def patch(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> bytes:
        return self.request("PATCH", url, header, None, body, *args)

    def patch_decode(self, url: str, header: Header | None, body: Any, *args: RequestOption) -> Any:
        return self.request_decode("PATCH", url, header, None, body, *args)

    def delete(self, url: str, header: Header | None,
               queries: Mapping[str, str] | None, *args: RequestOption) -> bytes:
        return self.request("DELETE", url, header, queries, None, *args)

    def delete_decode(self, url: str, header: Header | None,
                      queries: Mapping[str, str] | None, *args: RequestOption) -> Any:
        return self.request_decode("DELETE", url, header, queries, None, *args)

    def post_file(self, url: str, header: Header | None, params: Mapping[str, str] | None,
                  form_key_name: str, file_name: str) -> bytes:
        """Upload a file as multipart form data, with params as extra form fields."""
        with open(file_name, "rb") as stream:
            content = stream.read()

        boundary = secrets.token_hex(30)
        chunks = [
            (f"--{boundary}\r\n"
             f'Content-Disposition: form-data; name="{_quote(form_key_name)}"; '
             f'filename="{_quote(file_name)}"\r\n'
             "Content-Type: application/octet-stream\r\n\r\n").encode("utf-8"),
            content,
            b"\r\n",
        ]
        for name, value in (params or {}).items():
            chunks.append(
                (f"--{boundary}\r\n"
                 f'Content-Disposition: form-data; name="{_quote(name)}"\r\n\r\n'
                 f"{value}\r\n").encode("utf-8"))
        chunks.append(f"--{boundary}--\r\n".encode("utf-8"))

        merged: dict[str, Any] = {
            name: values for name, values in (header or {}).items()
            if name.lower() != "content-type"
        }
        merged["Content-Type"] = f"multipart/form-data; boundary={boundary}"
        return self._request("POST", self.base_url + url, merged, None, b"".join(chunks), ())

    def is_retry_error(self, err: BaseException | None) -> bool:
        """Return True, after waiting retry_delay, if err is an HTTP 401 failure."""
        if isinstance(err, HttpError) and err.get_status_code(500) == 401:
            time.sleep(self.retry_delay)
            return True
        return False

    # internals

    def _retry(self, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except Exception as exc:
                if self.is_retry_error(exc) and attempt < self.retry_attempts:
                    attempt += 1
                    continue
                raise

    def _encoder(self) -> Encoder:
        return self.writer_opts[-1] if self.writer_opts else json_encoder()

    def _decoder(self) -> Decoder:
        return self.reader_opts[-1] if self.reader_opts else _raw_bytes

    def _encode_body(self, body: Any) -> Any:
        if body is None:
            return None
        if hasattr(body, "read"):
            return body
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body)
        if isinstance(body, str):
            return body.encode("utf-8")
        return self._encoder()(body)

    def _prepare(self, method: str, url: str, header: Header | None,
                 queries: Mapping[str, str] | None, body: Any,
                 opts: Iterable[RequestOption]) -> requests.PreparedRequest:
        prepared = requests.Request(method, url, data=self._encode_body(body)).prepare()
        set_header(prepared, header)
        set_queries(prepared, queries)
        for option in self.request_opts:
            option(prepared)
        for option in opts:
            option(prepared)
        return prepared

    def _request(self, method: str, url: str, header: Header | None,
                 queries: Mapping[str, str] | None, body: Any,
                 opts: Iterable[RequestOption]) -> bytes:
        return self.do_read(self._prepare(method, url, header, queries, body, opts))

    def _request_decode(self, method: str, url: str, header: Header | None,
                        queries: Mapping[str, str] | None, body: Any,
                        opts: Iterable[RequestOption]) -> Any:
        return self.do_decode(self._prepare(method, url, header, queries, body, opts))