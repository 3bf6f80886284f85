import base64
import io
from dataclasses import dataclass
from types import SimpleNamespace

import pytest
import requests

from sitools.sihttp.options import (
    Token,
    hmac_sha256_hex,
    json_decoder,
    json_encoder,
    with_base_url,
    with_basic_auth,
    with_bearer_token,
    with_default_headers,
    with_header_add,
    with_header_hmac256,
    with_header_set,
    with_reader_opt,
    with_request_header_hmac256,
    with_request_opt,
    with_retry_attempts,
    with_token_source,
    with_writer_opt,
)


def _prepared(body=None, headers=None):
    return requests.Request("POST", "http://localhost/", data=body, headers=headers or {}).prepare()


def _client():
    return SimpleNamespace(base_url="", default_headers=None, retry_attempts=0,
                           request_opts=[], writer_opts=[], reader_opts=[])


def test_hmac_sha256_hex_rfc4231_case2():
    rfc_key = b"Jefe"
    digest = hmac_sha256_hex(rfc_key, b"what do ya want for nothing?")
    assert digest == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"


def test_hmac_sha256_hex_reader_matches_bytes():
    data = b"x" * 200000
    assert hmac_sha256_hex("1234", io.BytesIO(data)) == hmac_sha256_hex("1234", data)


def test_with_header_set_replaces():
    request = _prepared(headers={"X-Test": "old"})
    with_header_set("X-Test", "new")(request)
    assert request.headers["X-Test"] == "new"


def test_with_header_add_keeps_existing():
    request = _prepared(headers={"X-Test": "a"})
    with_header_add("X-Test", "b")(request)
    assert request.headers["X-Test"] == "a, b"


def test_with_header_add_when_missing():
    request = _prepared()
    with_header_add("X-Test", "b")(request)
    assert request.headers["X-Test"] == "b"


def test_with_basic_auth_round_trip():
    password = "password"
    request = _prepared()
    with_basic_auth("user", password)(request)
    scheme, encoded = request.headers["Authorization"].split(" ", 1)
    assert scheme == "Basic"
    assert base64.b64decode(encoded).decode() == "user:" + password


def test_with_bearer_token_sets_header():
    request = _prepared()
    with_bearer_token("token")(request)
    assert request.headers["Authorization"] == "Bearer token"


def test_with_bearer_token_keeps_existing_authorization():
    request = _prepared(headers={"Authorization": "Basic placeholder"})
    with_bearer_token("token")(request)
    assert request.headers["Authorization"] == "Basic placeholder"


def test_with_token_source_uses_token_method():
    source = SimpleNamespace(token=lambda: Token("token"))
    request = _prepared()
    with_token_source(source)(request)
    assert request.headers["Authorization"] == "Bearer token"


def test_with_token_source_error_propagates():
    def failing():
        raise RuntimeError("no token")

    request = _prepared()
    with pytest.raises(RuntimeError):
        with_token_source(failing)(request)
    assert "Authorization" not in request.headers


def test_with_header_hmac256_signs_body():
    request = _prepared(body=b"hey-0")
    with_header_hmac256("hmac-hash", b"secret")(request)
    assert request.headers["hmac-hash"] == hmac_sha256_hex(b"secret", b"hey-0")


def test_with_header_hmac256_skips_without_body():
    request = _prepared()
    with_header_hmac256("hmac-hash", b"secret")(request)
    assert "hmac-hash" not in request.headers


def test_with_header_hmac256_skips_multipart():
    request = _prepared(body=b"data", headers={"Content-Type": "multipart/form-data; boundary=x"})
    with_header_hmac256("hmac-hash", b"secret")(request)
    assert "hmac-hash" not in request.headers


def test_with_header_hmac256_keeps_existing_header():
    request = _prepared(body=b"data", headers={"hmac-hash": "given"})
    with_header_hmac256("hmac-hash", b"secret")(request)
    assert request.headers["hmac-hash"] == "given"


def test_client_options_configure_client():
    client = _client()
    encoder, decoder = json_encoder(), json_decoder()
    option = with_bearer_token("token")
    for apply in (
        with_base_url("http://127.0.0.1:8080"),
        with_default_headers({"Content-type": "application/json"}),
        with_writer_opt(encoder),
        with_reader_opt(decoder),
        with_request_opt(option),
        with_retry_attempts(3),
    ):
        apply(client)
    assert client.base_url == "http://127.0.0.1:8080"
    assert client.default_headers == {"Content-type": "application/json"}
    assert client.writer_opts == [encoder]
    assert client.reader_opts == [decoder]
    assert client.request_opts == [option]
    assert client.retry_attempts == 3


def test_with_request_header_hmac256_registers_signer():
    client = _client()
    with_request_header_hmac256("hmacKey", b"secret")(client)
    assert len(client.request_opts) == 1
    request = _prepared(body=b"payload")
    client.request_opts[0](request)
    assert request.headers["hmacKey"] == hmac_sha256_hex(b"secret", b"payload")


def test_json_encoder_is_compact():
    assert json_encoder()({"msg": "hello there"}) == b'{"msg":"hello there"}'


@dataclass
class _Message:
    msg: str


def test_json_round_trip_with_dataclass():
    data = json_encoder()(_Message("hello there"))
    assert json_decoder()(data) == {"msg": "hello there"}


def test_json_encoder_rejects_unknown_type():
    with pytest.raises(TypeError):
        json_encoder()(object())


def test_json_decoder_rejects_invalid():
    with pytest.raises(ValueError):
        json_decoder()(b'{"msg":')