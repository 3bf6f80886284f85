# sitools

Small building blocks for services that talk HTTP and Kafka:

- `sitools.sihttp`: a `requests`-based HTTP client with base URLs, default
  headers, per-request options (basic auth, bearer tokens, token sources,
  HMAC-SHA256 body signatures), JSON encoding and decoding, file upload and
  retry on `401 Unauthorized`; and a small threaded WSGI server with optional
  TLS and CORS handling.
- `sitools.sikafka`: producers that wrap a Kafka client object and retry the
  errors worth retrying, and a consumer group runner that can be paused,
  resumed and stopped.

## Installation

```
pip install sitools
```

To run the tests:

```
pip install "sitools[test]"
pytest
```

## HTTP client

`Client` wraps anything with a `send(request)` method; `StandardClient` from
`sitools.sihttp.factory` is the usual choice.

```python
from sitools.sihttp.client import Client
from sitools.sihttp.factory import default_standard_client
from sitools.sihttp.http_error import HttpError
from sitools.sihttp.options import (
    json_decoder,
    json_encoder,
    with_base_url,
    with_bearer_token,
    with_default_headers,
    with_reader_opt,
    with_request_opt,
    with_retry_attempts,
    with_writer_opt,
)

client = Client(
    default_standard_client(None),
    with_base_url("http://localhost:8080"),
    with_default_headers({"Accept": "application/json"}),
    with_writer_opt(json_encoder()),
    with_reader_opt(json_decoder()),
    with_request_opt(with_bearer_token("token")),
    with_retry_attempts(2),
)

body = client.get("/test/hello", None, {"name": "alice"})

student = client.post_decode("/test/echo", None, {"id": 1, "name": "alice"})

try:
    client.delete("/items/1", None, None)
except HttpError as err:
    print(err.get_status_code(500), err.get_status(500))
```

Every verb has a plain form that returns the response body as bytes
(`request`, `get`, `post`, `put`, `patch`, `delete`) and a `_decode` form that
returns the body run through the last registered reader (raw bytes when none is
registered). Request bodies may be bytes, text, a readable object, or any other
value, which goes through the last registered writer (compact JSON when none is
registered; dataclasses are encoded as dicts).

Responses with a status outside 100–399 raise `HttpError`, which carries the
response and the body that was read; a decoding failure raises it too. A `401`
is retried, after a short delay, up to the number of extra attempts set with
`with_retry_attempts` (none by default). Default headers fill in only the
headers a request does not already carry. `set_header` and `set_queries` are
available on their own for prepared requests.

Per-request options go after the fixed arguments:

```python
from sitools.sihttp.options import with_basic_auth, with_header_hmac256, with_header_set

password = "password"
client.post(
    "/test/echo",
    None,
    b"payload",
    with_basic_auth("user", password),
    with_header_set("X-Request-Id", "42"),
    with_header_hmac256("X-Signature", b"secret"),
)
```

`with_header_hmac256` puts the hex HMAC-SHA256 of the request body into the
named header. It does nothing when the header is already set, when the body is
`multipart/form-data`, or when there is no in-memory body (no body, or a
stream). `hmac_sha256_hex` computes the same value directly.
`with_token_source` takes an object with `token()` (or a callable) returning a
`Token`, and sets `Authorization` to `"<token_type> <access_token>"` unless one
is present. `with_request_header_hmac256` registers the signing option for
every request.

Upload a file as `multipart/form-data`, with extra form fields:

```python
client.post_file("/upload", None, {"owner": "alice"}, "file_to_upload", "report.txt")
```

`default_insecure_standard_client()` builds a client that skips certificate
verification; `default_standard_client(tls_context)` uses a 30 second timeout,
a 5 second connect timeout and a pool of 50; `new_standard_client(timeout,
transport)` takes your own `Transport`.

## HTTP server

```python
from sitools.sihttp.server import new_server_cors

def app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello"]

server = new_server_cors(
    app, None, ":8080", 15.0, 15.0, "", "",
    ["*"], ["Content-Type"], ["GET", "POST"],
)
server.start()   # blocks; call server.stop() from another thread
```

`Server.started` is set once the socket is bound and `Server.address` gives
the bound `(host, port)`. `new_server` and `new_server_tls` are shortcuts
without CORS; a certificate (`pem`) and key file make `start` serve over TLS.
`cors_middleware` can wrap any WSGI app on its own. `create_tls_config_min_tls`
builds a server TLS context with a minimum protocol version and a preferred
cipher list.

## Kafka

The Kafka classes work on client objects you pass in; they do not open
connections to brokers themselves.

```python
from sitools.sikafka.producer import SyncProducer, with_sync_producer_option_retry_max

# kafka_producer: any object with send_message(message) -> (partition, offset)
producer = SyncProducer(kafka_producer, "events", with_sync_producer_option_retry_max(3))
partition, offset = producer.produce(b"key", b"value")
```

`SyncProducer` makes up to `retry_max` attempts (one by default), retrying
errors for which `is_retryable_error` is true (`KafkaError`s of the transient
`ErrorKind`s) with a delay that starts at one second and doubles.
`AsyncProducer` puts a `ProducerMessage` on the wrapped producer's `input`
queue and returns `(0, 0)` at once. Both close the wrapped producer when used
as a context manager. `exponential_backoff` gives the capped schedule
`0.25 * 2**retries` seconds, at most 10.

Consuming:

```python
from sitools.sikafka.consumer import CgConsumer, ConsumerGroup, MessageHandler

class Printer(MessageHandler):
    def handle(self, message):
        print(message.value)

# kafka_group: provides consume(stop, topics, consumer), pause_all(), resume_all(), close()
group = ConsumerGroup(kafka_group, CgConsumer(Printer()), ["events"])
group.start()    # runs until finish() or stop(), or SIGINT/SIGTERM in the main thread
```

A failing session is retried up to five times, three seconds apart; a
`ConsumerGroupClosedError` ends consumption at once, and `start` raises the
error that ended it. `start_with(loaded)` signals an `Event` or queue once the
consumer is ready. `toggle()` (or `SIGUSR1`) pauses and resumes consumption.
`select_balance_strategy` accepts `"sticky"`, `"roundrobin"` or `"range"` and
raises `ValueError` otherwise.

## What this package does not do

It ships no Kafka protocol client: there are no factories that build
configured producers or consumer groups from broker addresses, and the
producer and consumer classes need an object that does the network work. It
has no command-line tools.