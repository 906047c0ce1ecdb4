import httpx
import pytest

from apps.orders import http_adapters
from apps.orders.errors import CircuitOpenError, ExternalDependencyError, InsufficientStockError, NotFoundError
from apps.orders.http_adapters import CircuitBreaker, HttpInventoryClient
from gateway.middleware import REQUEST_ID_CTX


class ScriptedTransport:
    """Replays canned responses for ``httpx.Client.request`` and records calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, client, method, url, json=None, headers=None):
        self.calls.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
        nxt = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 3
    monkeypatch.setattr(http_adapters.time, "sleep", lambda s: None)
    http_adapters.INVENTORY_BREAKER.record_success()
    yield
    http_adapters.INVENTORY_BREAKER.record_success()


def _script(monkeypatch, *responses):
    transport = ScriptedTransport(*responses)
    monkeypatch.setattr(httpx.Client, "request", lambda client, *a, **kw: transport(client, *a, **kw))
    return transport


def _client():
    return HttpInventoryClient(base_url="http://stock.test/")


def test_reserve_retries_5xx_then_succeeds(monkeypatch):
    transport = _script(monkeypatch, httpx.Response(503), httpx.Response(200, json={"ok": True}))

    _client().reserve("p-1", 2)

    assert [c["headers"]["X-Retry-Count"] for c in transport.calls] == ["0", "1"]
    assert transport.calls[0]["url"] == "http://stock.test/reserve"
    assert transport.calls[0]["json"] == {"product_id": "p-1", "quantity": 2}
    assert http_adapters.INVENTORY_BREAKER.snapshot() == {"state": "CLOSED", "failures": 0}


def test_request_id_is_propagated(monkeypatch):
    transport = _script(monkeypatch, httpx.Response(200, json={}))
    token = REQUEST_ID_CTX.set("req-123")
    try:
        _client().reserve("p-1", 1)
    finally:
        REQUEST_ID_CTX.reset(token)
    assert transport.calls[0]["headers"]["X-Request-ID"] == "req-123"


def test_business_errors_are_mapped(monkeypatch):
    _script(monkeypatch, httpx.Response(422, json={"detail": {"reason": "insufficient"}}))
    with pytest.raises(InsufficientStockError):
        _client().reserve("p-1", 99)

    _script(monkeypatch, httpx.Response(404, json={"detail": "not found"}))
    with pytest.raises(NotFoundError):
        _client().reserve("p-404", 1)


def test_transport_errors_exhaust_retries(monkeypatch):
    transport = _script(monkeypatch, httpx.ConnectError("refused"))
    with pytest.raises(ExternalDependencyError):
        _client().reserve("p-1", 1)
    assert len(transport.calls) == 3
    assert http_adapters.INVENTORY_BREAKER.snapshot()["failures"] == 1


def test_release_falls_back_to_read_then_write(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    transport = _script(
        monkeypatch,
        httpx.Response(500),
        httpx.Response(200, json={"product_id": "p-1", "quantity": 4}),
        httpx.Response(200, json={"product_id": "p-1", "quantity": 6}),
    )

    assert _client().release("p-1", 2) is True
    assert [(c["method"], c["url"]) for c in transport.calls] == [
        ("POST", "http://stock.test/release"),
        ("GET", "http://stock.test/stock/p-1"),
        ("PUT", "http://stock.test/stock/p-1"),
    ]
    assert transport.calls[-1]["json"] == {"quantity": 6}


def test_release_never_raises(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    _script(monkeypatch, httpx.ConnectError("down"))
    assert _client().release("p-1", 1) is False


def test_breaker_opens_after_repeated_failures(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    transport = _script(monkeypatch, httpx.Response(502))
    threshold = http_adapters.INVENTORY_BREAKER.fail_threshold

    for _ in range(threshold):
        with pytest.raises(ExternalDependencyError):
            _client().available("p-1")
    calls_before = len(transport.calls)

    with pytest.raises(CircuitOpenError):
        _client().available("p-1")
    assert len(transport.calls) == calls_before
    assert http_adapters.breaker_states()["inventory"]["state"] == "OPEN"


def test_half_open_admits_a_single_probe():
    cb = CircuitBreaker("test", fail_threshold=1, reset_timeout=0)
    cb.record_failure()

    assert cb.acquire() == "HALF_OPEN"
    with pytest.raises(CircuitOpenError):
        cb.acquire()

    cb.record_failure()
    assert cb._state == "OPEN"
    cb.record_success()
    assert cb.state == "CLOSED"
