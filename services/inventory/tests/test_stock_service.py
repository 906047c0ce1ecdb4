from repo import InventoryRepo

PID = "7b0c6a2e-1f7d-4a57-9a3e-2f6f2f9d1c11"


def _seed(client, quantity=5, product_id=PID):
    resp = client.put(f"/stock/{product_id}", json={"quantity": quantity})
    assert resp.status_code == 200


def test_health(stock_client):
    resp = stock_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert resp.headers["X-Request-ID"]


def test_request_id_is_echoed(stock_client):
    resp = stock_client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.headers["X-Request-ID"] == "abc-123"


def test_reserve_decrements_stock(stock_client):
    _seed(stock_client, 5)
    resp = stock_client.post("/reserve", json={"product_id": PID, "quantity": 3})
    assert resp.status_code == 200
    assert resp.json() == {"reserved": True}
    assert stock_client.get(f"/stock/{PID}").json() == {"product_id": PID, "quantity": 2}


def test_reserve_insufficient_returns_422_and_keeps_stock(stock_client):
    _seed(stock_client, 2)
    resp = stock_client.post("/reserve", json={"product_id": PID, "quantity": 3})
    assert resp.status_code == 422
    assert resp.json()["detail"]["detail"] == "INSUFFICIENT_STOCK"
    assert stock_client.get(f"/stock/{PID}").json()["quantity"] == 2


def test_reserve_unknown_product_returns_404(stock_client):
    resp = stock_client.post("/reserve", json={"product_id": "missing", "quantity": 1})
    assert resp.status_code == 404


def test_reserve_rejects_non_positive_quantity(stock_client):
    _seed(stock_client, 2)
    resp = stock_client.post("/reserve", json={"product_id": PID, "quantity": 0})
    assert resp.status_code == 422
    assert stock_client.get(f"/stock/{PID}").json()["quantity"] == 2


def test_release_increments_stock(stock_client):
    _seed(stock_client, 1)
    resp = stock_client.post("/release", json={"product_id": PID, "quantity": 4})
    assert resp.status_code == 200
    assert stock_client.get(f"/stock/{PID}").json()["quantity"] == 5


def test_release_unknown_product_returns_404(stock_client):
    resp = stock_client.post("/release", json={"product_id": "missing", "quantity": 1})
    assert resp.status_code == 404


def test_get_unknown_stock_returns_404(stock_client):
    assert stock_client.get("/stock/missing").status_code == 404


def test_repo_reserve_stops_at_zero(stock_client):
    _seed(stock_client, 2)
    repo = InventoryRepo()
    outcomes = [repo.reserve(PID, 1).value for _ in range(3)]
    assert outcomes == ["reserved", "reserved", "insufficient"]
    assert repo.get(PID) == 0
