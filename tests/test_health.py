def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"]
    assert payload["trace_id"]
    assert response.headers["X-Trace-ID"] == payload["trace_id"]


def test_incoming_trace_id_is_echoed(client):
    response = client.get("/health", headers={"X-Trace-ID": "req-123.abc"})
    assert response.json()["trace_id"] == "req-123.abc"
    assert response.headers["X-Trace-ID"] == "req-123.abc"


def test_malformed_trace_id_is_replaced(client):
    response = client.get("/health", headers={"X-Trace-ID": "bad id with spaces!"})
    trace_id = response.json()["trace_id"]
    assert trace_id != "bad id with spaces!"
    assert len(trace_id) == 36


def test_metrics_exposition(client):
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_openapi_documents_error_responses(client):
    schema = client.get("/openapi.json").json()
    gateway = schema["paths"]["/api/gateway"]["post"]["responses"]
    assert {"400", "403", "500", "502", "504"} <= set(gateway)
    assert "422" in schema["paths"]["/api/stock/refresh"]["post"]["responses"]
