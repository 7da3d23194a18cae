import redis
from starlette.requests import Request

from app import rate_limiter
from app.rate_limiter import RATE_LIMITS, check_api_rate_limit, check_rate_limit, get_identifier


def make_request(headers: dict, client=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    scope = {"type": "http", "method": "GET", "path": "/", "headers": raw}
    if client:
        scope["client"] = client
    return Request(scope)


def test_memory_counter_blocks_after_limit():
    results = [check_rate_limit("rate_limit:test:a", 3, 60)[0] for _ in range(4)]
    assert results == [True, True, True, False]


def test_identifier_hashes_secret():
    identifier = get_identifier(make_request({"x-asm-secret": "super-secret"}))
    assert identifier.startswith("apikey:")
    assert "super-secret" not in identifier


def test_identifier_uses_first_forwarded_address():
    request = make_request({"x-forwarded-for": "203.0.113.9, 10.0.0.1"})
    assert get_identifier(request) == "ip:203.0.113.9"


def test_api_limit_is_memory_only_without_redis():
    result = check_api_rate_limit("ip:198.51.100.7", "airspace")
    assert result.success is True
    assert result.is_distributed is False
    assert result.limit == RATE_LIMITS["airspace"]["requests"]
    assert result.remaining == result.limit - 1


def test_airspace_endpoint_returns_429(client, staff_headers):
    headers = {**staff_headers, "x-forwarded-for": "192.0.2.44"}
    limit = RATE_LIMITS["airspace"]["requests"]
    for _ in range(limit):
        check_api_rate_limit("ip:192.0.2.44", "airspace")

    response = client.get(
        "/api/integrations/airspace/can-fly", params={"latitude": 28.5, "longitude": -81.4}, headers=headers
    )
    assert response.status_code == 429
    assert response.json()["detail"]["error"] == "Too many requests"
    assert "Retry-After" in response.headers


def test_identifier_falls_back_to_client_host():
    assert get_identifier(make_request({}, client=("198.51.100.1", 5000))) == "ip:198.51.100.1"
    assert get_identifier(make_request({}, client=("198.51.100.2", 5000))) == "ip:198.51.100.2"
    assert get_identifier(make_request({})) == "ip:unknown"


def test_unreachable_redis_is_not_retried_during_backoff(monkeypatch):
    attempts = []

    def unreachable():
        attempts.append(1)
        raise redis.ConnectionError("connection refused")

    monkeypatch.setenv("REDIS_URL", "redis://redis.invalid:6379/0")
    monkeypatch.setattr(rate_limiter, "get_redis_client", unreachable)

    for _ in range(3):
        assert check_api_rate_limit("ip:198.51.100.9", "default").is_distributed is False
    assert len(attempts) == 1

    monkeypatch.setattr(rate_limiter, "redis_unavailable_until", 0.0)
    assert rate_limiter.get_optional_redis_client() is None
    assert len(attempts) == 2
