"""Tests for the Fitbit HTTP client."""

import asyncio
from datetime import date, time
from urllib.parse import parse_qs

import httpx
import pytest

from food_sync.adapters.fitbit_client import HttpxFitbitClient, sanitize_error_body
from food_sync.domain.errors import (
    ErrorCode,
    InvalidResponseError,
    RateLimitError,
    RemoteApiError,
    TokenInvalidError,
)
from food_sync.domain.foods import MealType, NutrientProfile
from food_sync.services.retry import RetryPolicy

_NUTRIENTS = NutrientProfile(
    calories=120,
    protein_g=4.5,
    carbs_g=12.0,
    fat_g=6.0,
    fiber_g=1.0,
    sodium_mg=85.0,
    sugars_g=9.0,
)


def _client(handler, sleeps: list[float] | None = None) -> HttpxFitbitClient:
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    return HttpxFitbitClient(
        client_id="client-id",
        client_secret="client-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_policy=RetryPolicy(),
        sleep=fake_sleep,
    )


def _form(request: httpx.Request) -> dict[str, str]:
    parsed = parse_qs(request.content.decode())
    return {key: values[0] for key, values in parsed.items()}


def test_create_food_sends_nutrients_and_returns_food_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"food": {"foodId": 9000}})

    client = _client(handler)
    food_id = asyncio.run(
        client.create_food(
            "token", name="Tea with milk", amount=1, unit_id=91, nutrients=_NUTRIENTS
        )
    )

    assert food_id == 9000
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/1/user/-/foods.json"
    assert request.headers["Authorization"] == "Bearer token"
    form = _form(request)
    assert form["name"] == "Tea with milk"
    assert form["defaultFoodMeasurementUnitId"] == "91"
    assert form["defaultServingSize"] == "1"
    assert form["calories"] == "120"
    assert form["protein"] == "4.5"
    assert form["sugars"] == "9"
    assert form["formType"] == "DRY"
    assert "saturatedFat" not in form


def test_create_food_without_food_id_is_invalid_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"food": {}})

    client = _client(handler)
    with pytest.raises(InvalidResponseError):
        asyncio.run(
            client.create_food(
                "token", name="Tea", amount=1, unit_id=91, nutrients=_NUTRIENTS
            )
        )


def test_log_food_sends_meal_date_and_time() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"foodLog": {"logId": 5000}})

    client = _client(handler)
    log_id = asyncio.run(
        client.log_food(
            "token",
            food_id=9000,
            meal_type=MealType.DINNER,
            amount=2.5,
            unit_id=147,
            log_date=date(2026, 10, 18),
            log_time=time(19, 5),
        )
    )

    assert log_id == 5000
    assert seen[0].url.path == "/1/user/-/foods/log.json"
    form = _form(seen[0])
    assert form == {
        "foodId": "9000",
        "mealTypeId": "5",
        "unitId": "147",
        "amount": "2.5",
        "date": "2026-10-18",
        "time": "19:05:00",
    }


def test_rate_limit_is_retried_with_backoff() -> None:
    statuses = [429, 429, 201]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status_code = statuses.pop(0)
        if status_code == 429:
            return httpx.Response(429, json={"errors": []})
        return httpx.Response(status_code, json={"foodLog": {"logId": 42}})

    client = _client(handler, sleeps)
    log_id = asyncio.run(
        client.log_food(
            "token",
            food_id=1,
            meal_type=MealType.LUNCH,
            amount=1,
            unit_id=304,
            log_date=date(2026, 10, 18),
        )
    )

    assert log_id == 42
    assert sleeps == [1.0, 2.0]


def test_rate_limit_exhausted_raises_rate_limit_error() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(429)

    client = _client(handler, sleeps)
    with pytest.raises(RateLimitError) as excinfo:
        asyncio.run(client.delete_food_log("token", 5000))

    assert excinfo.value.code == ErrorCode.RATE_LIMIT
    assert len(calls) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_server_error_is_retried_with_backoff() -> None:
    statuses = [503, 201]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status_code = statuses.pop(0)
        if status_code == 503:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(status_code, json={"food": {"foodId": 9000}})

    client = _client(handler, sleeps)
    food_id = asyncio.run(
        client.create_food(
            "token", name="Tea", amount=1, unit_id=91, nutrients=_NUTRIENTS
        )
    )

    assert food_id == 9000
    assert sleeps == [1.0]


def test_server_error_exhausted_raises_api_error() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500, text="boom")

    client = _client(handler, sleeps)
    with pytest.raises(RemoteApiError) as excinfo:
        asyncio.run(client.delete_food_log("token", 5000))

    assert excinfo.value.code == ErrorCode.API_ERROR
    assert excinfo.value.details["status"] == 500
    assert len(calls) == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_unauthorized_maps_to_token_invalid_without_retry() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(401, json={"errors": [{"errorType": "expired_token"}]})

    client = _client(handler)
    with pytest.raises(TokenInvalidError):
        asyncio.run(client.delete_food_log("token", 5000))
    assert len(calls) == 1


def test_forbidden_maps_to_api_error_with_sanitized_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="<html><b>Missing scope</b></html>")

    client = _client(handler)
    with pytest.raises(RemoteApiError) as excinfo:
        asyncio.run(
            client.create_food(
                "token", name="Tea", amount=1, unit_id=91, nutrients=_NUTRIENTS
            )
        )

    assert excinfo.value.code == ErrorCode.API_ERROR
    assert excinfo.value.details["status"] == 403
    assert excinfo.value.details["body"] == "Missing scope"


def test_delete_not_found_counts_as_deleted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        assert request.url.path == "/1/user/-/foods/log/5000.json"
        return httpx.Response(404)

    client = _client(handler)
    asyncio.run(client.delete_food_log("token", 5000))


def test_timeout_maps_to_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(RemoteApiError, match="timed out"):
        asyncio.run(client.delete_food_log("token", 5000))


def test_refresh_token_uses_basic_auth_and_parses_grant() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": "new-access",
                "refresh_token": "new-refresh",
                "user_id": "FB123",
                "expires_in": 28800,
            },
        )

    client = _client(handler)
    grant = asyncio.run(client.refresh_token("old-refresh"))

    assert grant.access_token == "new-access"
    assert grant.refresh_token == "new-refresh"
    assert grant.fitbit_user_id == "FB123"
    assert grant.expires_in == 28800
    assert seen[0].url.path == "/oauth2/token"
    assert seen[0].headers["Authorization"].startswith("Basic ")
    assert _form(seen[0]) == {
        "grant_type": "refresh_token",
        "refresh_token": "old-refresh",
    }


@pytest.mark.parametrize("status_code", [400, 401])
def test_refresh_token_rejected_is_token_invalid(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"errors": []})

    client = _client(handler)
    with pytest.raises(TokenInvalidError):
        asyncio.run(client.refresh_token("old-refresh"))


def test_refresh_token_server_error_is_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    client = _client(handler)
    with pytest.raises(RemoteApiError) as excinfo:
        asyncio.run(client.refresh_token("old-refresh"))
    assert excinfo.value.code == ErrorCode.API_ERROR


def test_refresh_token_missing_field_is_invalid_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "user_id": "FB123"},
        )

    client = _client(handler)
    with pytest.raises(InvalidResponseError, match="expires_in"):
        asyncio.run(client.refresh_token("old-refresh"))


def test_exchange_code_sends_redirect_uri() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": "a",
                "refresh_token": "r",
                "user_id": "FB123",
                "expires_in": 3600,
            },
        )

    client = _client(handler)
    grant = asyncio.run(client.exchange_code("auth-code", "https://app/callback"))

    assert grant.expires_in == 3600
    assert _form(seen[0]) == {
        "code": "auth-code",
        "grant_type": "authorization_code",
        "redirect_uri": "https://app/callback",
    }


def test_sanitize_error_body_truncates_text() -> None:
    body = "<p>" + "x" * 600 + "</p>"

    assert sanitize_error_body(body) == "x" * 500
    assert sanitize_error_body({"errors": []}) == {"errors": []}
