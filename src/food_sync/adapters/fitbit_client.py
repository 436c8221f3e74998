"""Fitbit Web API client for custom foods and food logs."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, time
from typing import Protocol

import httpx

from food_sync.domain.credentials import TokenGrant
from food_sync.domain.errors import (
    InvalidResponseError,
    RateLimitError,
    RemoteApiError,
    TokenInvalidError,
)
from food_sync.domain.foods import MealType, NutrientProfile
from food_sync.services.retry import RetryPolicy, retry_async

FITBIT_API_BASE = "https://api.fitbit.com"

_ERROR_BODY_LIMIT = 500
_HTML_TAG = re.compile(r"<[^>]*>")

_logger = logging.getLogger(__name__)


class FitbitClient(Protocol):
    """Interface for Fitbit nutrition API interactions."""

    async def create_food(
        self,
        access_token: str,
        *,
        name: str,
        amount: float,
        unit_id: int,
        nutrients: NutrientProfile,
    ) -> int:
        """Create a custom food and return its Fitbit food id."""

    async def log_food(  # noqa: PLR0913
        self,
        access_token: str,
        *,
        food_id: int,
        meal_type: MealType,
        amount: float,
        unit_id: int,
        log_date: date,
        log_time: time | None = None,
    ) -> int:
        """Log a food and return the Fitbit log id."""

    async def delete_food_log(self, access_token: str, log_id: int) -> None:
        """Delete a food log; a log that no longer exists counts as deleted."""

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new token pair."""


@dataclass
class HttpxFitbitClient(FitbitClient):
    """HTTPX-backed Fitbit client with rate-limit retries."""

    client_id: str
    client_secret: str
    http_client: httpx.AsyncClient
    base_url: str = FITBIT_API_BASE
    timeout_seconds: float = 10.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        client_id: str,
        client_secret: str,
        base_url: str = FITBIT_API_BASE,
        timeout_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
    ) -> "HttpxFitbitClient":
        """Create a Fitbit client with a managed httpx session."""
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            http_client=httpx.AsyncClient(),
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            retry_policy=retry_policy or RetryPolicy(),
        )

    async def create_food(
        self,
        access_token: str,
        *,
        name: str,
        amount: float,
        unit_id: int,
        nutrients: NutrientProfile,
    ) -> int:
        """Create a custom food with the full nutrient profile."""
        form = {
            "name": name,
            "defaultFoodMeasurementUnitId": str(unit_id),
            "defaultServingSize": _form_number(amount),
            "calories": _form_number(nutrients.calories),
            "protein": _form_number(nutrients.protein_g),
            "totalCarbohydrate": _form_number(nutrients.carbs_g),
            "totalFat": _form_number(nutrients.fat_g),
            "dietaryFiber": _form_number(nutrients.fiber_g),
            "sodium": _form_number(nutrients.sodium_mg),
            "formType": "DRY",
            "description": name,
        }
        optional = {
            "saturatedFat": nutrients.saturated_fat_g,
            "transFat": nutrients.trans_fat_g,
            "sugars": nutrients.sugars_g,
            "caloriesFromFat": nutrients.calories_from_fat,
        }
        for key, value in optional.items():
            if value is not None:
                form[key] = _form_number(value)

        response = await self._api_request(
            "POST",
            "/1/user/-/foods.json",
            access_token,
            action="create_food",
            form=form,
        )
        _raise_for_error(response, action="create_food")
        payload = _json_object(response, action="create_food")
        food = payload.get("food")
        food_id = food.get("foodId") if isinstance(food, dict) else None
        if not _is_int(food_id):
            raise InvalidResponseError(
                "Fitbit create food response is missing food.foodId",
                details={"action": "create_food"},
            )
        _logger.info("Fitbit food created: food_id=%s", food_id)
        return food_id

    async def log_food(  # noqa: PLR0913
        self,
        access_token: str,
        *,
        food_id: int,
        meal_type: MealType,
        amount: float,
        unit_id: int,
        log_date: date,
        log_time: time | None = None,
    ) -> int:
        """Log an existing Fitbit food."""
        form = {
            "foodId": str(food_id),
            "mealTypeId": str(int(meal_type)),
            "unitId": str(unit_id),
            "amount": _form_number(amount),
            "date": log_date.isoformat(),
        }
        if log_time is not None:
            form["time"] = log_time.strftime("%H:%M:%S")

        response = await self._api_request(
            "POST",
            "/1/user/-/foods/log.json",
            access_token,
            action="log_food",
            form=form,
        )
        _raise_for_error(response, action="log_food")
        payload = _json_object(response, action="log_food")
        food_log = payload.get("foodLog")
        log_id = food_log.get("logId") if isinstance(food_log, dict) else None
        if not _is_int(log_id):
            raise InvalidResponseError(
                "Fitbit log food response is missing foodLog.logId",
                details={"action": "log_food"},
            )
        return log_id

    async def delete_food_log(self, access_token: str, log_id: int) -> None:
        """Delete a food log entry."""
        response = await self._api_request(
            "DELETE",
            f"/1/user/-/foods/log/{log_id}.json",
            access_token,
            action="delete_food_log",
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            _logger.warning(
                "Fitbit food log %s not found, treating as already deleted", log_id
            )
            return
        _raise_for_error(response, action="delete_food_log")

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an OAuth authorization code."""
        response = await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            action="exchange_code",
        )
        _raise_for_error(response, action="exchange_code")
        return _parse_grant(_json_object(response, action="exchange_code"))

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh an access token."""
        response = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            action="refresh_token",
        )
        if response.status_code in {httpx.codes.BAD_REQUEST, httpx.codes.UNAUTHORIZED}:
            _logger.warning(
                "Fitbit token refresh rejected: status=%s", response.status_code
            )
            raise TokenInvalidError(details={"status": response.status_code})
        _raise_for_error(response, action="refresh_token")
        return _parse_grant(_json_object(response, action="refresh_token"))

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _api_request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        action: str,
        form: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}

        async def send() -> httpx.Response:
            _logger.debug("Fitbit %s: %s %s", action, method, path)
            return await self._send(
                action,
                self.http_client.request(
                    method,
                    url,
                    headers=headers,
                    data=form,
                    timeout=self.timeout_seconds,
                ),
            )

        response = await retry_async(
            send,
            policy=self.retry_policy,
            should_retry=_is_retryable,
            action=f"Fitbit {action}",
            sleep=self.sleep,
        )
        if response.status_code == httpx.codes.UNAUTHORIZED:
            _logger.warning("Fitbit %s rejected the access token", action)
            raise TokenInvalidError(details={"action": action})
        if _is_rate_limited(response):
            raise RateLimitError(details={"action": action})
        return response

    async def _token_request(
        self, form: dict[str, str], *, action: str
    ) -> httpx.Response:
        _logger.debug("Fitbit %s", action)
        return await self._send(
            action,
            self.http_client.post(
                f"{self.base_url}/oauth2/token",
                data=form,
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout_seconds,
            ),
        )

    @staticmethod
    async def _send(
        action: str, request: Awaitable[httpx.Response]
    ) -> httpx.Response:
        try:
            return await request
        except httpx.TimeoutException as exc:
            _logger.error("Fitbit %s timed out", action)
            raise RemoteApiError(
                "Fitbit request timed out", details={"action": action}
            ) from exc
        except httpx.HTTPError as exc:
            _logger.error("Fitbit %s transport error: %s", action, exc)
            raise RemoteApiError(details={"action": action}) from exc


def sanitize_error_body(body: object) -> object:
    """Strip markup and truncate text bodies before they are logged."""
    if isinstance(body, str):
        return _HTML_TAG.sub("", body)[:_ERROR_BODY_LIMIT]
    return body


def parse_error_body(response: httpx.Response) -> object:
    """Return the response body as JSON when possible, otherwise as text."""
    try:
        return response.json()
    except ValueError:
        return response.text


def _raise_for_error(response: httpx.Response, *, action: str) -> None:
    if response.is_success:
        return
    body = sanitize_error_body(parse_error_body(response))
    _logger.error(
        "Fitbit %s failed: status=%s body=%s", action, response.status_code, body
    )
    raise RemoteApiError(
        details={"action": action, "status": response.status_code, "body": body}
    )


def _json_object(response: httpx.Response, *, action: str) -> dict[str, object]:
    try:
        payload = response.json()
    except ValueError as exc:
        _logger.error("Fitbit %s returned unparsable data", action)
        raise RemoteApiError(
            "Fitbit returned unparsable data", details={"action": action}
        ) from exc
    if not isinstance(payload, dict):
        raise InvalidResponseError(
            f"Fitbit {action} response is not an object", details={"action": action}
        )
    return payload


def _parse_grant(payload: dict[str, object]) -> TokenGrant:
    for key in ("access_token", "refresh_token", "user_id"):
        if not isinstance(payload.get(key), str):
            raise InvalidResponseError(f"Invalid Fitbit token response: missing {key}")
    expires_in = payload.get("expires_in")
    if not _is_int(expires_in):
        raise InvalidResponseError("Invalid Fitbit token response: missing expires_in")
    return TokenGrant(
        access_token=str(payload["access_token"]),
        refresh_token=str(payload["refresh_token"]),
        fitbit_user_id=str(payload["user_id"]),
        expires_in=expires_in,
    )


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == httpx.codes.TOO_MANY_REQUESTS


def _is_retryable(response: httpx.Response) -> bool:
    return _is_rate_limited(response) or response.is_server_error


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _form_number(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return str(number)
