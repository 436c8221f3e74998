"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from food_sync.app_logging import configure_logging
from food_sync.containers import AppContainer
from food_sync.domain.errors import ErrorCode, FoodSyncError, NotFoundError
from food_sync.domain.foods import FoodLogResult, MatchCandidate
from food_sync.domain.requests import MatchQuery, parse_request

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.TOKEN_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.API_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INVALID_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.PARTIAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _get_container(request: Request) -> AppContainer:
    return request.app.state.container


async def require_owner(
    authorization: str | None = Header(default=None),
    x_owner_id: str | None = Header(default=None),
    container: AppContainer = Depends(_get_container),
) -> UUID:
    """Check the bearer token and return the owner named by ``X-Owner-Id``."""
    expected = f"Bearer {container.settings.api_token}"
    if not authorization or authorization != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    try:
        return UUID(x_owner_id or "")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid owner id"
        ) from exc


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(FoodSyncError)
    async def food_sync_error_handler(
        _request: Request, exc: FoodSyncError
    ) -> JSONResponse:
        status_code = _STATUS_BY_CODE.get(
            exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        if isinstance(exc, NotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        logger.info(
            "Request failed: code=%s status=%s message=%s",
            exc.code,
            status_code,
            exc.message,
        )
        error: dict[str, object] = {"code": exc.code, "message": exc.message}
        if getattr(exc, "manual_cleanup_required", False):
            error["manualCleanupRequired"] = True
        return JSONResponse(
            status_code=status_code, content={"success": False, "error": error}
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/api/find-matches")
    async def find_matches(
        request: Request,
        payload: dict[str, Any] = Body(...),
        owner_id: UUID = Depends(require_owner),
    ) -> dict[str, object]:
        """Return stored foods that can be reused for an analysis."""
        state_container: AppContainer = request.app.state.container
        query = parse_request(MatchQuery, payload)
        matches = state_container.match_service.find_matching_foods(
            owner_id, query.keywords, query.macros()
        )
        return _success({"matches": [_match_payload(match) for match in matches]})

    @app.post("/api/log-food")
    async def log_food(
        request: Request,
        payload: dict[str, Any] = Body(...),
        owner_id: UUID = Depends(require_owner),
    ) -> dict[str, object]:
        """Log a new food, or reuse a stored one when ``reuseCustomFoodId`` is set."""
        service = request.app.state.container.food_log_service
        if payload.get("reuseCustomFoodId") is not None:
            result = await service.log_reused_food(owner_id, payload)
        else:
            result = await service.log_new_food(owner_id, payload)
        return _success(_result_payload(result))

    @app.post("/api/edit-food")
    async def edit_food(
        request: Request,
        payload: dict[str, Any] = Body(...),
        owner_id: UUID = Depends(require_owner),
    ) -> dict[str, object]:
        """Edit an existing food log entry."""
        service = request.app.state.container.food_log_service
        result = await service.edit_log_entry(owner_id, payload)
        return _success(_result_payload(result))

    @app.delete("/api/food-history/{entry_id}")
    async def delete_food_history(
        entry_id: int,
        request: Request,
        owner_id: UUID = Depends(require_owner),
    ) -> dict[str, object]:
        """Delete a food log entry."""
        service = request.app.state.container.food_log_service
        await service.delete_log_entry(owner_id, entry_id)
        return _success({"deleted": True})

    return app


def _success(data: dict[str, object]) -> dict[str, object]:
    return {"success": True, "data": data}


def _result_payload(result: FoodLogResult) -> dict[str, object]:
    payload: dict[str, object] = {
        "foodLogId": result.food_log_id,
        "fitbitFoodId": result.fitbit_food_id,
        "fitbitLogId": result.fitbit_log_id,
        "reusedFood": result.reused_food,
    }
    if result.dry_run:
        payload["dryRun"] = True
    return payload


def _match_payload(match: MatchCandidate) -> dict[str, object]:
    record = match.record
    return {
        "customFoodId": record.id,
        "foodName": record.name,
        "calories": record.nutrients.calories,
        "proteinG": record.nutrients.protein_g,
        "carbsG": record.nutrients.carbs_g,
        "fatG": record.nutrients.fat_g,
        "fitbitFoodId": record.fitbit_food_id,
        "matchRatio": match.match_ratio,
        "lastLoggedAt": match.last_logged_at.isoformat(),
        "amount": record.amount,
        "unitId": record.unit_id,
    }
