"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from supabase import create_client

from food_sync.adapters.fitbit_client import FitbitClient, HttpxFitbitClient
from food_sync.adapters.supabase_credential_repository import (
    SupabaseCredentialRepository,
)
from food_sync.adapters.supabase_food_repository import SupabaseFoodRepository
from food_sync.config import Settings
from food_sync.services.food_log import FoodLogService
from food_sync.services.matching import FoodMatchService
from food_sync.services.retry import RetryPolicy
from food_sync.services.tokens import TokenService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    fitbit_client: FitbitClient
    token_service: TokenService
    match_service: FoodMatchService
    food_log_service: FoodLogService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    food_repository = SupabaseFoodRepository(supabase_client)
    credential_repository = SupabaseCredentialRepository(supabase_client)
    fitbit_client = HttpxFitbitClient.create(
        client_id=resolved_settings.fitbit_client_id,
        client_secret=resolved_settings.fitbit_client_secret,
        base_url=resolved_settings.fitbit_base_url,
        timeout_seconds=resolved_settings.fitbit_request_timeout_seconds,
        retry_policy=RetryPolicy(
            max_retries=resolved_settings.fitbit_max_retries,
            deadline_seconds=resolved_settings.fitbit_retry_deadline_seconds,
        ),
    )
    token_service = TokenService(
        client=fitbit_client,
        repository=credential_repository,
        refresh_margin=timedelta(
            seconds=resolved_settings.token_refresh_margin_seconds
        ),
    )
    match_service = FoodMatchService(
        repository=food_repository,
        dry_run=resolved_settings.fitbit_dry_run,
    )
    food_log_service = FoodLogService(
        repository=food_repository,
        fitbit_client=fitbit_client,
        token_service=token_service,
        dry_run=resolved_settings.fitbit_dry_run,
    )

    async def close_resources() -> None:
        await food_log_service.wait_for_background_tasks()
        await fitbit_client.close()

    return AppContainer(
        settings=resolved_settings,
        fitbit_client=fitbit_client,
        token_service=token_service,
        match_service=match_service,
        food_log_service=food_log_service,
        close_resources=close_resources,
    )
