"""Food log write flows that keep local records and Fitbit in sync.

Every flow is an ordered list of saga steps. Remote steps are skipped in
dry-run mode; local steps always run. When a local write fails after Fitbit
has accepted a change, the Fitbit change is compensated and the caller gets
INTERNAL_ERROR, or PARTIAL_ERROR when a Fitbit write could not be removed.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import NoReturn, Protocol
from uuid import UUID

from food_sync.adapters.fitbit_client import FitbitClient
from food_sync.domain.errors import (
    FoodSyncError,
    LocalStoreError,
    NotFoundError,
    PartialSyncError,
    RemoteApiError,
    RequestValidationError,
)
from food_sync.domain.foods import (
    FoodLogEntry,
    FoodLogResult,
    FoodRecord,
    NutrientProfile,
    default_meal_type,
)
from food_sync.domain.requests import (
    EditFoodLogRequest,
    FoodAnalysis,
    NewFoodLogRequest,
    ReuseFoodLogRequest,
    parse_request,
)
from food_sync.services.matching import FoodMatchRepository
from food_sync.services.saga import Action, SagaFailedError, SagaStep, run_saga
from food_sync.services.tokens import TokenService

_logger = logging.getLogger(__name__)

# Failures in these steps happen before Fitbit state changes, so the original
# error is passed through unchanged.
_PASS_THROUGH_STEPS = {"ensure_token", "delete_old_log"}


class FoodRepository(FoodMatchRepository, Protocol):
    """Persistence interface for custom foods and food log entries."""

    def create_food_record(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodRecord:
        """Create a custom food and return it."""

    def get_food_record(self, record_id: int) -> FoodRecord | None:
        """Return a custom food by id, if present."""

    def update_food_record(
        self, record_id: int, payload: dict[str, object]
    ) -> FoodRecord:
        """Update metadata of a custom food and return it."""

    def create_log_entry(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodLogEntry:
        """Create a food log entry and return it."""

    def get_log_entry(self, entry_id: int) -> FoodLogEntry | None:
        """Return a food log entry by id, if present."""

    def update_log_entry(
        self, entry_id: int, payload: dict[str, object]
    ) -> FoodLogEntry:
        """Update fields of a food log entry and return it."""

    def delete_log_entry(self, entry_id: int) -> None:
        """Delete a food log entry."""


@dataclass
class _SyncState:
    """Values produced by earlier saga steps."""

    access_token: str = ""
    fitbit_food_id: int | None = None
    new_log_id: int | None = None
    old_log_deleted: bool = False
    restored_log_id: int | None = None
    entry: FoodLogEntry | None = None

    def saved_entry(self) -> FoodLogEntry:
        if self.entry is None:
            raise RuntimeError("Local save step did not produce an entry")
        return self.entry


def _local_now() -> datetime:
    return datetime.now().astimezone()


def is_nutrition_unchanged(analysis: FoodAnalysis, record: FoodRecord) -> bool:
    """Return True when an edit keeps the stored food's identity and nutrients."""
    return (
        analysis.food_name == record.name
        and analysis.unit_id == record.unit_id
        and analysis.nutrients() == record.nutrients
    )


@dataclass
class FoodLogService:
    """Entry points for logging, reusing, editing and deleting food entries."""

    repository: FoodRepository
    fitbit_client: FitbitClient
    token_service: TokenService
    dry_run: bool = False
    clock: Callable[[], datetime] = _local_now
    _background_tasks: set["asyncio.Task[None]"] = field(
        default_factory=set, init=False, repr=False
    )

    async def log_new_food(
        self, owner_id: UUID, payload: Mapping[str, object]
    ) -> FoodLogResult:
        """Create a new food in Fitbit, log it, then save both locally."""
        request = parse_request(NewFoodLogRequest, payload)
        now = self.clock()
        meal_type = request.meal_type_id or default_meal_type(now.hour)
        log_date = request.log_date or now.date()
        nutrients = request.nutrients()
        state = _SyncState()

        async def create_remote_food() -> None:
            state.fitbit_food_id = await self.fitbit_client.create_food(
                state.access_token,
                name=request.food_name,
                amount=request.amount,
                unit_id=request.unit_id,
                nutrients=nutrients,
            )

        async def log_remote_food() -> None:
            state.new_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=state.fitbit_food_id,
                meal_type=meal_type,
                amount=request.amount,
                unit_id=request.unit_id,
                log_date=log_date,
                log_time=request.log_time,
            )

        async def save_local() -> None:
            record = self.repository.create_food_record(
                owner_id, _record_payload(request, nutrients, state.fitbit_food_id)
            )
            state.entry = self.repository.create_log_entry(
                owner_id,
                {
                    "custom_food_id": record.id,
                    "meal_type_id": meal_type,
                    "amount": request.amount,
                    "unit_id": request.unit_id,
                    "date": log_date,
                    "time": request.log_time,
                    "fitbit_log_id": state.new_log_id,
                },
            )

        steps = self._with_token(
            owner_id,
            state,
            [
                SagaStep("create_remote_food", create_remote_food),
                SagaStep(
                    "log_remote_food",
                    log_remote_food,
                    compensation=self._delete_new_log(state),
                ),
            ],
        )
        steps.append(SagaStep("save_local", save_local, local=True))
        await self._run("log_new_food", steps)

        saved = state.saved_entry()
        _logger.info(
            "Food logged: entry_id=%s fitbit_food_id=%s fitbit_log_id=%s dry_run=%s",
            saved.id,
            state.fitbit_food_id,
            state.new_log_id,
            self.dry_run,
        )
        return FoodLogResult(
            food_log_id=saved.id,
            fitbit_food_id=state.fitbit_food_id,
            fitbit_log_id=state.new_log_id,
            reused_food=False,
            dry_run=self.dry_run,
        )

    async def log_reused_food(
        self, owner_id: UUID, payload: Mapping[str, object]
    ) -> FoodLogResult:
        """Log an existing food against its Fitbit food id without recreating it."""
        request = parse_request(ReuseFoodLogRequest, payload)
        record = self.repository.get_food_record(request.food_record_id)
        if record is None or record.owner_id != owner_id:
            raise NotFoundError("Food not found")
        if not self.dry_run and record.fitbit_food_id is None:
            raise RequestValidationError("Food has no Fitbit food to reuse")

        now = self.clock()
        meal_type = request.meal_type_id or default_meal_type(now.hour)
        log_date = request.log_date or now.date()
        state = _SyncState(fitbit_food_id=record.fitbit_food_id)

        async def log_remote_food() -> None:
            state.new_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=record.fitbit_food_id,
                meal_type=meal_type,
                amount=request.amount,
                unit_id=request.unit_id,
                log_date=log_date,
                log_time=request.log_time,
            )

        async def save_local() -> None:
            state.entry = self.repository.create_log_entry(
                owner_id,
                {
                    "custom_food_id": record.id,
                    "meal_type_id": meal_type,
                    "amount": request.amount,
                    "unit_id": request.unit_id,
                    "date": log_date,
                    "time": request.log_time,
                    "fitbit_log_id": state.new_log_id,
                },
            )

        steps = self._with_token(
            owner_id,
            state,
            [
                SagaStep(
                    "log_remote_food",
                    log_remote_food,
                    compensation=self._delete_new_log(state),
                )
            ],
        )
        steps.append(SagaStep("save_local", save_local, local=True))
        await self._run("log_reused_food", steps)

        saved = state.saved_entry()
        updates = request.metadata_updates()
        if updates:
            self._schedule_metadata_refresh(record.id, updates)
        _logger.info(
            "Food reused: entry_id=%s food_record_id=%s fitbit_log_id=%s dry_run=%s",
            saved.id,
            record.id,
            state.new_log_id,
            self.dry_run,
        )
        return FoodLogResult(
            food_log_id=saved.id,
            fitbit_food_id=record.fitbit_food_id,
            fitbit_log_id=state.new_log_id,
            reused_food=True,
            dry_run=self.dry_run,
        )

    async def edit_log_entry(
        self, owner_id: UUID, payload: Mapping[str, object]
    ) -> FoodLogResult:
        """Apply an edit, re-logging in Fitbit as needed."""
        request = parse_request(EditFoodLogRequest, payload)
        entry = self._owned_entry(owner_id, request.entry_id)
        record = self.repository.get_food_record(entry.food_record_id)
        if record is None:
            raise NotFoundError("Food log entry not found")
        if is_nutrition_unchanged(request, record):
            return await self._edit_metadata(request, entry, record)
        return await self._edit_nutrition(owner_id, request, entry, record)

    async def delete_log_entry(self, owner_id: UUID, entry_id: int) -> None:
        """Delete an entry from Fitbit first, then locally."""
        if entry_id <= 0:
            raise RequestValidationError("Invalid entry ID")
        entry = self._owned_entry(owner_id, entry_id)
        state = _SyncState()
        deletes_remote = entry.fitbit_log_id is not None and not self.dry_run

        async def delete_remote_log() -> None:
            await self.fitbit_client.delete_food_log(
                state.access_token, entry.fitbit_log_id
            )

        async def delete_local() -> None:
            self.repository.delete_log_entry(entry.id)

        steps: list[SagaStep] = []
        if deletes_remote:
            steps = self._with_token(
                owner_id, state, [SagaStep("delete_remote_log", delete_remote_log)]
            )
        steps.append(SagaStep("delete_local", delete_local, local=True))
        try:
            await run_saga("delete_log_entry", steps)
        except SagaFailedError as failure:
            if failure.step.local and deletes_remote:
                _logger.critical(
                    "Fitbit log %s deleted but local entry %s was not: %s",
                    entry.fitbit_log_id,
                    entry.id,
                    failure.cause,
                )
            self._raise_translated(failure)
        _logger.info(
            "Food log entry deleted: entry_id=%s fitbit_log_id=%s dry_run=%s",
            entry.id,
            entry.fitbit_log_id,
            self.dry_run,
        )

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending metadata refreshes."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)

    async def _edit_metadata(
        self, request: EditFoodLogRequest, entry: FoodLogEntry, record: FoodRecord
    ) -> FoodLogResult:
        """Re-log the same Fitbit food with new meal, amount, date or time."""
        state = _SyncState(fitbit_food_id=record.fitbit_food_id)
        syncs_remote = not self.dry_run and record.fitbit_food_id is not None

        async def relog_remote_food() -> None:
            state.new_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=record.fitbit_food_id,
                meal_type=request.meal_type_id,
                amount=request.amount,
                unit_id=request.unit_id,
                log_date=request.log_date,
                log_time=request.log_time,
            )

        async def restore_original_log() -> None:
            state.restored_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=record.fitbit_food_id,
                meal_type=entry.meal_type,
                amount=entry.amount,
                unit_id=entry.unit_id,
                log_date=entry.log_date,
                log_time=entry.log_time or request.log_time,
            )

        async def update_local() -> None:
            fields: dict[str, object] = {
                "meal_type_id": request.meal_type_id,
                "amount": request.amount,
                "unit_id": request.unit_id,
                "date": request.log_date,
                "time": request.log_time,
            }
            if syncs_remote:
                fields["fitbit_log_id"] = state.new_log_id
            state.entry = self.repository.update_log_entry(entry.id, fields)

        steps: list[SagaStep] = []
        if syncs_remote:
            remote_steps = []
            if entry.fitbit_log_id is not None:
                remote_steps.append(
                    SagaStep(
                        "delete_old_log",
                        self._delete_old_log(entry, state),
                        compensation=restore_original_log,
                        restores_state=True,
                    )
                )
            remote_steps.append(
                SagaStep(
                    "relog_remote_food",
                    relog_remote_food,
                    compensation=self._delete_new_log(state),
                )
            )
            steps = self._with_token(entry.owner_id, state, remote_steps)
        steps.append(SagaStep("update_local", update_local, local=True))
        await self._run_edit("edit_log_entry_metadata", steps, entry, state)

        saved = state.saved_entry()
        _logger.info(
            "Food edit saved via metadata path: entry_id=%s fitbit_log_id=%s "
            "dry_run=%s",
            entry.id,
            saved.fitbit_log_id,
            self.dry_run,
        )
        return FoodLogResult(
            food_log_id=entry.id,
            fitbit_food_id=record.fitbit_food_id,
            fitbit_log_id=saved.fitbit_log_id,
            reused_food=True,
            dry_run=self.dry_run,
        )

    async def _edit_nutrition(
        self,
        owner_id: UUID,
        request: EditFoodLogRequest,
        entry: FoodLogEntry,
        record: FoodRecord,
    ) -> FoodLogResult:
        """Replace the entry's food with a newly created one."""
        nutrients = request.nutrients()
        state = _SyncState()

        async def restore_original_food() -> None:
            food_id = await self.fitbit_client.create_food(
                state.access_token,
                name=record.name,
                amount=record.amount,
                unit_id=record.unit_id,
                nutrients=record.nutrients,
            )
            state.restored_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=food_id,
                meal_type=entry.meal_type,
                amount=entry.amount,
                unit_id=entry.unit_id,
                log_date=entry.log_date,
                log_time=entry.log_time or request.log_time,
            )

        async def create_remote_food() -> None:
            state.fitbit_food_id = await self.fitbit_client.create_food(
                state.access_token,
                name=request.food_name,
                amount=request.amount,
                unit_id=request.unit_id,
                nutrients=nutrients,
            )

        async def log_remote_food() -> None:
            state.new_log_id = await self.fitbit_client.log_food(
                state.access_token,
                food_id=state.fitbit_food_id,
                meal_type=request.meal_type_id,
                amount=request.amount,
                unit_id=request.unit_id,
                log_date=request.log_date,
                log_time=request.log_time,
            )

        async def save_local() -> None:
            new_record = self.repository.create_food_record(
                owner_id, _record_payload(request, nutrients, state.fitbit_food_id)
            )
            fields: dict[str, object] = {
                "custom_food_id": new_record.id,
                "meal_type_id": request.meal_type_id,
                "amount": request.amount,
                "unit_id": request.unit_id,
                "date": request.log_date,
                "time": request.log_time,
            }
            if not self.dry_run:
                fields["fitbit_log_id"] = state.new_log_id
            state.entry = self.repository.update_log_entry(entry.id, fields)

        remote_steps: list[SagaStep] = []
        if entry.fitbit_log_id is not None:
            remote_steps.append(
                SagaStep(
                    "delete_old_log",
                    self._delete_old_log(entry, state),
                    compensation=restore_original_food,
                    restores_state=True,
                )
            )
        remote_steps.extend(
            [
                SagaStep("create_remote_food", create_remote_food),
                SagaStep(
                    "log_remote_food",
                    log_remote_food,
                    compensation=self._delete_new_log(state),
                ),
            ]
        )
        steps = self._with_token(owner_id, state, remote_steps)
        steps.append(SagaStep("save_local", save_local, local=True))
        await self._run_edit("edit_log_entry_nutrition", steps, entry, state)

        saved = state.saved_entry()
        _logger.info(
            "Food edit saved: entry_id=%s food_record_id=%s fitbit_log_id=%s "
            "dry_run=%s",
            entry.id,
            saved.food_record_id,
            saved.fitbit_log_id,
            self.dry_run,
        )
        return FoodLogResult(
            food_log_id=entry.id,
            fitbit_food_id=state.fitbit_food_id,
            fitbit_log_id=saved.fitbit_log_id,
            reused_food=False,
            dry_run=self.dry_run,
        )

    def _with_token(
        self, owner_id: UUID, state: _SyncState, remote_steps: list[SagaStep]
    ) -> list[SagaStep]:
        """Prefix remote steps with a token check; drop them all in dry-run mode."""
        if self.dry_run:
            return []

        async def ensure_token() -> None:
            state.access_token = await self.token_service.access_token_for(owner_id)

        return [SagaStep("ensure_token", ensure_token), *remote_steps]

    def _delete_new_log(self, state: _SyncState) -> Action:
        async def delete_new_log() -> None:
            if state.new_log_id is not None:
                await self.fitbit_client.delete_food_log(
                    state.access_token, state.new_log_id
                )

        return delete_new_log

    def _delete_old_log(self, entry: FoodLogEntry, state: _SyncState) -> Action:
        async def delete_old_log() -> None:
            await self.fitbit_client.delete_food_log(
                state.access_token, entry.fitbit_log_id
            )
            state.old_log_deleted = True

        return delete_old_log

    def _owned_entry(self, owner_id: UUID, entry_id: int) -> FoodLogEntry:
        entry = self.repository.get_log_entry(entry_id)
        if entry is None or entry.owner_id != owner_id:
            raise NotFoundError("Food log entry not found")
        return entry

    async def _run(self, name: str, steps: list[SagaStep]) -> None:
        try:
            await run_saga(name, steps)
        except SagaFailedError as failure:
            self._raise_translated(failure)

    async def _run_edit(
        self,
        name: str,
        steps: list[SagaStep],
        entry: FoodLogEntry,
        state: _SyncState,
    ) -> None:
        try:
            await run_saga(name, steps)
        except SagaFailedError as failure:
            if state.old_log_deleted:
                self._repoint_entry(entry, state.restored_log_id)
            self._raise_translated(failure, wrap_remote=True)

    def _repoint_entry(self, entry: FoodLogEntry, fitbit_log_id: int | None) -> None:
        """Keep the entry from pointing at the Fitbit log deleted by a failed edit."""
        try:
            self.repository.update_log_entry(entry.id, {"fitbit_log_id": fitbit_log_id})
        except Exception as exc:  # noqa: BLE001
            _logger.critical(
                "Entry %s still references deleted Fitbit log %s: %s",
                entry.id,
                entry.fitbit_log_id,
                exc,
            )
        else:
            _logger.warning(
                "Entry %s repointed from Fitbit log %s to %s",
                entry.id,
                entry.fitbit_log_id,
                fitbit_log_id,
            )

    @staticmethod
    def _raise_translated(
        failure: SagaFailedError, *, wrap_remote: bool = False
    ) -> NoReturn:
        cause = failure.cause
        details = {"saga": failure.saga, "step": failure.step.name}
        if failure.step.local:
            if not failure.stray_writes:
                if not failure.compensated:
                    _logger.critical(
                        "%s: local save failed and Fitbit restore failed for %s",
                        failure.saga,
                        ", ".join(failure.failed_compensations),
                    )
                raise LocalStoreError(details=details) from cause
            _logger.critical(
                "%s: local save failed and Fitbit rollback failed for %s",
                failure.saga,
                ", ".join(failure.stray_writes),
            )
            raise PartialSyncError(
                details={**details, "failed": failure.stray_writes}
            ) from cause
        if wrap_remote and failure.step.name not in _PASS_THROUGH_STEPS:
            raise RemoteApiError(
                "Failed to update food in Fitbit", details=details
            ) from cause
        if isinstance(cause, FoodSyncError):
            raise cause
        raise RemoteApiError(details=details) from cause

    def _schedule_metadata_refresh(
        self, record_id: int, updates: dict[str, object]
    ) -> None:
        task = asyncio.create_task(self._refresh_metadata(record_id, updates))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _refresh_metadata(
        self, record_id: int, updates: dict[str, object]
    ) -> None:
        try:
            self.repository.update_food_record(record_id, updates)
        except Exception as exc:  # noqa: BLE001
            _logger.error(
                "Food metadata refresh failed: record_id=%s: %s", record_id, exc
            )


def _record_payload(
    analysis: FoodAnalysis, nutrients: NutrientProfile, fitbit_food_id: int | None
) -> dict[str, object]:
    return {
        "food_name": analysis.food_name,
        "amount": analysis.amount,
        "unit_id": analysis.unit_id,
        "calories": nutrients.calories,
        "protein_g": nutrients.protein_g,
        "carbs_g": nutrients.carbs_g,
        "fat_g": nutrients.fat_g,
        "fiber_g": nutrients.fiber_g,
        "sodium_mg": nutrients.sodium_mg,
        "saturated_fat_g": nutrients.saturated_fat_g,
        "trans_fat_g": nutrients.trans_fat_g,
        "sugars_g": nutrients.sugars_g,
        "calories_from_fat": nutrients.calories_from_fat,
        "confidence": analysis.confidence,
        "notes": analysis.notes or None,
        "description": analysis.description or None,
        "keywords": tuple(analysis.keywords),
        "fitbit_food_id": fitbit_food_id,
    }
