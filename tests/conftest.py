"""Shared test fixtures."""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID, uuid4

import pytest

from food_sync.adapters.fitbit_client import FitbitClient
from food_sync.config import Settings
from food_sync.containers import AppContainer
from food_sync.domain.credentials import Credential, TokenGrant
from food_sync.domain.foods import (
    Confidence,
    FoodLogEntry,
    FoodRecord,
    MealType,
    NutrientProfile,
)
from food_sync.services.food_log import FoodLogService, FoodRepository
from food_sync.services.matching import FoodMatchService
from food_sync.services.tokens import CredentialRepository, TokenService

FIXED_NOW = datetime(2026, 10, 18, 12, 30, tzinfo=UTC)

_RECORD_FIELDS = {
    "food_name": "name",
    "amount": "amount",
    "unit_id": "unit_id",
    "confidence": "confidence",
    "notes": "notes",
    "description": "description",
    "keywords": "keywords",
    "fitbit_food_id": "fitbit_food_id",
}
_NUTRIENT_FIELDS = {
    "calories",
    "protein_g",
    "carbs_g",
    "fat_g",
    "fiber_g",
    "sodium_mg",
    "saturated_fat_g",
    "trans_fat_g",
    "sugars_g",
    "calories_from_fat",
}
_ENTRY_FIELDS = {
    "custom_food_id": "food_record_id",
    "meal_type_id": "meal_type",
    "amount": "amount",
    "unit_id": "unit_id",
    "date": "log_date",
    "time": "log_time",
    "fitbit_log_id": "fitbit_log_id",
}


@dataclass
class InMemoryFoodRepository(FoodRepository):
    records: dict[int, FoodRecord] = field(default_factory=dict)
    entries: dict[int, FoodLogEntry] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    next_id: int = 1

    def add_record(self, owner_id: UUID, **overrides: object) -> FoodRecord:
        values: dict[str, object] = {
            "id": self._new_id(),
            "owner_id": owner_id,
            "name": "Tea with milk",
            "amount": 1.0,
            "unit_id": 91,
            "nutrients": NutrientProfile(
                calories=100,
                protein_g=5.0,
                carbs_g=10.0,
                fat_g=3.0,
                fiber_g=0.0,
                sodium_mg=40.0,
            ),
            "confidence": Confidence.HIGH,
            "notes": None,
            "description": None,
            "keywords": ("tea", "milk"),
            "fitbit_food_id": 9000,
            "created_at": FIXED_NOW - timedelta(days=30),
        }
        values.update(overrides)
        record = FoodRecord(**values)
        self.records[record.id] = record
        return record

    def add_entry(
        self, owner_id: UUID, record: FoodRecord, **overrides: object
    ) -> FoodLogEntry:
        values: dict[str, object] = {
            "id": self._new_id(),
            "owner_id": owner_id,
            "food_record_id": record.id,
            "meal_type": MealType.BREAKFAST,
            "amount": record.amount,
            "unit_id": record.unit_id,
            "log_date": date(2026, 10, 17),
            "log_time": time(8, 0),
            "fitbit_log_id": 5000,
            "logged_at": FIXED_NOW - timedelta(days=1),
        }
        values.update(overrides)
        entry = FoodLogEntry(**values)
        self.entries[entry.id] = entry
        return entry

    def create_food_record(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodRecord:
        self._check("create_food_record")
        nutrients = NutrientProfile(
            **{key: payload.get(key) for key in _NUTRIENT_FIELDS}
        )
        record = FoodRecord(
            id=self._new_id(),
            owner_id=owner_id,
            name=str(payload["food_name"]),
            amount=float(payload["amount"]),
            unit_id=int(payload["unit_id"]),
            nutrients=nutrients,
            confidence=Confidence(payload["confidence"]),
            notes=payload.get("notes"),
            description=payload.get("description"),
            keywords=tuple(payload.get("keywords") or ()),
            fitbit_food_id=payload.get("fitbit_food_id"),
            created_at=FIXED_NOW,
        )
        self.records[record.id] = record
        return record

    def get_food_record(self, record_id: int) -> FoodRecord | None:
        return self.records.get(record_id)

    def update_food_record(
        self, record_id: int, payload: dict[str, object]
    ) -> FoodRecord:
        self._check("update_food_record")
        changes = {_RECORD_FIELDS[key]: value for key, value in payload.items()}
        record = replace(self.records[record_id], **changes)
        self.records[record_id] = record
        return record

    def list_records_with_keywords(
        self, owner_id: UUID, *, require_fitbit_food: bool
    ) -> list[FoodRecord]:
        return [
            record
            for record in self.records.values()
            if record.owner_id == owner_id
            and record.keywords
            and (not require_fitbit_food or record.fitbit_food_id is not None)
        ]

    def get_last_logged_times(
        self, owner_id: UUID, record_ids: list[int]
    ) -> dict[int, datetime]:
        latest: dict[int, datetime] = {}
        for entry in self.entries.values():
            if entry.owner_id != owner_id or entry.food_record_id not in record_ids:
                continue
            if entry.logged_at is None:
                continue
            current = latest.get(entry.food_record_id)
            if current is None or entry.logged_at > current:
                latest[entry.food_record_id] = entry.logged_at
        return latest

    def create_log_entry(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodLogEntry:
        self._check("create_log_entry")
        entry = FoodLogEntry(
            id=self._new_id(),
            owner_id=owner_id,
            food_record_id=int(payload["custom_food_id"]),
            meal_type=MealType(payload["meal_type_id"]),
            amount=float(payload["amount"]),
            unit_id=int(payload["unit_id"]),
            log_date=payload["date"],
            log_time=payload.get("time"),
            fitbit_log_id=payload.get("fitbit_log_id"),
            logged_at=FIXED_NOW,
        )
        self.entries[entry.id] = entry
        return entry

    def get_log_entry(self, entry_id: int) -> FoodLogEntry | None:
        return self.entries.get(entry_id)

    def update_log_entry(
        self, entry_id: int, payload: dict[str, object]
    ) -> FoodLogEntry:
        self._check("update_log_entry")
        changes = {_ENTRY_FIELDS[key]: value for key, value in payload.items()}
        entry = replace(self.entries[entry_id], **changes)
        self.entries[entry_id] = entry
        return entry

    def delete_log_entry(self, entry_id: int) -> None:
        self._check("delete_log_entry")
        self.entries.pop(entry_id, None)

    def _check(self, method: str) -> None:
        if method in self.failing:
            raise RuntimeError(f"{method} failed")

    def _new_id(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value


@dataclass
class InMemoryCredentialRepository(CredentialRepository):
    credentials: dict[UUID, Credential] = field(default_factory=dict)
    save_failures: int = 0
    save_calls: int = 0

    def get_credential(self, owner_id: UUID) -> Credential | None:
        return self.credentials.get(owner_id)

    def save_credential(self, credential: Credential) -> None:
        self.save_calls += 1
        if self.save_failures > 0:
            self.save_failures -= 1
            raise RuntimeError("save failed")
        self.credentials[credential.owner_id] = credential


@dataclass
class FakeFitbitClient(FitbitClient):
    calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)
    errors: dict[str, list[Exception | None]] = field(default_factory=dict)
    next_food_id: int = 9100
    next_log_id: int = 7000
    grant: TokenGrant = field(
        default_factory=lambda: TokenGrant(
            access_token="new-access",
            refresh_token="new-refresh",
            fitbit_user_id="FB123",
            expires_in=28800,
        )
    )

    def fail(self, method: str, error: Exception | None) -> None:
        """Queue an outcome for the next call; None lets that call succeed."""
        self.errors.setdefault(method, []).append(error)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def create_food(self, access_token: str, **kwargs: object) -> int:
        self._record("create_food", access_token=access_token, **kwargs)
        food_id = self.next_food_id
        self.next_food_id += 1
        return food_id

    async def log_food(self, access_token: str, **kwargs: object) -> int:
        self._record("log_food", access_token=access_token, **kwargs)
        log_id = self.next_log_id
        self.next_log_id += 1
        return log_id

    async def delete_food_log(self, access_token: str, log_id: int) -> None:
        self._record("delete_food_log", access_token=access_token, log_id=log_id)

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self._record("exchange_code", code=code, redirect_uri=redirect_uri)
        return self.grant

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self._record("refresh_token", refresh_token=refresh_token)
        return self.grant

    def _record(self, method: str, **kwargs: object) -> None:
        self.calls.append((method, kwargs))
        pending = self.errors.get(method)
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        api_token="api-token",
        fitbit_client_id="client-id",
        fitbit_client_secret="client-secret",
    )


@pytest.fixture
def owner_id() -> UUID:
    return uuid4()


@pytest.fixture
def food_repository() -> InMemoryFoodRepository:
    return InMemoryFoodRepository()


@pytest.fixture
def credential_repository(owner_id: UUID) -> InMemoryCredentialRepository:
    repository = InMemoryCredentialRepository()
    repository.credentials[owner_id] = Credential(
        owner_id=owner_id,
        fitbit_user_id="FB123",
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=FIXED_NOW + timedelta(hours=8),
    )
    return repository


@pytest.fixture
def fitbit_client() -> FakeFitbitClient:
    return FakeFitbitClient()


@pytest.fixture
def token_service(
    fitbit_client: FakeFitbitClient,
    credential_repository: InMemoryCredentialRepository,
) -> TokenService:
    return TokenService(
        client=fitbit_client,
        repository=credential_repository,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def food_log_service(
    food_repository: InMemoryFoodRepository,
    fitbit_client: FakeFitbitClient,
    token_service: TokenService,
) -> FoodLogService:
    return FoodLogService(
        repository=food_repository,
        fitbit_client=fitbit_client,
        token_service=token_service,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def dry_run_service(
    food_repository: InMemoryFoodRepository,
    fitbit_client: FakeFitbitClient,
    token_service: TokenService,
) -> FoodLogService:
    return FoodLogService(
        repository=food_repository,
        fitbit_client=fitbit_client,
        token_service=token_service,
        dry_run=True,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def container(
    settings: Settings,
    food_repository: InMemoryFoodRepository,
    fitbit_client: FakeFitbitClient,
    token_service: TokenService,
    food_log_service: FoodLogService,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        fitbit_client=fitbit_client,
        token_service=token_service,
        match_service=FoodMatchService(food_repository),
        food_log_service=food_log_service,
        close_resources=close_resources,
    )


def analysis_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "food_name": "Tea with milk",
        "amount": 1,
        "unit_id": 91,
        "calories": 100,
        "protein_g": 5.0,
        "carbs_g": 10.0,
        "fat_g": 3.0,
        "fiber_g": 0.0,
        "sodium_mg": 40.0,
        "confidence": "high",
        "keywords": ["Tea", "milk"],
    }
    payload.update(overrides)
    return payload
