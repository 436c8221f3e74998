"""Supabase repository for custom foods and food log entries."""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from supabase import Client

from food_sync.domain.foods import (
    Confidence,
    FoodLogEntry,
    FoodRecord,
    MealType,
    NutrientProfile,
)
from food_sync.services.food_log import FoodRepository

_FOODS_TABLE = "custom_foods"
_ENTRIES_TABLE = "food_log_entries"


@dataclass
class SupabaseFoodRepository(FoodRepository):
    """Supabase implementation for custom foods and their log entries."""

    client: Client

    def create_food_record(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodRecord:
        """Create a custom food row and return it."""
        response = (
            self.client.table(_FOODS_TABLE)
            .insert({"user_id": str(owner_id), **_serialize(payload)})
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create custom food")
        return _parse_record(response.data[0])

    def get_food_record(self, record_id: int) -> FoodRecord | None:
        """Return a custom food by id, if present."""
        response = (
            self.client.table(_FOODS_TABLE)
            .select("*")
            .eq("id", record_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_record(response.data[0])

    def update_food_record(
        self, record_id: int, payload: dict[str, object]
    ) -> FoodRecord:
        """Update a custom food row and return it."""
        response = (
            self.client.table(_FOODS_TABLE)
            .update(_serialize(payload))
            .eq("id", record_id)
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to update custom food")
        return _parse_record(response.data[0])

    def list_records_with_keywords(
        self, owner_id: UUID, *, require_fitbit_food: bool
    ) -> list[FoodRecord]:
        """Return the owner's custom foods that carry keywords."""
        query = (
            self.client.table(_FOODS_TABLE)
            .select("*")
            .eq("user_id", str(owner_id))
            .not_.is_("keywords", "null")
        )
        if require_fitbit_food:
            query = query.not_.is_("fitbit_food_id", "null")
        response = query.execute()
        return [_parse_record(row) for row in response.data or []]

    def get_last_logged_times(
        self, owner_id: UUID, record_ids: list[int]
    ) -> dict[int, datetime]:
        """Return the most recent log time per custom food id."""
        if not record_ids:
            return {}
        response = (
            self.client.table(_ENTRIES_TABLE)
            .select("custom_food_id, logged_at")
            .eq("user_id", str(owner_id))
            .in_("custom_food_id", record_ids)
            .order("logged_at", desc=True)
            .execute()
        )
        latest: dict[int, datetime] = {}
        for row in response.data or []:
            record_id = int(row["custom_food_id"])
            logged_at = datetime.fromisoformat(str(row["logged_at"]))
            if record_id not in latest or logged_at > latest[record_id]:
                latest[record_id] = logged_at
        return latest

    def create_log_entry(
        self, owner_id: UUID, payload: dict[str, object]
    ) -> FoodLogEntry:
        """Create a food log entry row and return it."""
        response = (
            self.client.table(_ENTRIES_TABLE)
            .insert({"user_id": str(owner_id), **_serialize(payload)})
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create food log entry")
        return _parse_entry(response.data[0])

    def get_log_entry(self, entry_id: int) -> FoodLogEntry | None:
        """Return a food log entry by id, if present."""
        response = (
            self.client.table(_ENTRIES_TABLE)
            .select("*")
            .eq("id", entry_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_entry(response.data[0])

    def update_log_entry(
        self, entry_id: int, payload: dict[str, object]
    ) -> FoodLogEntry:
        """Update a food log entry row and return it."""
        response = (
            self.client.table(_ENTRIES_TABLE)
            .update(_serialize(payload))
            .eq("id", entry_id)
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to update food log entry")
        return _parse_entry(response.data[0])

    def delete_log_entry(self, entry_id: int) -> None:
        """Delete a food log entry row."""
        self.client.table(_ENTRIES_TABLE).delete().eq("id", entry_id).execute()


def _serialize(payload: dict[str, object]) -> dict[str, object]:
    serialized: dict[str, object] = {}
    for key, value in payload.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, date | time):
            value = value.isoformat()
        elif isinstance(value, tuple):
            value = list(value)
        serialized[key] = value
    return serialized


def _optional_float(value: object) -> float | None:
    return float(value) if value is not None else None


def _optional_int(value: object) -> int | None:
    return int(value) if value is not None else None


def _parse_record(row: dict[str, object]) -> FoodRecord:
    return FoodRecord(
        id=int(row["id"]),
        owner_id=UUID(str(row["user_id"])),
        name=str(row.get("food_name", "")),
        amount=float(row.get("amount", 0.0)),
        unit_id=int(row["unit_id"]),
        nutrients=NutrientProfile(
            calories=float(row.get("calories", 0.0)),
            protein_g=float(row.get("protein_g", 0.0)),
            carbs_g=float(row.get("carbs_g", 0.0)),
            fat_g=float(row.get("fat_g", 0.0)),
            fiber_g=float(row.get("fiber_g", 0.0)),
            sodium_mg=float(row.get("sodium_mg", 0.0)),
            saturated_fat_g=_optional_float(row.get("saturated_fat_g")),
            trans_fat_g=_optional_float(row.get("trans_fat_g")),
            sugars_g=_optional_float(row.get("sugars_g")),
            calories_from_fat=_optional_float(row.get("calories_from_fat")),
        ),
        confidence=Confidence(row.get("confidence") or Confidence.MEDIUM),
        notes=row.get("notes"),
        description=row.get("description"),
        keywords=tuple(row.get("keywords") or ()),
        fitbit_food_id=_optional_int(row.get("fitbit_food_id")),
        created_at=datetime.fromisoformat(str(row["created_at"])),
    )


def _parse_entry(row: dict[str, object]) -> FoodLogEntry:
    raw_time = row.get("time")
    raw_logged_at = row.get("logged_at")
    return FoodLogEntry(
        id=int(row["id"]),
        owner_id=UUID(str(row["user_id"])),
        food_record_id=int(row["custom_food_id"]),
        meal_type=MealType(int(row["meal_type_id"])),
        amount=float(row.get("amount", 0.0)),
        unit_id=int(row["unit_id"]),
        log_date=date.fromisoformat(str(row["date"])),
        log_time=time.fromisoformat(str(raw_time)) if raw_time else None,
        fitbit_log_id=_optional_int(row.get("fitbit_log_id")),
        logged_at=datetime.fromisoformat(str(raw_logged_at)) if raw_logged_at else None,
    )
