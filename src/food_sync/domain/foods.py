"""Domain models for custom foods and food log entries."""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import IntEnum, StrEnum
from uuid import UUID


class MealType(IntEnum):
    """Fitbit meal slots."""

    BREAKFAST = 1
    MORNING_SNACK = 2
    LUNCH = 3
    AFTERNOON_SNACK = 4
    DINNER = 5
    ANYTIME = 7


MEAL_TYPE_LABELS: dict[MealType, str] = {
    MealType.BREAKFAST: "Breakfast",
    MealType.MORNING_SNACK: "Morning Snack",
    MealType.LUNCH: "Lunch",
    MealType.AFTERNOON_SNACK: "Afternoon Snack",
    MealType.DINNER: "Dinner",
    MealType.ANYTIME: "Anytime",
}


class Confidence(StrEnum):
    """Confidence of a nutrition estimate."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class MeasurementUnit:
    """Fitbit measurement unit."""

    id: int
    name: str
    plural: str


UNITS: dict[str, MeasurementUnit] = {
    "g": MeasurementUnit(147, "g", "g"),
    "oz": MeasurementUnit(226, "oz", "oz"),
    "cup": MeasurementUnit(91, "cup", "cups"),
    "tbsp": MeasurementUnit(349, "tbsp", "tbsp"),
    "tsp": MeasurementUnit(364, "tsp", "tsp"),
    "ml": MeasurementUnit(209, "ml", "ml"),
    "slice": MeasurementUnit(311, "slice", "slices"),
    "serving": MeasurementUnit(304, "serving", "servings"),
}

_UNITS_WITHOUT_SPACE = {"g", "oz", "ml", "tbsp", "tsp"}


def get_unit_by_id(unit_id: int) -> MeasurementUnit | None:
    """Return the unit with the given Fitbit id, if known."""
    for unit in UNITS.values():
        if unit.id == unit_id:
            return unit
    return None


def unit_label(unit_id: int, amount: float) -> str:
    """Format an amount with its unit, e.g. ``150g`` or ``2 slices``."""
    display = f"{amount:g}"
    unit = get_unit_by_id(unit_id)
    if unit is None:
        return f"{display} units"
    name = unit.name if amount == 1 else unit.plural
    if unit.name in _UNITS_WITHOUT_SPACE:
        return f"{display}{name}"
    return f"{display} {name}"


def default_meal_type(hour: int) -> MealType:
    """Pick a meal slot from the hour of day."""
    if 5 <= hour < 10:
        return MealType.BREAKFAST
    if 10 <= hour < 12:
        return MealType.MORNING_SNACK
    if 12 <= hour < 14:
        return MealType.LUNCH
    if 14 <= hour < 17:
        return MealType.AFTERNOON_SNACK
    if 17 <= hour < 21:
        return MealType.DINNER
    return MealType.ANYTIME


@dataclass(frozen=True)
class MacroProfile:
    """The four macros used for food matching."""

    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float


@dataclass(frozen=True)
class NutrientProfile:
    """Full nutrient profile of a food serving."""

    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float
    fiber_g: float
    sodium_mg: float
    saturated_fat_g: float | None = None
    trans_fat_g: float | None = None
    sugars_g: float | None = None
    calories_from_fat: float | None = None

    def macros(self) -> MacroProfile:
        """Return the macro subset of this profile."""
        return MacroProfile(
            calories=self.calories,
            protein_g=self.protein_g,
            carbs_g=self.carbs_g,
            fat_g=self.fat_g,
        )


@dataclass(frozen=True)
class FoodRecord:
    """A user's custom food, optionally linked to a Fitbit food."""

    id: int
    owner_id: UUID
    name: str
    amount: float
    unit_id: int
    nutrients: NutrientProfile
    confidence: Confidence
    notes: str | None
    description: str | None
    keywords: tuple[str, ...]
    fitbit_food_id: int | None
    created_at: datetime


@dataclass(frozen=True)
class FoodLogEntry:
    """One logged serving of a food record."""

    id: int
    owner_id: UUID
    food_record_id: int
    meal_type: MealType
    amount: float
    unit_id: int
    log_date: date
    log_time: time | None
    fitbit_log_id: int | None
    logged_at: datetime | None = None


@dataclass(frozen=True)
class MatchCandidate:
    """A stored food that may be reused for a new analysis."""

    record: FoodRecord
    match_ratio: float
    last_logged_at: datetime


@dataclass(frozen=True)
class FoodLogResult:
    """Outcome of a successful log, edit or reuse."""

    food_log_id: int
    fitbit_food_id: int | None
    fitbit_log_id: int | None
    reused_food: bool
    dry_run: bool = False
