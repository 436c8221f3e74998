"""Validated inputs for the food log entry points."""

import re
from collections.abc import Mapping
from datetime import date, time
from typing import Annotated, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from food_sync.domain.errors import RequestValidationError
from food_sync.domain.foods import Confidence, MacroProfile, MealType, NutrientProfile

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")

MAX_KEYWORDS = 20

Keyword = Annotated[str, Field(max_length=100)]


def normalize_keywords(keywords: list[str]) -> list[str]:
    """Lowercase, trim and de-duplicate keywords, keeping order."""
    normalized: list[str] = []
    for keyword in keywords:
        value = keyword.strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def _parse_date(value: object) -> object:
    if isinstance(value, str):
        if not _DATE_PATTERN.match(value):
            raise ValueError("Invalid date format. Use YYYY-MM-DD")
        return date.fromisoformat(value)
    return value


def _parse_time(value: object) -> object:
    if isinstance(value, str):
        if not _TIME_PATTERN.match(value):
            raise ValueError("Invalid time format. Use HH:mm or HH:mm:ss")
        parts = [int(part) for part in value.split(":")]
        hours, minutes = parts[0], parts[1]
        seconds = parts[2] if len(parts) > 2 else 0  # noqa: PLR2004
        return time(hours, minutes, seconds)
    return value


LogDate = Annotated[date, BeforeValidator(_parse_date)]
LogTime = Annotated[time, BeforeValidator(_parse_time)]


class FoodAnalysis(BaseModel):
    """Nutrition estimate for a food, as produced by the analysis step."""

    food_name: str = Field(min_length=1, max_length=500)
    amount: float = Field(gt=0)
    unit_id: int = Field(gt=0)
    calories: float = Field(ge=0)
    protein_g: float = Field(ge=0)
    carbs_g: float = Field(ge=0)
    fat_g: float = Field(ge=0)
    fiber_g: float = Field(ge=0)
    sodium_mg: float = Field(ge=0)
    saturated_fat_g: float | None = Field(default=None, ge=0)
    trans_fat_g: float | None = Field(default=None, ge=0)
    sugars_g: float | None = Field(default=None, ge=0)
    calories_from_fat: float | None = Field(default=None, ge=0)
    confidence: Confidence
    notes: str = Field(default="", max_length=2000)
    description: str = Field(default="", max_length=2000)
    keywords: list[Keyword] = Field(default_factory=list, max_length=MAX_KEYWORDS)

    @field_validator("keywords")
    @classmethod
    def lowercase_keywords(cls, value: list[str]) -> list[str]:
        return normalize_keywords(value)

    def nutrients(self) -> NutrientProfile:
        """Return the nutrient profile with calories rounded to whole kcal."""
        return NutrientProfile(
            calories=round(self.calories),
            protein_g=self.protein_g,
            carbs_g=self.carbs_g,
            fat_g=self.fat_g,
            fiber_g=self.fiber_g,
            sodium_mg=self.sodium_mg,
            saturated_fat_g=self.saturated_fat_g,
            trans_fat_g=self.trans_fat_g,
            sugars_g=self.sugars_g,
            calories_from_fat=self.calories_from_fat,
        )


class NewFoodLogRequest(FoodAnalysis):
    """Log a freshly analyzed food."""

    model_config = ConfigDict(populate_by_name=True)

    meal_type_id: MealType | None = Field(
        default=None, validation_alias=AliasChoices("meal_type_id", "mealTypeId")
    )
    log_date: LogDate | None = Field(default=None, alias="date")
    log_time: LogTime | None = Field(default=None, alias="time")


class ReuseFoodLogRequest(BaseModel):
    """Log an existing food record again."""

    model_config = ConfigDict(populate_by_name=True)

    food_record_id: int = Field(
        gt=0, validation_alias=AliasChoices("food_record_id", "reuseCustomFoodId")
    )
    meal_type_id: MealType | None = Field(
        default=None, validation_alias=AliasChoices("meal_type_id", "mealTypeId")
    )
    amount: float = Field(gt=0)
    unit_id: int = Field(gt=0)
    log_date: LogDate | None = Field(default=None, alias="date")
    log_time: LogTime | None = Field(default=None, alias="time")
    confidence: Confidence | None = None
    notes: str | None = Field(default=None, max_length=2000)
    description: str | None = Field(default=None, max_length=2000)
    keywords: list[Keyword] | None = Field(default=None, max_length=MAX_KEYWORDS)

    @field_validator("keywords")
    @classmethod
    def lowercase_keywords(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else normalize_keywords(value)

    def metadata_updates(self) -> dict[str, object]:
        """Return the record metadata fields supplied with this request."""
        updates: dict[str, object] = {}
        if self.confidence is not None:
            updates["confidence"] = self.confidence
        if self.notes is not None:
            updates["notes"] = self.notes or None
        if self.description is not None:
            updates["description"] = self.description or None
        if self.keywords is not None:
            updates["keywords"] = tuple(self.keywords)
        return updates


class EditFoodLogRequest(FoodAnalysis):
    """Replace the food, meal slot or timing of an existing entry."""

    model_config = ConfigDict(populate_by_name=True)

    entry_id: int = Field(gt=0, validation_alias=AliasChoices("entry_id", "entryId"))
    meal_type_id: MealType = Field(
        validation_alias=AliasChoices("meal_type_id", "mealTypeId")
    )
    log_date: LogDate = Field(alias="date")
    log_time: LogTime = Field(alias="time")


class MatchQuery(BaseModel):
    """Keywords and macros of a candidate food."""

    keywords: list[Keyword] = Field(default_factory=list, max_length=MAX_KEYWORDS)
    calories: float = Field(ge=0)
    protein_g: float = Field(ge=0)
    carbs_g: float = Field(ge=0)
    fat_g: float = Field(ge=0)

    @field_validator("keywords")
    @classmethod
    def lowercase_keywords(cls, value: list[str]) -> list[str]:
        return normalize_keywords(value)

    def macros(self) -> MacroProfile:
        """Return the candidate macros."""
        return MacroProfile(
            calories=self.calories,
            protein_g=self.protein_g,
            carbs_g=self.carbs_g,
            fat_g=self.fat_g,
        )


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_request(model: type[ModelT], payload: Mapping[str, object]) -> ModelT:
    """Validate caller input, raising a VALIDATION_ERROR on failure."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid {field}: {first.get('msg')}" if field else None
        raise RequestValidationError(message, details={"errors": errors}) from exc
