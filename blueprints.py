"""
Blueprint models and expansion for the simple launch path.

A blueprint is one budget + one audience description + one creative. Expansion turns
it into value props x audiences; today that is always 1 x 1, but the two extractors
below are module-level so they can be swapped without touching expand_blueprint.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Budget(_Frozen):
    amount: float
    type: Literal["DAILY", "LIFETIME"] = "DAILY"


class AgeRange(_Frozen):
    min: int = 18
    max: int = 65


class TargetAudience(_Frozen):
    age: AgeRange = Field(default_factory=AgeRange)
    locations: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)


class Creative(BaseModel):
    # Extra fields ride along untouched so variants never drop them.
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    headline: str = ""
    description: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    call_to_action: str = Field(default="Learn More", alias="callToAction")
    link_url: Optional[str] = Field(default=None, alias="linkUrl")


class BlueprintConfig(_Frozen):
    budget: float = 0
    duration: Optional[int] = None
    target_audience: Optional[TargetAudience] = Field(default=None, alias="targetAudience")
    creative: Optional[Creative] = None


class Blueprint(_Frozen):
    id: str = ""
    name: str = ""
    platform: str = ""
    config: Optional[BlueprintConfig] = None

    @field_validator("platform", mode="before")
    @classmethod
    def _upper_platform(cls, v):
        return str(v).strip().upper() if v is not None else ""


class Audience(_Frozen):
    name: str
    age_min: int = Field(alias="ageMin")
    age_max: int = Field(alias="ageMax")
    locations: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)


class ExpansionParams(_Frozen):
    value_props: List[str] = Field(alias="valueProps")
    audiences: List[Audience]
    placements: List[str] = Field(default_factory=list)
    budget: Budget
    creative: Creative

    @model_validator(mode="after")
    def _check_cross_product(self) -> "ExpansionParams":
        if not self.value_props:
            raise ValueError("Expansion needs at least one value prop.")
        if not self.audiences:
            raise ValueError("Expansion needs at least one audience.")
        return self


# -----------------------------
# Expansion
# -----------------------------

def extract_value_props(config: BlueprintConfig) -> List[str]:
    # One value prop per blueprint for now: the headline.
    return [config.creative.headline]


def build_audiences(config: BlueprintConfig) -> List[Audience]:
    target = config.target_audience or TargetAudience()
    return [
        Audience(
            name="Primary Audience",
            age_min=target.age.min,
            age_max=target.age.max,
            locations=list(target.locations),
            interests=list(target.interests),
        )
    ]


def expand_blueprint(config: BlueprintConfig) -> ExpansionParams:
    """Deterministic, no I/O."""
    return ExpansionParams(
        value_props=extract_value_props(config),
        audiences=build_audiences(config),
        budget=Budget(amount=config.budget, type="DAILY"),
        creative=config.creative,
    )


def create_creative_variant(base: Creative, value_prop: str) -> Creative:
    """Prefix headline/description with the value prop; every other field is kept as-is."""
    return base.model_copy(
        update={
            "headline": f"{value_prop} - {base.headline}",
            "description": f"{value_prop}: {base.description}",
        }
    )


def calculate_expansion_size(params: ExpansionParams) -> Dict[str, int]:
    v = len(params.value_props)
    adsets = v * len(params.audiences)
    return {"campaigns": v, "adsets": adsets, "ads": adsets}


def load_blueprint(data: Dict[str, Any]) -> Blueprint:
    return Blueprint.model_validate(data)
