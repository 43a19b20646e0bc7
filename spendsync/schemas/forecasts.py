from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ForecastMonth(BaseModel):
    month: str  # YYYY-MM
    forecast: Decimal
    confidence_low: Decimal
    confidence_high: Decimal


class BaseForecast(BaseModel):
    months: List[ForecastMonth] = Field(default_factory=list)
    confidence: Literal["low", "medium", "high"] = "low"
    data_points: int = 0
    method: str = "insufficient_data"
    # Share of trailing spend per service, used by removal adjustments
    service_shares: Dict[str, float] = Field(default_factory=dict)


class AdjustmentKind(str, Enum):
    PERCENT = "percent"  # multiply selected months by (1 + value/100)
    FIXED = "fixed"      # add value (negative to subtract)
    GROWTH = "growth"    # compound value% per month
    REMOVE = "remove"    # drop a cost category (service share, or a fixed monthly amount)


class ScenarioAdjustment(BaseModel):
    kind: AdjustmentKind
    value: Decimal = Decimal("0")
    months: List[int] = Field(default_factory=list, description="1-based future month indices; empty means all")
    service: Optional[str] = None
    label: Optional[str] = None

    @field_validator("months")
    @classmethod
    def months_in_horizon(cls, v: List[int]) -> List[int]:
        if any(m < 1 or m > 12 for m in v):
            raise ValueError("months must be between 1 and 12")
        return sorted(set(v))

    @model_validator(mode="after")
    def removal_has_target(self) -> "ScenarioAdjustment":
        if self.kind == AdjustmentKind.REMOVE and not self.service and self.value <= 0:
            raise ValueError("remove adjustments need a service or a positive monthly amount")
        return self


class ScenarioCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    adjustments: List[ScenarioAdjustment] = Field(default_factory=list)
    forecast_months: int = Field(6, ge=1, le=12)
    provider_id: Optional[str] = None
    account_id: Optional[UUID] = None


class ScenarioUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    adjustments: Optional[List[ScenarioAdjustment]] = None
    forecast_months: Optional[int] = Field(None, ge=1, le=12)
    provider_id: Optional[str] = None
    account_id: Optional[UUID] = None


class ScenarioPreview(BaseModel):
    name: str = "Preview"
    adjustments: List[ScenarioAdjustment] = Field(default_factory=list)
    forecast_months: int = Field(6, ge=1, le=12)
    provider_id: Optional[str] = None
    account_id: Optional[UUID] = None


class ScenarioOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    adjustments: List[ScenarioAdjustment]
    forecast_months: int
    provider_filter: Optional[str] = None
    account_filter: Optional[UUID] = None
    last_computed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScenarioComputation(BaseModel):
    scenario: Optional[ScenarioOut] = None
    base_forecast: List[ForecastMonth]
    scenario_forecast: List[ForecastMonth]
    narrative: str
    confidence: Literal["low", "medium", "high"] = "low"
