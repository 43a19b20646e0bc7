"""
Normalized cost schemas shared by adapters, the cache and the sync orchestrator.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DailyCost(BaseModel):
    """One day of cost. service=None is the account-wide total for that day."""
    date: date
    cost: Decimal
    service: Optional[str] = None
    estimated: bool = Field(False, description="Spread from an invoice total, not reported per day")


class ServiceCost(BaseModel):
    name: str
    cost: Decimal
    change_percent: Optional[float] = None


class PeriodHint(BaseModel):
    """Sub-period amount reported by invoice-style providers (e.g. one invoice line)."""
    start: date
    end: date
    amount: Decimal


class UsageMetric(BaseModel):
    service: str
    metric: str
    quantity: Decimal
    unit: Optional[str] = None


class CostSnapshotDraft(BaseModel):
    """Provider-agnostic result of one fetch_cost_data call."""
    provider_id: str
    start_date: date
    end_date: date
    currency: str = "USD"
    current_period_total: Decimal = Decimal("0")
    prior_period_total: Optional[Decimal] = None
    daily: List[DailyCost] = Field(default_factory=list)
    services: List[ServiceCost] = Field(default_factory=list)
    credits: Decimal = Decimal("0")
    savings: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    usage_metrics: List[UsageMetric] = Field(default_factory=list)
    period_hints: List[PeriodHint] = Field(default_factory=list)

    @property
    def has_daily_granularity(self) -> bool:
        return bool(self.daily)


class SnapshotValues(BaseModel):
    """Enhanced monthly values ready to be written as a CostSnapshot."""
    month: int
    year: int
    current_month_cost: Decimal
    last_month_cost: Decimal
    forecast_cost: Decimal
    forecast_confidence: Literal["low", "medium", "high"]
    credits: Decimal = Decimal("0")
    savings: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    currency: str = "USD"
    services: List[ServiceCost] = Field(default_factory=list)
    usage_metrics: List[UsageMetric] = Field(default_factory=list)


class AccountSyncResult(BaseModel):
    account_id: UUID
    provider_id: str
    alias: str
    month: int
    year: int
    current_month_cost: Decimal
    last_month_cost: Decimal
    forecast_cost: Decimal
    forecast_confidence: str
    daily_points: int
    from_cache: bool
    synced_at: datetime


class SyncError(BaseModel):
    account_id: UUID
    provider_id: str
    error: str
    code: str = "internal_error"
    hint: Optional[str] = None
    retryable: bool = False


class BatchSyncResult(BaseModel):
    status: Literal["success", "partial", "failure"]
    message: str
    results: List[AccountSyncResult] = Field(default_factory=list)
    errors: List[SyncError] = Field(default_factory=list)

    @classmethod
    def from_outcomes(cls, results: List[AccountSyncResult], errors: List[SyncError]) -> "BatchSyncResult":
        total = len(results) + len(errors)
        if total == 0:
            return cls(status="success", message="No active accounts to sync")
        if not errors:
            return cls(status="success", message=f"Synced {total} account(s)", results=results)
        if not results:
            return cls(status="failure", message=f"All {total} account(s) failed to sync", errors=errors)
        return cls(
            status="partial",
            message=f"Synced {len(results)} of {total} account(s); {len(errors)} failed",
            results=results,
            errors=errors,
        )


class SyncRequest(BaseModel):
    account_id: Optional[UUID] = None
    provider_id: Optional[str] = None
    force: bool = False
