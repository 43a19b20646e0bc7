from datetime import date
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class AnomalyOut(BaseModel):
    account_id: UUID
    provider_id: str
    account_alias: str
    service_name: str
    date: date
    baseline_cost: Decimal
    current_cost: Decimal
    variance_percent: float
    is_increase: bool
    severity: Literal["low", "medium", "high", "critical"]
    message: str
