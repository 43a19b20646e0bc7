from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Tuple

import structlog
import tenacity
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity.aio import ClientSecretCredential
from azure.mgmt.costmanagement.aio import CostManagementClient
from azure.mgmt.costmanagement.models import (
    QueryAggregation,
    QueryDataset,
    QueryDefinition,
    QueryGrouping,
    QueryTimePeriod,
)

from spendsync.core.exceptions import AuthorizationError, ProviderAPIError
from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, ServiceCost
from spendsync.services.adapters.base import BaseAdapter
from spendsync.services.credentials.resolver import LiveCredentials

logger = structlog.get_logger()

# Retry decorator for Azure transient failures
azure_retry = tenacity.retry(
    retry=tenacity.retry_if_exception_type((ServiceRequestError, ServiceResponseError)),
    wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
    before_sleep=tenacity.before_sleep_log(logger, "warning")
)


def _parse_usage_date(raw: Any) -> date:
    """UsageDate arrives as 20240115 (int) or an ISO timestamp string."""
    text = str(raw).strip()
    if text.isdigit() and len(text) == 8:
        return datetime.strptime(text, "%Y%m%d").date()
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


class AzureAdapter(BaseAdapter):
    """
    Azure Cost Management adapter using the official SDK (service principal auth).
    """
    provider_id = "azure"
    display_name = "Microsoft Azure"
    aliases = ("microsoft",)
    required_fields = ("tenant_id", "client_id", "client_secret", "subscription_id")
    native_daily = True

    async def fetch_cost_data(self, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        prior_start = (end_date.replace(day=1) - timedelta(days=1)).replace(day=1)
        prior_end = end_date.replace(day=1) - timedelta(days=1)
        query_start = min(start_date, prior_start)

        try:
            rows = await self._query_daily_costs(credentials, query_start, end_date)
        except ClientAuthenticationError as e:
            logger.error("azure_auth_failed", error=str(e))
            raise AuthorizationError(
                "Azure rejected the service principal credentials.",
                hint="Verify the tenant ID, client ID and client secret, and that the secret has not expired.",
            ) from e
        except HttpResponseError as e:
            logger.error("azure_cost_fetch_failed", status=e.status_code, error=str(e))
            raise ProviderAPIError(f"Azure cost query failed: {e.message}", details={"status": e.status_code}) from e
        except (ServiceRequestError, ServiceResponseError) as e:
            logger.error("azure_cost_fetch_unreachable", error=str(e))
            raise ProviderAPIError(f"Azure Cost Management unreachable: {e}") from e

        daily: List[DailyCost] = []
        service_totals: Dict[str, Decimal] = defaultdict(Decimal)
        current_total = Decimal("0")
        prior_total = Decimal("0")
        saw_prior = False

        for day, service, amount in rows:
            if prior_start <= day <= prior_end:
                prior_total += amount
                saw_prior = True
            if start_date <= day <= end_date:
                daily.append(DailyCost(date=day, cost=amount, service=service))
                current_total += amount
                service_totals[service] += amount

        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=current_total,
            prior_period_total=prior_total if saw_prior else None,
            daily=daily,
            services=[
                ServiceCost(name=name, cost=cost)
                for name, cost in sorted(service_totals.items(), key=lambda kv: kv[1], reverse=True)
            ],
        )

    @azure_retry
    async def _query_daily_costs(self, credentials: LiveCredentials, start: date, end: date) -> List[Tuple[date, str, Decimal]]:
        scope = f"/subscriptions/{credentials['subscription_id']}"
        query_definition = QueryDefinition(
            type="ActualCost",
            timeframe="Custom",
            time_period=QueryTimePeriod(
                from_property=datetime.combine(start, time.min, tzinfo=timezone.utc),
                to=datetime.combine(end, time.max, tzinfo=timezone.utc),
            ),
            dataset=QueryDataset(
                granularity="Daily",
                aggregation={"totalCost": QueryAggregation(name="PreTaxCost", function="Sum")},
                grouping=[QueryGrouping(type="Dimension", name="ServiceName")],
            ),
        )

        async with ClientSecretCredential(
            tenant_id=credentials["tenant_id"],
            client_id=credentials["client_id"],
            client_secret=credentials["client_secret"],
        ) as credential:
            async with CostManagementClient(credential=credential) as client:
                response = await client.query.usage(scope=scope, parameters=query_definition)

        if not response or not response.rows:
            return []

        # Column order is not guaranteed; resolve by name
        columns = [c.name for c in (response.columns or [])]
        cost_idx = columns.index("PreTaxCost") if "PreTaxCost" in columns else 0
        date_idx = columns.index("UsageDate") if "UsageDate" in columns else 1
        service_idx = columns.index("ServiceName") if "ServiceName" in columns else 2

        return [
            (
                _parse_usage_date(row[date_idx]),
                str(row[service_idx] or "Other"),
                Decimal(str(row[cost_idx])),
            )
            for row in response.rows
        ]
