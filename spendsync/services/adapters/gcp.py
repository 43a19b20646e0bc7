import asyncio
import json
import re
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Tuple

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import bigquery
from google.oauth2 import service_account

from spendsync.core.exceptions import AuthorizationError, ConfigurationError, ProviderAPIError
from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, ServiceCost
from spendsync.services.adapters.base import BaseAdapter
from spendsync.services.credentials.resolver import LiveCredentials

logger = structlog.get_logger()

# project.dataset.table, as shown in the billing export settings
_TABLE_PATH = re.compile(r"^[A-Za-z0-9_\-]+\.[A-Za-z0-9_]+\.[A-Za-z0-9_]+$")


class GCPAdapter(BaseAdapter):
    """
    Google Cloud adapter reading the standard BigQuery billing export.

    The BigQuery client is synchronous, so queries run in a worker thread.
    """
    provider_id = "gcp"
    display_name = "Google Cloud"
    aliases = ("google", "googlecloud")
    required_fields = ("project_id", "service_account_key", "billing_table")
    native_daily = True

    def _get_bq_client(self, credentials: LiveCredentials) -> bigquery.Client:
        raw = credentials["service_account_key"]
        try:
            info = raw if isinstance(raw, dict) else json.loads(raw)
            sa_credentials = service_account.Credentials.from_service_account_info(info)
        except (ValueError, KeyError) as e:
            raise ConfigurationError(
                "The stored GCP service account key is not valid JSON key material.",
                hint="Upload the JSON key file generated for the billing service account.",
            ) from e
        return bigquery.Client(project=credentials["project_id"], credentials=sa_credentials)

    async def fetch_cost_data(self, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        table_path = str(credentials["billing_table"]).strip("`")
        if not _TABLE_PATH.match(table_path):
            raise ConfigurationError(
                f"Invalid billing export table: {table_path}",
                hint="Use the fully-qualified form project.dataset.table.",
            )

        prior_start = (end_date.replace(day=1) - timedelta(days=1)).replace(day=1)
        prior_end = end_date.replace(day=1) - timedelta(days=1)
        query_start = min(start_date, prior_start)

        client = self._get_bq_client(credentials)
        try:
            rows = await asyncio.to_thread(self._run_query, client, table_path, query_start, end_date)
        except gcp_exceptions.Forbidden as e:
            logger.error("gcp_bq_forbidden", table=table_path, error=str(e))
            raise AuthorizationError(
                "The service account cannot read the billing export table.",
                hint="Grant roles/bigquery.dataViewer and roles/bigquery.jobUser to the service account.",
            ) from e
        except gcp_exceptions.NotFound as e:
            raise ConfigurationError(
                f"Billing export table not found: {table_path}",
                hint="Enable the detailed billing export to BigQuery and check the table name.",
            ) from e
        except gcp_exceptions.GoogleAPIError as e:
            logger.error("gcp_bq_query_failed", table=table_path, error=str(e))
            raise ProviderAPIError(f"BigQuery billing query failed: {e}") from e
        finally:
            client.close()

        daily: List[DailyCost] = []
        service_totals: Dict[str, Decimal] = defaultdict(Decimal)
        current_total = prior_total = Decimal("0")
        saw_prior = False
        currency = "USD"

        for day, service, amount, row_currency in rows:
            currency = row_currency or currency
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
            currency=currency,
            current_period_total=current_total,
            prior_period_total=prior_total if saw_prior else None,
            daily=daily,
            services=[
                ServiceCost(name=name, cost=cost)
                for name, cost in sorted(service_totals.items(), key=lambda kv: kv[1], reverse=True)
            ],
        )

    @staticmethod
    def _run_query(client: bigquery.Client, table_path: str, start: date, end: date) -> List[Tuple[date, str, Decimal, Any]]:
        query = f"""
            SELECT
                DATE(usage_start_time) AS usage_day,
                service.description AS service,
                SUM(cost) + SUM(IFNULL((SELECT SUM(c.amount) FROM UNNEST(credits) c), 0)) AS cost,
                MAX(currency) AS currency
            FROM `{table_path}`
            WHERE DATE(usage_start_time) BETWEEN @start_date AND @end_date
            GROUP BY usage_day, service
            ORDER BY usage_day
        """
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter("start_date", "DATE", start),
                bigquery.ScalarQueryParameter("end_date", "DATE", end),
            ]
        )
        results = client.query(query, job_config=job_config).result()
        return [
            (row.usage_day, row.service or "Other", Decimal(str(row.cost or 0)), row.currency)
            for row in results
        ]
