"""
AWS Adapter (Native Async)

- Role exchange: STS AssumeRole with the customer's external id, one-hour sessions.
- Costs: Cost Explorer GetCostAndUsage, daily, grouped by SERVICE, paged via NextPageToken.

Leverages aioboto3 for non-blocking I/O.
"""

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aioboto3
import structlog
import tenacity
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from spendsync.core.config import get_settings
from spendsync.core.exceptions import AuthorizationError, CredentialError, ProviderAPIError
from spendsync.schemas.costs import CostSnapshotDraft, DailyCost, ServiceCost, UsageMetric
from spendsync.services.adapters.base import BaseAdapter
from spendsync.services.credentials.resolver import LiveCredentials, build_credentials

logger = structlog.get_logger()

# Socket timeouts for every AWS API call
BOTO_CONFIG = BotoConfig(
    read_timeout=30,
    connect_timeout=10,
    retries={"max_attempts": 3, "mode": "adaptive"}
)

# Cost Explorer is a global endpoint served from us-east-1
COST_EXPLORER_REGION = "us-east-1"
MAX_COST_EXPLORER_PAGES = 300

STS_REJECTION_HINTS = {
    "AccessDenied": (
        "Verify the CloudFormation stack is deployed, the role ARN is correct, the external ID "
        "matches the one in the role's trust policy, and the trust policy allows this service to assume the role."
    ),
    "InvalidClientTokenId": "The server's own AWS credentials are invalid. Contact support.",
    "SignatureDoesNotMatch": "The server's own AWS credentials are invalid. Contact support.",
    "ExpiredToken": "The server's own AWS session has expired. Contact support.",
    "ValidationError": "The role ARN or external ID is malformed. Re-run the connection setup.",
    "MalformedPolicyDocument": "The role's trust policy is malformed. Redeploy the CloudFormation stack.",
}
STS_TRANSIENT_CODES = {"Throttling", "ThrottlingException", "RequestLimitExceeded", "ServiceUnavailable", "InternalFailure", "RegionDisabledException"}

CREDIT_RECORD_TYPES = {"Credit", "Refund"}
SAVINGS_RECORD_TYPES = {"SavingsPlanNegation", "DiscountedUsage", "BundledDiscount", "Discount"}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") in STS_TRANSIENT_CODES
    return False


aws_retry = tenacity.retry(
    retry=tenacity.retry_if_exception(_is_transient),
    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
    before_sleep=tenacity.before_sleep_log(logger, "warning"),
)


def _previous_month_start(d: date) -> date:
    return (d.replace(day=1) - timedelta(days=1)).replace(day=1)


class AWSAdapter(BaseAdapter):
    provider_id = "aws"
    display_name = "Amazon Web Services"
    aliases = ("amazon",)
    required_fields = ("access_key_id", "secret_access_key")
    native_daily = True
    supports_role_exchange = True

    def __init__(self):
        self.settings = get_settings()
        self.session = aioboto3.Session()

    async def exchange_role_credentials(
        self,
        role_arn: str,
        external_id: str,
        session_name: str,
        duration_seconds: int,
    ) -> LiveCredentials:
        """Get temporary credentials via STS AssumeRole (Native Async)."""
        try:
            response = await self._assume_role(role_arn, external_id, session_name, duration_seconds)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("sts_assume_role_failed", error_code=code, role_arn=role_arn)
            if code in STS_TRANSIENT_CODES:
                raise CredentialError(
                    "AWS STS is temporarily unavailable.",
                    details={"aws_error_code": code},
                    hint="Retry the sync in a few minutes.",
                ) from e
            raise AuthorizationError(
                f"AWS rejected the role assumption ({code}).",
                details={"aws_error_code": code},
                hint=STS_REJECTION_HINTS.get(code, STS_REJECTION_HINTS["AccessDenied"]),
            ) from e
        except (NoCredentialsError, PartialCredentialsError) as e:
            logger.error("sts_server_credentials_missing", error=str(e))
            raise AuthorizationError(
                "Server AWS credentials are not configured.",
                hint="Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY for the service principal.",
            ) from e
        except BotoCoreError as e:
            logger.error("sts_assume_role_transient_failure", error=str(e))
            raise CredentialError(
                "Could not reach AWS STS.",
                hint="Retry the sync in a few minutes.",
            ) from e

        creds = response["Credentials"]
        logger.info("sts_assume_role_success", expires_at=str(creds["Expiration"]))
        return build_credentials(
            self.provider_id,
            {
                "access_key_id": creds["AccessKeyId"],
                "secret_access_key": creds["SecretAccessKey"],
                "session_token": creds["SessionToken"],
            },
            expires_at=creds["Expiration"],
            temporary=True,
        )

    @aws_retry
    async def _assume_role(self, role_arn: str, external_id: str, session_name: str, duration_seconds: int) -> Dict[str, Any]:
        async with self.session.client(
            "sts",
            region_name=self.settings.AWS_DEFAULT_REGION,
            endpoint_url=self.settings.AWS_ENDPOINT_URL,
            aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY,
            config=BOTO_CONFIG,
        ) as sts_client:
            return await sts_client.assume_role(
                RoleArn=role_arn,
                RoleSessionName=session_name[:64],
                ExternalId=external_id,
                DurationSeconds=duration_seconds,
            )

    async def fetch_cost_data(self, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        """
        Fetch daily costs for start..end plus the previous calendar month so the
        prior-period total comes from the same query.
        """
        query_start = min(start_date, _previous_month_start(end_date))
        prior_start = _previous_month_start(end_date)
        prior_end = end_date.replace(day=1) - timedelta(days=1)

        try:
            async with self.session.client(
                "ce",
                region_name=COST_EXPLORER_REGION,
                endpoint_url=self.settings.AWS_ENDPOINT_URL,
                aws_access_key_id=credentials["access_key_id"],
                aws_secret_access_key=credentials["secret_access_key"],
                aws_session_token=credentials.get("session_token"),
                config=BOTO_CONFIG,
            ) as client:
                by_service = await self._get_cost_and_usage(
                    client, query_start, end_date, "DAILY", {"Type": "DIMENSION", "Key": "SERVICE"}
                )
                by_record_type = await self._get_cost_and_usage(
                    client, end_date.replace(day=1), end_date, "MONTHLY", {"Type": "DIMENSION", "Key": "RECORD_TYPE"}
                )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("aws_cost_fetch_failed", error_code=code)
            raise ProviderAPIError(f"AWS Cost Explorer request failed: {e}", details={"aws_error_code": code}) from e
        except BotoCoreError as e:
            logger.error("aws_cost_fetch_failed", error=str(e))
            raise ProviderAPIError(f"AWS Cost Explorer unreachable: {e}") from e

        daily: List[DailyCost] = []
        service_totals: Dict[str, Decimal] = defaultdict(Decimal)
        current_total = Decimal("0")
        prior_total = Decimal("0")

        usage_totals: Dict[str, Decimal] = defaultdict(Decimal)
        usage_units: Dict[str, Optional[str]] = {}

        for day, service, amount, usage in by_service:
            if prior_start <= day <= prior_end:
                prior_total += amount
            if start_date <= day <= end_date:
                daily.append(DailyCost(date=day, cost=amount, service=service))
                current_total += amount
                service_totals[service] += amount
                if usage:
                    usage_totals[service] += Decimal(usage["Amount"])
                    # "N/A" means the service mixes units
                    unit = usage.get("Unit")
                    usage_units[service] = None if unit in (None, "N/A") else unit

        credits = savings = tax = Decimal("0")
        for _, record_type, amount, _ in by_record_type:
            if record_type in CREDIT_RECORD_TYPES:
                credits += abs(amount)
            elif record_type in SAVINGS_RECORD_TYPES:
                savings += abs(amount)
            elif record_type == "Tax":
                tax += amount

        services = [
            ServiceCost(name=name, cost=cost)
            for name, cost in sorted(service_totals.items(), key=lambda kv: kv[1], reverse=True)
        ]
        usage_metrics = [
            UsageMetric(service=name, metric="UsageQuantity", quantity=quantity, unit=usage_units.get(name))
            for name, quantity in sorted(usage_totals.items())
            if quantity
        ]

        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=current_total,
            prior_period_total=prior_total if any(prior_start <= d <= prior_end for d, _, _, _ in by_service) else None,
            daily=daily,
            services=services,
            credits=credits,
            savings=savings,
            tax=tax,
            usage_metrics=usage_metrics,
        )

    @aws_retry
    async def _get_cost_and_usage(self, client, start: date, end: date, granularity: str, group_by: Dict[str, str]) -> List[tuple]:
        """Returns (day, group_key, amount, usage) rows. The API's End date is exclusive."""
        request_params = {
            "TimePeriod": {
                "Start": start.isoformat(),
                "End": (end + timedelta(days=1)).isoformat(),
            },
            "Granularity": granularity,
            "Metrics": ["UnblendedCost", "UsageQuantity"],
            "GroupBy": [group_by],
        }

        rows = []
        pages_fetched = 0
        while pages_fetched < MAX_COST_EXPLORER_PAGES:
            response = await client.get_cost_and_usage(**request_params)
            for result in response.get("ResultsByTime", []):
                day = date.fromisoformat(result["TimePeriod"]["Start"])
                for group in result.get("Groups", []):
                    amount = Decimal(group["Metrics"]["UnblendedCost"]["Amount"])
                    rows.append((day, group["Keys"][0], amount, group["Metrics"].get("UsageQuantity")))

            pages_fetched += 1
            if "NextPageToken" in response:
                request_params["NextPageToken"] = response["NextPageToken"]
            else:
                break

        if pages_fetched >= MAX_COST_EXPLORER_PAGES:
            logger.warning("aws_cost_explorer_page_limit", pages=pages_fetched)
        return rows
