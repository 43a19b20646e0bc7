"""
Shared plumbing for invoice-style billing APIs (DigitalOcean, Linode, Vultr,
MongoDB Atlas). These report month-to-date or per-invoice totals rather than
daily costs, so native_daily is False and BaseAdapter.synthesize_daily_data
spreads their totals across the requested range.
"""

from abc import abstractmethod
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx
import structlog
import tenacity

from spendsync.core.config import get_settings
from spendsync.core.exceptions import AuthorizationError, ProviderAPIError
from spendsync.schemas.costs import CostSnapshotDraft
from spendsync.services.adapters.base import BaseAdapter
from spendsync.services.credentials.resolver import LiveCredentials

logger = structlog.get_logger()


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


http_retry = tenacity.retry(
    retry=tenacity.retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
    before_sleep=tenacity.before_sleep_log(logger, "warning"),
)


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ProviderAPIError(f"Malformed amount in billing response: {value!r}") from e


def parse_day(value: str) -> date:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()


def previous_month(d: date) -> date:
    """First day of the calendar month before `d`."""
    return (d.replace(day=1) - timedelta(days=1)).replace(day=1)


class InvoiceAdapter(BaseAdapter):
    native_daily = False
    base_url: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self.settings = get_settings()

    def _client_kwargs(self, credentials: LiveCredentials) -> Dict[str, Any]:
        """Per-provider auth (headers or httpx auth object)."""
        return {"headers": {"Authorization": f"Bearer {credentials['api_token']}"}}

    def _client(self, credentials: LiveCredentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
            **self._client_kwargs(credentials),
        )

    @http_retry
    async def _get_json(self, client: httpx.AsyncClient, path: str, **params) -> Dict[str, Any]:
        response = await client.get(path, params=params or None)
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableStatus(response)
        if response.status_code in (401, 403):
            raise AuthorizationError(
                f"{self.display_name} rejected the API credentials (HTTP {response.status_code}).",
                hint="Generate a new read-only API token and update the connection.",
            )
        if response.status_code >= 400:
            raise ProviderAPIError(
                f"{self.display_name} API returned HTTP {response.status_code} for {path}",
                details={"status": response.status_code},
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(f"{self.display_name} API returned a non-JSON body for {path}") from e

    async def fetch_cost_data(self, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        try:
            async with self._client(credentials) as client:
                return await self._fetch(client, credentials, start_date, end_date)
        except _RetryableStatus as e:
            logger.error("invoice_api_unavailable", provider=self.provider_id, status=e.response.status_code)
            raise ProviderAPIError(
                f"{self.display_name} API unavailable (HTTP {e.response.status_code}).",
                details={"status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error("invoice_api_unreachable", provider=self.provider_id, error=str(e))
            raise ProviderAPIError(f"{self.display_name} API unreachable: {type(e).__name__}") from e
        except (KeyError, TypeError) as e:
            raise ProviderAPIError(f"Unexpected {self.display_name} billing response shape: missing {e}") from e

    @abstractmethod
    async def _fetch(self, client: httpx.AsyncClient, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        pass
