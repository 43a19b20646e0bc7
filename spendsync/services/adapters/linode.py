from datetime import date

import httpx

from spendsync.schemas.costs import CostSnapshotDraft, ServiceCost
from spendsync.services.credentials.resolver import LiveCredentials
from spendsync.services.adapters.invoice import InvoiceAdapter, parse_day, to_decimal


class LinodeAdapter(InvoiceAdapter):
    """Linode (Akamai). Uninvoiced balance is the month-to-date spend."""
    provider_id = "linode"
    display_name = "Linode"
    aliases = ("akamai",)
    required_fields = ("api_token",)
    base_url = "https://api.linode.com"

    async def _fetch(self, client: httpx.AsyncClient, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        account = await self._get_json(client, "/v4/account")
        invoices = await self._get_json(client, "/v4/account/invoices", page_size=25)

        current_month = end_date.replace(day=1)
        prior_total = None
        prior_tax = to_decimal(0)
        # Linode issues the invoice for a month on the first day of the next one
        for invoice in invoices.get("data", []):
            if parse_day(invoice["date"]).replace(day=1) == current_month:
                prior_total = to_decimal(invoice.get("subtotal", invoice.get("total")))
                prior_tax = to_decimal(invoice.get("tax"))
                break

        current = to_decimal(account.get("balance_uninvoiced"))
        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=current,
            prior_period_total=prior_total,
            services=[ServiceCost(name="Linode services", cost=current)] if current > 0 else [],
            tax=prior_tax if prior_total is not None else to_decimal(0),
        )
