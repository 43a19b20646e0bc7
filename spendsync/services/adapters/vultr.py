from collections import defaultdict
from datetime import date
from decimal import Decimal

import httpx

from spendsync.schemas.costs import CostSnapshotDraft, PeriodHint, ServiceCost
from spendsync.services.credentials.resolver import LiveCredentials
from spendsync.services.adapters.invoice import InvoiceAdapter, parse_day, to_decimal


class VultrAdapter(InvoiceAdapter):
    """Vultr. Pending charges carry per-product date ranges, used as synthesis hints."""
    provider_id = "vultr"
    display_name = "Vultr"
    required_fields = ("api_token",)
    base_url = "https://api.vultr.com"

    async def _fetch(self, client: httpx.AsyncClient, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        account = await self._get_json(client, "/v2/account")
        pending = await self._get_json(client, "/v2/billing/pending-charges")
        invoices = await self._get_json(client, "/v2/billing/invoices", per_page=25)

        hints = []
        by_product = defaultdict(Decimal)
        for charge in pending.get("pending_charges", []):
            amount = to_decimal(charge.get("total"))
            by_product[charge.get("product") or charge.get("description") or "Other"] += amount
            if charge.get("start_date") and charge.get("end_date"):
                hints.append(PeriodHint(
                    start=parse_day(charge["start_date"]),
                    end=parse_day(charge["end_date"]),
                    amount=amount,
                ))

        current_month = end_date.replace(day=1)
        prior_total = None
        for invoice in invoices.get("billing_invoices", []):
            if parse_day(invoice["date"]).replace(day=1) == current_month:
                prior_total = abs(to_decimal(invoice.get("amount")))
                break

        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=to_decimal(account["account"].get("pending_charges")),
            prior_period_total=prior_total,
            services=[
                ServiceCost(name=name, cost=cost)
                for name, cost in sorted(by_product.items(), key=lambda kv: kv[1], reverse=True)
            ],
            period_hints=hints,
        )
