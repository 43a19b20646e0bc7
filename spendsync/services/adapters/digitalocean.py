from datetime import date

import httpx

from spendsync.schemas.costs import CostSnapshotDraft, ServiceCost
from spendsync.services.credentials.resolver import LiveCredentials
from spendsync.services.adapters.invoice import InvoiceAdapter, previous_month, to_decimal


class DigitalOceanAdapter(InvoiceAdapter):
    provider_id = "digitalocean"
    display_name = "DigitalOcean"
    aliases = ("do",)
    required_fields = ("api_token",)
    base_url = "https://api.digitalocean.com"

    async def _fetch(self, client: httpx.AsyncClient, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        balance = await self._get_json(client, "/v2/customers/my/balance")
        invoices = await self._get_json(client, "/v2/customers/my/invoices")

        prior_period = previous_month(end_date).strftime("%Y-%m")
        prior_total = None
        for invoice in invoices.get("invoices", []):
            if invoice.get("invoice_period") == prior_period:
                prior_total = to_decimal(invoice["amount"])
                break

        services = []
        tax = credits = to_decimal(0)
        preview = invoices.get("invoice_preview") or {}
        if preview.get("invoice_uuid"):
            summary = await self._get_json(client, f"/v2/customers/my/invoices/{preview['invoice_uuid']}/summary")
            for item in (summary.get("product_charges") or {}).get("items", []):
                services.append(ServiceCost(name=item["name"], cost=to_decimal(item["amount"])))
            tax = to_decimal((summary.get("taxes") or {}).get("amount"))
            credits = abs(to_decimal((summary.get("credits_and_adjustments") or {}).get("amount")))

        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=to_decimal(balance.get("month_to_date_usage")),
            prior_period_total=prior_total,
            services=sorted(services, key=lambda s: s.cost, reverse=True),
            credits=credits,
            tax=tax,
        )
