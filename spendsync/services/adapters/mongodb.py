from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict

import httpx

from spendsync.schemas.costs import CostSnapshotDraft, PeriodHint, ServiceCost
from spendsync.services.adapters.invoice import InvoiceAdapter, parse_day, previous_month, to_decimal
from spendsync.services.credentials.resolver import LiveCredentials

ATLAS_ACCEPT = "application/vnd.atlas.2023-01-01+json"


def _cents(value) -> Decimal:
    return to_decimal(value) / 100


class MongoDBAtlasAdapter(InvoiceAdapter):
    """MongoDB Atlas billing via the Admin API (HTTP digest auth with programmatic API keys)."""
    provider_id = "mongodb"
    display_name = "MongoDB Atlas"
    aliases = ("atlas", "mongodbatlas")
    required_fields = ("public_key", "private_key", "org_id")
    base_url = "https://cloud.mongodb.com"

    def _client_kwargs(self, credentials: LiveCredentials) -> Dict[str, Any]:
        return {
            "auth": httpx.DigestAuth(credentials["public_key"], credentials["private_key"]),
            "headers": {"Accept": ATLAS_ACCEPT},
        }

    async def _fetch(self, client: httpx.AsyncClient, credentials: LiveCredentials, start_date: date, end_date: date) -> CostSnapshotDraft:
        org = credentials["org_id"]
        pending = await self._get_json(client, f"/api/atlas/v2/orgs/{org}/invoices/pending")
        history = await self._get_json(client, f"/api/atlas/v2/orgs/{org}/invoices", itemsPerPage=12)

        hints = []
        by_sku = defaultdict(Decimal)
        for item in pending.get("lineItems", []):
            amount = _cents(item.get("totalPriceCents"))
            by_sku[item.get("sku") or "OTHER"] += amount
            if item.get("startDate") and item.get("endDate"):
                hints.append(PeriodHint(
                    start=parse_day(item["startDate"]),
                    end=parse_day(item["endDate"]),
                    amount=amount,
                ))

        prior_start = previous_month(end_date)
        prior_total = None
        for invoice in history.get("results", []):
            if invoice.get("startDate") and parse_day(invoice["startDate"]).replace(day=1) == prior_start:
                prior_total = _cents(invoice.get("subtotalCents"))
                break

        return CostSnapshotDraft(
            provider_id=self.provider_id,
            start_date=start_date,
            end_date=end_date,
            current_period_total=_cents(pending.get("subtotalCents")),
            prior_period_total=prior_total,
            services=[
                ServiceCost(name=name, cost=cost)
                for name, cost in sorted(by_sku.items(), key=lambda kv: kv[1], reverse=True)
            ],
            credits=abs(_cents(pending.get("creditsCents"))),
            period_hints=hints,
        )
