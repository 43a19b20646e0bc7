from datetime import date
from decimal import Decimal

import httpx
import pytest

from spendsync.core.exceptions import AuthorizationError, ProviderAPIError
from spendsync.services.adapters.digitalocean import DigitalOceanAdapter
from spendsync.services.adapters.linode import LinodeAdapter
from spendsync.services.adapters.mongodb import MongoDBAtlasAdapter
from spendsync.services.adapters.vultr import VultrAdapter
from spendsync.services.credentials.resolver import build_credentials

START, END = date(2026, 3, 1), date(2026, 3, 15)


def _transport(routes, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_digitalocean_maps_balance_invoices_and_summary():
    seen = []
    adapter = DigitalOceanAdapter(transport=_transport({
        "/v2/customers/my/balance": {"month_to_date_usage": "42.50"},
        "/v2/customers/my/invoices": {
            "invoice_preview": {"invoice_uuid": "preview-1"},
            "invoices": [
                {"invoice_period": "2026-02", "amount": "80.00"},
                {"invoice_period": "2026-01", "amount": "70.00"},
            ],
        },
        "/v2/customers/my/invoices/preview-1/summary": {
            "product_charges": {"items": [
                {"name": "Droplets", "amount": "30.00"},
                {"name": "Spaces", "amount": "12.50"},
            ]},
            "taxes": {"amount": "3.10"},
            "credits_and_adjustments": {"amount": "-5.00"},
        },
    }, seen))
    creds = build_credentials("digitalocean", {"api_token": "dop_v1_secret"})

    draft = await adapter.fetch_cost_data(creds, START, END)

    assert draft.current_period_total == Decimal("42.50")
    assert draft.prior_period_total == Decimal("80.00")
    assert [s.name for s in draft.services] == ["Droplets", "Spaces"]
    assert draft.tax == Decimal("3.10")
    assert draft.credits == Decimal("5.00")
    assert not draft.has_daily_granularity
    assert seen[0].headers["Authorization"] == "Bearer dop_v1_secret"


@pytest.mark.asyncio
async def test_linode_prior_total_from_invoice_issued_this_month():
    adapter = LinodeAdapter(transport=_transport({
        "/v4/account": {"balance_uninvoiced": 17.25},
        "/v4/account/invoices": {"data": [
            {"date": "2026-03-01T04:00:00", "subtotal": 55.0, "tax": 4.4, "total": 59.4},
            {"date": "2026-02-01T04:00:00", "subtotal": 50.0, "tax": 4.0, "total": 54.0},
        ]},
    }))
    creds = build_credentials("linode", {"api_token": "tok"})

    draft = await adapter.fetch_cost_data(creds, START, END)

    assert draft.current_period_total == Decimal("17.25")
    assert draft.prior_period_total == Decimal("55.0")
    assert draft.tax == Decimal("4.4")


@pytest.mark.asyncio
async def test_vultr_pending_charges_become_period_hints():
    adapter = VultrAdapter(transport=_transport({
        "/v2/account": {"account": {"pending_charges": 24.0}},
        "/v2/billing/pending-charges": {"pending_charges": [
            {"product": "Cloud Compute", "total": 20.0, "start_date": "2026-03-01T00:00:00+00:00", "end_date": "2026-03-10T00:00:00+00:00"},
            {"product": "Block Storage", "total": 4.0},
        ]},
        "/v2/billing/invoices": {"billing_invoices": [{"date": "2026-03-01T00:00:00+00:00", "amount": "-31.00"}]},
    }))
    creds = build_credentials("vultr", {"api_token": "tok"})

    draft = await adapter.fetch_cost_data(creds, START, END)

    assert draft.current_period_total == Decimal("24.0")
    assert draft.prior_period_total == Decimal("31.00")
    assert len(draft.period_hints) == 1
    assert draft.period_hints[0].end == date(2026, 3, 10)
    assert draft.services[0].name == "Cloud Compute"

    points = adapter.synthesize_daily_data(draft, START, END, today=END)
    assert sum(p.cost for p in points) == Decimal("20.00")


@pytest.mark.asyncio
async def test_mongodb_converts_cents_and_uses_org_from_credentials():
    seen = []
    adapter = MongoDBAtlasAdapter(transport=_transport({
        "/api/atlas/v2/orgs/org-1/invoices/pending": {
            "subtotalCents": 12345,
            "creditsCents": -500,
            "lineItems": [
                {"sku": "ATLAS_AWS_INSTANCE_M10", "totalPriceCents": 10000, "startDate": "2026-03-01T00:00:00Z", "endDate": "2026-03-02T00:00:00Z"},
                {"sku": "ATLAS_DATA_TRANSFER", "totalPriceCents": 2345},
            ],
        },
        "/api/atlas/v2/orgs/org-1/invoices": {"results": [
            {"startDate": "2026-02-01T00:00:00Z", "subtotalCents": 9900},
        ]},
    }, seen))
    creds = build_credentials("mongodb", {"public_key": "pub", "private_key": "priv", "org_id": "org-1"})

    draft = await adapter.fetch_cost_data(creds, START, END)

    assert draft.current_period_total == Decimal("123.45")
    assert draft.prior_period_total == Decimal("99")
    assert draft.credits == Decimal("5")
    assert draft.services[0].name == "ATLAS_AWS_INSTANCE_M10"
    assert seen[0].headers["Accept"] == "application/vnd.atlas.2023-01-01+json"


@pytest.mark.asyncio
async def test_rejected_token_is_authorization_error():
    adapter = DigitalOceanAdapter(transport=_transport({
        "/v2/customers/my/balance": httpx.Response(401, json={"id": "unauthorized"}),
    }))
    creds = build_credentials("digitalocean", {"api_token": "bad"})

    with pytest.raises(AuthorizationError):
        await adapter.fetch_cost_data(creds, START, END)


@pytest.mark.asyncio
async def test_client_error_status_is_provider_api_error():
    adapter = LinodeAdapter(transport=_transport({}))
    creds = build_credentials("linode", {"api_token": "tok"})

    with pytest.raises(ProviderAPIError) as excinfo:
        await adapter.fetch_cost_data(creds, START, END)
    assert excinfo.value.details["status"] == 404


@pytest.mark.asyncio
async def test_malformed_body_is_provider_api_error():
    adapter = VultrAdapter(transport=_transport({
        "/v2/account": {"unexpected": True},
        "/v2/billing/pending-charges": {"pending_charges": []},
        "/v2/billing/invoices": {"billing_invoices": []},
    }))
    creds = build_credentials("vultr", {"api_token": "tok"})

    with pytest.raises(ProviderAPIError):
        await adapter.fetch_cost_data(creds, START, END)
