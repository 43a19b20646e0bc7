from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError

from spendsync.core.exceptions import AuthorizationError, ProviderAPIError
from spendsync.services.adapters.azure import AzureAdapter, _parse_usage_date
from spendsync.services.credentials.resolver import build_credentials

CREDS = build_credentials("azure", {
    "tenant_id": "tenant",
    "client_id": "client",
    "client_secret": "secret",
    "subscription_id": "sub-123",
})


def _response(columns, rows):
    return SimpleNamespace(columns=[SimpleNamespace(name=c) for c in columns], rows=rows)


@pytest.fixture
def cost_client():
    client = MagicMock()
    client.query.usage = AsyncMock()
    with patch("spendsync.services.adapters.azure.ClientSecretCredential") as credential_cls, \
            patch("spendsync.services.adapters.azure.CostManagementClient") as client_cls:
        credential_cls.return_value.__aenter__.return_value = MagicMock()
        client_cls.return_value.__aenter__.return_value = client
        yield client


@pytest.mark.parametrize("raw,expected", [
    (20260315, date(2026, 3, 15)),
    ("20260301", date(2026, 3, 1)),
    ("2026-03-02T00:00:00Z", date(2026, 3, 2)),
])
def test_parse_usage_date(raw, expected):
    assert _parse_usage_date(raw) == expected


@pytest.mark.asyncio
async def test_columns_are_mapped_by_name(cost_client):
    # Cost is not the first column in this response
    cost_client.query.usage.return_value = _response(
        ["UsageDate", "ServiceName", "PreTaxCost", "Currency"],
        [
            [20260215, "Virtual Machines", 20.0, "USD"],
            [20260301, "Virtual Machines", 7.5, "USD"],
            [20260301, "Storage", 2.25, "USD"],
            [20260302, None, 1.0, "USD"],
        ],
    )

    draft = await AzureAdapter().fetch_cost_data(CREDS, date(2026, 3, 1), date(2026, 3, 2))

    assert draft.prior_period_total == Decimal("20.0")
    assert draft.current_period_total == Decimal("10.75")
    assert {(d.date, d.service, d.cost) for d in draft.daily} == {
        (date(2026, 3, 1), "Virtual Machines", Decimal("7.5")),
        (date(2026, 3, 1), "Storage", Decimal("2.25")),
        (date(2026, 3, 2), "Other", Decimal("1.0")),
    }
    assert [s.name for s in draft.services] == ["Virtual Machines", "Storage", "Other"]

    kwargs = cost_client.query.usage.await_args.kwargs
    assert kwargs["scope"] == "/subscriptions/sub-123"
    assert kwargs["parameters"].time_period.from_property.date() == date(2026, 2, 1)


@pytest.mark.asyncio
async def test_empty_response_has_no_prior_total(cost_client):
    cost_client.query.usage.return_value = _response([], [])

    draft = await AzureAdapter().fetch_cost_data(CREDS, date(2026, 3, 1), date(2026, 3, 2))

    assert draft.current_period_total == Decimal("0")
    assert draft.prior_period_total is None
    assert draft.daily == []


@pytest.mark.asyncio
async def test_rejected_secret_maps_to_authorization_error(cost_client):
    cost_client.query.usage.side_effect = ClientAuthenticationError("AADSTS7000215: Invalid client secret")

    with pytest.raises(AuthorizationError) as exc:
        await AzureAdapter().fetch_cost_data(CREDS, date(2026, 3, 1), date(2026, 3, 2))
    assert "client secret" in exc.value.hint


@pytest.mark.asyncio
async def test_query_failure_maps_to_provider_error(cost_client):
    cost_client.query.usage.side_effect = HttpResponseError(message="Too many requests")

    with pytest.raises(ProviderAPIError):
        await AzureAdapter().fetch_cost_data(CREDS, date(2026, 3, 1), date(2026, 3, 2))
