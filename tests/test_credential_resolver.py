"""
Credential resolution: manual decrypt + field checks, automated STS exchange.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from spendsync.core.exceptions import AuthorizationError, ConfigurationError
from spendsync.core.security import encrypt_credentials
from spendsync.models.provider_account import ConnectionType
from spendsync.services.adapters.registry import AdapterRegistry
from spendsync.services.adapters.aws import AWSAdapter
from spendsync.services.adapters.digitalocean import DigitalOceanAdapter
from spendsync.services.credentials.resolver import CredentialResolver, build_credentials


@pytest.fixture
def aws_adapter():
    return AWSAdapter()


@pytest.fixture
def resolver(aws_adapter):
    registry = AdapterRegistry()
    registry.register(aws_adapter)
    registry.register(DigitalOceanAdapter())
    return CredentialResolver(registry)


def _sts_client(mock_sts, adapter):
    adapter.session = MagicMock()
    adapter.session.client.return_value.__aenter__.return_value = mock_sts
    adapter.session.client.return_value.__aexit__.return_value = None


@pytest.mark.asyncio
async def test_manual_credentials_are_decrypted(resolver, make_user, make_account):
    user = await make_user()
    account = await make_account(user, provider="digitalocean", credentials={"api_token": "dop_v1_abc"})

    creds = await resolver.resolve(account)

    assert creds.provider_id == "digitalocean"
    assert creds["api_token"] == "dop_v1_abc"
    assert creds.temporary is False
    assert not creds.is_expired()
    assert "dop_v1_abc" not in repr(creds)


@pytest.mark.asyncio
async def test_manual_credentials_missing_field(resolver, make_user, make_account):
    user = await make_user()
    account = await make_account(user, provider="aws", credentials={"access_key_id": "AKIA"})

    with pytest.raises(ConfigurationError) as excinfo:
        await resolver.resolve(account)

    assert excinfo.value.details["missing_fields"] == ["secret_access_key"]


@pytest.mark.asyncio
async def test_automated_missing_external_id_fails_without_network(resolver, aws_adapter, make_user, make_account):
    user = await make_user()
    account = await make_account(
        user,
        connection_type=ConnectionType.AUTOMATED,
        role_arn="arn:aws:iam::123456789012:role/SpendSyncReadOnly",
        external_id=None,
    )
    aws_adapter.session = MagicMock()

    with pytest.raises(ConfigurationError) as excinfo:
        await resolver.resolve(account)

    assert "external ID" in excinfo.value.message
    aws_adapter.session.client.assert_not_called()


@pytest.mark.asyncio
async def test_automated_role_exchange_returns_expiring_credentials(resolver, aws_adapter, make_user, make_account):
    user = await make_user()
    account = await make_account(
        user,
        connection_type="automated_cfn",
        role_arn="arn:aws:iam::123456789012:role/SpendSyncReadOnly",
        external_id="ext-123",
    )
    expiration = datetime.now(timezone.utc) + timedelta(hours=1)
    mock_sts = AsyncMock()
    mock_sts.assume_role.return_value = {
        "Credentials": {
            "AccessKeyId": "ASIATEMP",
            "SecretAccessKey": "temp-secret",
            "SessionToken": "temp-token",
            "Expiration": expiration,
        }
    }
    _sts_client(mock_sts, aws_adapter)

    creds = await resolver.resolve(account)

    assert creds.temporary is True
    assert creds.expires_at == expiration
    assert creds["session_token"] == "temp-token"
    kwargs = mock_sts.assume_role.call_args.kwargs
    assert kwargs["ExternalId"] == "ext-123"
    assert kwargs["RoleSessionName"].startswith("spendsync-sync-")


@pytest.mark.asyncio
async def test_sts_access_denied_is_authorization_error_with_hint(resolver, aws_adapter, make_user, make_account):
    user = await make_user()
    account = await make_account(
        user,
        connection_type=ConnectionType.AUTOMATED,
        role_arn="arn:aws:iam::123456789012:role/SpendSyncReadOnly",
        external_id="ext-123",
    )
    mock_sts = AsyncMock()
    mock_sts.assume_role.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "not authorized to perform sts:AssumeRole"}},
        "AssumeRole",
    )
    _sts_client(mock_sts, aws_adapter)

    with pytest.raises(AuthorizationError) as excinfo:
        await resolver.resolve(account)

    assert excinfo.value.details["aws_error_code"] == "AccessDenied"
    assert "external ID" in excinfo.value.hint
    assert mock_sts.assume_role.await_count == 1


def test_live_credentials_expiry():
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    creds = build_credentials("aws", {"access_key_id": "x"}, expires_at=past, temporary=True)
    assert creds.is_expired()
    with pytest.raises(TypeError):
        creds.values["access_key_id"] = "y"


def test_encrypted_blob_hides_plaintext():
    blob = encrypt_credentials({"api_token": "abc"})
    assert "abc" not in blob
