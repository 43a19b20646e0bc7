import pytest
from structlog.testing import capture_logs

from spendsync.core.exceptions import ConfigurationError
from spendsync.core.logging import audit_log, pii_redactor
from spendsync.core.security import decrypt_credentials, encrypt_credentials
from spendsync.core.tier_guard import FeatureFlag, PricingTier, has_feature, normalize_plan


def test_credentials_are_encrypted_at_rest():
    blob = encrypt_credentials({"api_token": "dop_v1_secret"})

    assert "dop_v1_secret" not in blob
    assert decrypt_credentials(blob) == {"api_token": "dop_v1_secret"}


def test_empty_blob_decrypts_to_empty_dict():
    assert decrypt_credentials(None) == {}


def test_tampered_blob_raises_configuration_error():
    blob = encrypt_credentials({"api_token": "x"})
    with pytest.raises(ConfigurationError) as exc_info:
        decrypt_credentials(blob[:-4] + "AAAA")
    assert exc_info.value.hint


def test_pii_redactor_masks_secrets_in_nested_payloads():
    event = pii_redactor(None, "info", {
        "event": "credentials_resolved",
        "secret_access_key": "abc",
        "details": {"external_id": "ext-1", "region": "us-east-1"},
    })

    assert event["secret_access_key"] == "[REDACTED]"
    assert event["details"] == {"external_id": "[REDACTED]", "region": "us-east-1"}


@pytest.mark.parametrize("plan,feature,expected", [
    ("free", FeatureFlag.COST_SYNC, True),
    ("free", FeatureFlag.SCHEDULED_SYNC, False),
    ("starter", FeatureFlag.SCHEDULED_SYNC, True),
    ("starter", FeatureFlag.EMAIL_ALERTS, False),
    ("pro", FeatureFlag.EMAIL_ALERTS, True),
])
def test_plan_features(plan, feature, expected):
    assert has_feature(plan, feature) is expected


def test_unknown_plan_falls_back_to_free():
    assert normalize_plan("enterprise-legacy") == PricingTier.FREE
    assert normalize_plan(" PRO ") == PricingTier.PRO


def test_audit_log_records_event_name_and_details():
    with capture_logs() as logs:
        audit_log("role_credentials_issued", user_id="u-1", details={"provider": "aws"})

    assert logs == [{
        "event": "audit_event",
        "audit_event": "role_credentials_issued",
        "user_id": "u-1",
        "metadata": {"provider": "aws"},
        "log_level": "info",
    }]
