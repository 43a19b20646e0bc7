import pytest

from spendsync.core.exceptions import ConfigurationError
from spendsync.services.adapters.registry import AdapterRegistry, get_adapter_registry
from spendsync.services.adapters.aws import AWSAdapter


class TestAdapterRegistry:

    def test_default_registry_has_every_provider(self):
        registry = get_adapter_registry()
        ids = [p["id"] for p in registry.supported()]
        assert ids == ["aws", "azure", "digitalocean", "gcp", "linode", "mongodb", "vultr"]

    @pytest.mark.parametrize("tag,expected", [
        ("AWS", "aws"),
        ("amazon", "aws"),
        (" microsoft ", "azure"),
        ("google", "gcp"),
        ("do", "digitalocean"),
        ("akamai", "linode"),
        ("atlas", "mongodb"),
    ])
    def test_aliases_resolve_to_canonical_tag(self, tag, expected):
        assert get_adapter_registry().resolve_tag(tag) == expected

    def test_unknown_provider_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            get_adapter_registry().get("oracle")
        assert "oracle" in excinfo.value.message
        assert "aws" in excinfo.value.hint

    def test_is_supported(self):
        registry = get_adapter_registry()
        assert registry.is_supported("gcp")
        assert not registry.is_supported("")

    def test_register_new_provider_without_touching_others(self):
        registry = AdapterRegistry()
        registry.register(AWSAdapter())
        assert registry.get("amazon").provider_id == "aws"
        assert len(registry.supported()) == 1

    def test_supported_lists_required_fields(self):
        providers = {p["id"]: p for p in get_adapter_registry().supported()}
        assert providers["aws"]["supports_role_exchange"] is True
        assert providers["digitalocean"]["native_daily"] is False
        assert "api_token" in providers["digitalocean"]["required_fields"]
