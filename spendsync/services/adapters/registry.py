from typing import Dict, List

import structlog

from spendsync.core.exceptions import ConfigurationError
from spendsync.services.adapters.base import BaseAdapter

logger = structlog.get_logger()


class AdapterRegistry:
    """Maps provider tags (and their aliases) to adapter instances."""

    def __init__(self):
        self._adapters: Dict[str, BaseAdapter] = {}
        self._aliases: Dict[str, str] = {}

    @staticmethod
    def _normalize(tag: str) -> str:
        return (tag or "").strip().lower()

    def register(self, adapter: BaseAdapter) -> None:
        key = self._normalize(adapter.provider_id)
        if not key:
            raise ValueError("adapter.provider_id must be set")
        self._adapters[key] = adapter
        for alias in (key, *adapter.aliases):
            self._aliases[self._normalize(alias)] = key
        logger.debug("adapter_registered", provider=key, aliases=list(adapter.aliases))

    def resolve_tag(self, tag: str) -> str:
        key = self._aliases.get(self._normalize(tag))
        if key is None:
            raise ConfigurationError(
                f"Unsupported provider: {tag}",
                hint=f"Supported providers: {', '.join(sorted(self._adapters))}",
            )
        return key

    def get(self, tag: str) -> BaseAdapter:
        return self._adapters[self.resolve_tag(tag)]

    def is_supported(self, tag: str) -> bool:
        return self._normalize(tag) in self._aliases

    def supported(self) -> List[Dict[str, object]]:
        return [
            {
                "id": a.provider_id,
                "name": a.display_name,
                "aliases": list(a.aliases),
                "required_fields": list(a.required_fields),
                "native_daily": a.native_daily,
                "supports_role_exchange": a.supports_role_exchange,
            }
            for a in sorted(self._adapters.values(), key=lambda a: a.provider_id)
        ]


_registry = None


def get_adapter_registry() -> AdapterRegistry:
    """Default registry with every built-in adapter."""
    global _registry
    if _registry is None:
        from spendsync.services.adapters.aws import AWSAdapter
        from spendsync.services.adapters.azure import AzureAdapter
        from spendsync.services.adapters.gcp import GCPAdapter
        from spendsync.services.adapters.digitalocean import DigitalOceanAdapter
        from spendsync.services.adapters.linode import LinodeAdapter
        from spendsync.services.adapters.vultr import VultrAdapter
        from spendsync.services.adapters.mongodb import MongoDBAtlasAdapter

        registry = AdapterRegistry()
        for adapter in (
            AWSAdapter(), AzureAdapter(), GCPAdapter(), DigitalOceanAdapter(),
            LinodeAdapter(), VultrAdapter(), MongoDBAtlasAdapter(),
        ):
            registry.register(adapter)
        _registry = registry
    return _registry
