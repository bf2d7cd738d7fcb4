"""Platform name → ChannelProvider lookup"""

from typing import Dict, Optional, Iterable

from services.providers.base import ChannelProvider


class ProviderRegistry:
    """Holds one provider instance per messaging platform"""

    def __init__(self, providers: Iterable[ChannelProvider] = ()):
        self._providers: Dict[str, ChannelProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ChannelProvider) -> None:
        self._providers[provider.platform] = provider

    def get(self, platform: str) -> Optional[ChannelProvider]:
        return self._providers.get(platform)

    def platforms(self):
        return sorted(self._providers)

    def __contains__(self, platform: str) -> bool:
        return platform in self._providers
