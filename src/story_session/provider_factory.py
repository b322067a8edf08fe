"""Provider factory — deterministic provider selection from configuration."""

from __future__ import annotations

from .config import LlmConfig
from .openrouter_provider import OpenRouterProvider
from .provider import LLMProvider, StubLLMProvider

_VALID_PROVIDERS = frozenset({"openrouter", "stub"})


class ProviderFactory:
    """Creates the LLM provider named by an :class:`LlmConfig`."""

    @staticmethod
    def create(config: LlmConfig, api_key: str | None = None) -> LLMProvider:
        """Create the provider for ``config.provider``.

        Raises:
            ValueError: If the provider name is unknown.
        """
        name = config.provider
        if name not in _VALID_PROVIDERS:
            msg = (
                f"Unknown provider '{name}'. "
                f"Valid values: {', '.join(sorted(_VALID_PROVIDERS))}"
            )
            raise ValueError(msg)
        if name == "openrouter":
            return OpenRouterProvider(config, api_key=api_key)
        return StubLLMProvider()

    @staticmethod
    def describe(provider: LLMProvider) -> str:
        """Return a human-readable description of a provider for REPL output."""
        if isinstance(provider, OpenRouterProvider):
            return f"OpenRouterProvider (model={provider.model})"
        if isinstance(provider, StubLLMProvider):
            return "StubLLMProvider (deterministic responses)"
        return f"{type(provider).__name__}"
