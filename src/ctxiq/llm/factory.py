"""Named-provider registry and lazy caller resolution."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict

from ctxiq.errors import UnknownProviderError
from ctxiq.llm.base import Caller
from ctxiq.llm.litellm_caller import LiteLLMCaller
from ctxiq.llm.mock import MockCaller

logger = structlog.get_logger("ctxiq.llm.factory")


class LLMConfig(BaseModel):
    """
    Plain configuration resolved to a :class:`Caller` through a registry.

    Unknown fields are kept and forwarded to the provider factory.

    Example::

        LLMConfig(provider="litellm", model="openai/gpt-4o-mini", temperature=0.0)
    """

    model_config = ConfigDict(extra="allow")

    provider: str
    model: str | None = None
    api_key: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @property
    def extra_options(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


CallerFactory = Callable[[LLMConfig], Caller]


def _mock_factory(cfg: LLMConfig) -> Caller:
    return MockCaller(**cfg.extra_options)


def _litellm_factory(cfg: LLMConfig) -> Caller:
    if not cfg.model:
        raise ValueError("The litellm provider requires LLMConfig.model")
    return LiteLLMCaller(
        cfg.model,
        api_key=cfg.api_key,
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
        **cfg.extra_options,
    )


class ProviderRegistry:
    """Maps provider names (case-insensitive) to caller factories."""

    def __init__(self, factories: dict[str, CallerFactory] | None = None) -> None:
        self._factories: dict[str, CallerFactory] = {}
        for name, factory in (factories or {}).items():
            self.register(name, factory)

    @classmethod
    def with_defaults(cls) -> ProviderRegistry:
        """A registry with the built-in ``mock`` and ``litellm`` providers."""
        return cls({"mock": _mock_factory, "litellm": _litellm_factory})

    def register(self, name: str, factory: CallerFactory) -> None:
        self._factories[name.lower()] = factory

    def providers(self) -> list[str]:
        return sorted(self._factories)

    def create(self, config: LLMConfig) -> Caller:
        """
        Build a caller for ``config``.

        Raises:
            UnknownProviderError: If no factory is registered for ``config.provider``.
        """
        factory = self._factories.get(config.provider.lower())
        if factory is None:
            raise UnknownProviderError(config.provider)
        return factory(config)


def create_caller(config: LLMConfig, registry: ProviderRegistry | None = None) -> Caller:
    """Resolve ``config`` with ``registry`` (default: built-in providers only)."""
    return (registry or ProviderRegistry.with_defaults()).create(config)


class LazyCaller:
    """
    Holds either a ready :class:`Caller` or an :class:`LLMConfig`.

    A config is resolved on the first :meth:`get` and the resulting caller is
    cached for the lifetime of this object.
    """

    def __init__(
        self, source: Caller | LLMConfig, registry: ProviderRegistry | None = None
    ) -> None:
        self._source = source
        self._registry = registry
        self._resolved: Caller | None = None if isinstance(source, LLMConfig) else source

    @property
    def resolved(self) -> bool:
        return self._resolved is not None

    def get(self) -> Caller:
        if self._resolved is None:
            assert isinstance(self._source, LLMConfig)
            self._resolved = create_caller(self._source, self._registry)
            logger.debug(
                "caller_resolved", provider=self._source.provider, caller=self._resolved.name
            )
        return self._resolved
