"""Error taxonomy for the Alto orchestration layer.

Every failure raised inside the layer is an ``AltoError``. The outer
boundaries (``AgentService.chat``, ``ActionDispatcher.execute``,
``ConnectionTester.test``) convert these into displayed text or
``success=False`` results, so none of them reach the host application.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(eq=False)
class AltoError(Exception):
    code: str
    message: str
    data: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ConfigurationError(AltoError):
    """A required field is missing for the chosen provider kind."""


class ProviderErrorKind(Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    UNSUPPORTED = "unsupported"


@dataclass(eq=False)
class ProviderError(AltoError):
    kind: ProviderErrorKind = ProviderErrorKind.NETWORK


@dataclass(eq=False)
class NetworkError(ProviderError):
    """Timeout, non-success HTTP status, or DNS/connection failure."""

    kind: ProviderErrorKind = ProviderErrorKind.NETWORK


@dataclass(eq=False)
class EngineInitError(AltoError):
    cache_corruption: bool = False


@dataclass(eq=False)
class CacheCorruptionError(EngineInitError):
    cache_corruption: bool = True


class ActionExecutionError(AltoError):
    pass


class BridgeError(ActionExecutionError):
    """The host bridge rejected or failed a command."""
