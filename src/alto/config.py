"""Alto configuration management."""

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from alto.errors import ConfigurationError

ALTO_HOME = Path.home() / ".alto"
ALTO_CONFIG = ALTO_HOME / "config.json"
ALTO_LOGS = ALTO_HOME / "logs"
ALTO_ENGINE_CACHE = ALTO_HOME / "engine"

DEFAULT_LOCAL_MODEL = "mlx-community/gemma-2-2b-it-4bit"
DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434/api/chat"
DEFAULT_BRIDGE_URL = "http://127.0.0.1:9849"


class ProviderKind(Enum):
    """Backend category behind the provider adapter."""

    LOCAL = "local"                  # In-process MLX runtime
    NETWORK_LOCAL = "network_local"  # Ollama-style model server
    CLOUD = "cloud"                  # OpenAI-compatible chat API

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        legacy = {"webllm": cls.LOCAL, "mlx": cls.LOCAL, "ollama": cls.NETWORK_LOCAL, "openai": cls.CLOUD}
        key = value.strip().lower()
        if key in legacy:
            return legacy[key]
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(
                code="config.unknown_provider",
                message=f"Unknown provider kind: {value}",
            ) from None


@dataclass
class ProviderConfig:
    """Which inference backend answers chat turns.

    Persisted as the flat record ``{kind, endpoint, credential?, model}``.
    """

    kind: ProviderKind = ProviderKind.LOCAL
    endpoint: str = DEFAULT_OLLAMA_ENDPOINT
    credential: str | None = None
    model: str = DEFAULT_LOCAL_MODEL

    def validate(self) -> None:
        """Raise ConfigurationError if the chosen kind lacks a required field."""
        if not self.model:
            raise ConfigurationError(
                code="config.missing_model",
                message=f"A model identifier is required for the {self.kind.value} provider",
            )
        if self.kind in (ProviderKind.NETWORK_LOCAL, ProviderKind.CLOUD) and not self.endpoint:
            raise ConfigurationError(
                code="config.missing_endpoint",
                message=f"An endpoint is required for the {self.kind.value} provider",
            )
        if self.kind == ProviderKind.CLOUD and not self.credential:
            raise ConfigurationError(
                code="config.missing_credential",
                message="An API key is required for the cloud provider",
            )

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value, "endpoint": self.endpoint, "model": self.model}
        if self.credential:
            data["credential"] = self.credential
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderConfig":
        config = cls()
        if "kind" in data:
            config.kind = ProviderKind.parse(data["kind"])
        if "endpoint" in data:
            config.endpoint = data["endpoint"]
        if data.get("credential"):
            config.credential = data["credential"]
        if "model" in data:
            config.model = data["model"]
        return config


@dataclass
class AlertConfig:
    """Proactive alert settings."""

    enabled: bool = True
    check_interval_seconds: float = 10.0
    cooldown_seconds: float = 300.0  # 5 minutes between any two alerts
    cpu_threshold_percent: float = 80.0
    junk_threshold_bytes: int = 1024 * 1024 * 1024  # 1 GiB


@dataclass
class BridgeConfig:
    """Host helper process connection."""

    url: str = DEFAULT_BRIDGE_URL
    timeout_seconds: float = 120.0
    telemetry_interval_seconds: float = 5.0


@dataclass
class UserProfile:
    name: str = ""
    role: str = "Mac User"


@dataclass
class AltoConfig:
    """Top-level Alto configuration."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    profile: UserProfile = field(default_factory=UserProfile)

    @classmethod
    def load(cls, path: Path | None = None) -> "AltoConfig":
        """Load config from disk or return defaults.

        Env vars override file config for the provider section.
        """
        path = path or ALTO_CONFIG
        config = cls()
        if path.exists():
            data = json.loads(path.read_text())
            if "provider" in data:
                config.provider = ProviderConfig.from_dict(data["provider"])
            if "alerts" in data:
                for k, v in data["alerts"].items():
                    setattr(config.alerts, k, v)
            if "bridge" in data:
                for k, v in data["bridge"].items():
                    setattr(config.bridge, k, v)
            if "profile" in data:
                for k, v in data["profile"].items():
                    setattr(config.profile, k, v)

        provider_kind = os.environ.get("ALTO_PROVIDER")
        endpoint = os.environ.get("ALTO_ENDPOINT")
        model = os.environ.get("ALTO_MODEL")
        api_key = os.environ.get("ALTO_API_KEY")

        if provider_kind:
            config.provider.kind = ProviderKind.parse(provider_kind)
        if endpoint:
            config.provider.endpoint = endpoint
        if model:
            config.provider.model = model
        if api_key:
            config.provider.credential = api_key
        elif config.provider.kind == ProviderKind.CLOUD and not config.provider.credential:
            config.provider.credential = os.environ.get("OPENAI_API_KEY") or None

        return config

    def save(self, path: Path | None = None) -> None:
        """Persist config to disk."""
        path = path or ALTO_CONFIG
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "provider": self.provider.to_dict(),
            "alerts": {
                "enabled": self.alerts.enabled,
                "check_interval_seconds": self.alerts.check_interval_seconds,
                "cooldown_seconds": self.alerts.cooldown_seconds,
                "cpu_threshold_percent": self.alerts.cpu_threshold_percent,
                "junk_threshold_bytes": self.alerts.junk_threshold_bytes,
            },
            "bridge": {
                "url": self.bridge.url,
                "timeout_seconds": self.bridge.timeout_seconds,
                "telemetry_interval_seconds": self.bridge.telemetry_interval_seconds,
            },
            "profile": {
                "name": self.profile.name,
                "role": self.profile.role,
            },
        }
        path.write_text(json.dumps(data, indent=2))


def ensure_alto_home() -> None:
    """Create Alto home directory structure."""
    ALTO_HOME.mkdir(parents=True, exist_ok=True)
    ALTO_LOGS.mkdir(parents=True, exist_ok=True)
