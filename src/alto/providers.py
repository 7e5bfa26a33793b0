"""Provider adapters: one ``send(conversation) -> text`` contract over three backends.

Local:         in-process MLX runtime, via EngineLifecycleManager
NetworkLocal:  Ollama-style server, POST {endpoint} {model, messages, stream: false}
Cloud:         OpenAI-compatible API, POST {endpoint}/chat/completions

Chat calls impose no client timeout beyond the backend's own; the
connection probe is bounded at CONNECT_TEST_TIMEOUT.
"""

import logging
import time
from typing import Any, Callable

import httpx

from alto.config import ProviderConfig, ProviderKind
from alto.context import ConversationMessage
from alto.engine import EngineLifecycleManager
from alto.errors import EngineInitError, NetworkError, ProviderError, ProviderErrorKind

logger = logging.getLogger(__name__)

CONNECT_TEST_TIMEOUT = 10.0  # seconds

# Keep the local model from writing the user's next turn for them
STOP_SEQUENCES = ("\nUser:", "\nuser:", "\nHuman:", "<end_of_turn>", "<|im_end|>", "<|eot_id|>")
LOCAL_MAX_TOKENS = 512
LOCAL_TEMPERATURE = 0.7

ClientFactory = Callable[..., httpx.AsyncClient]


class ProviderAdapter:
    """Uniform call contract over the inference backends."""

    kind: ProviderKind
    label = "provider"

    def __init__(self, config: ProviderConfig):
        self.config = config
        self._request_count = 0
        self._total_latency_ms: float = 0

    async def send(self, conversation: list[ConversationMessage]) -> str:
        """Return the raw reply text.

        Raises:
            ProviderError / EngineInitError on failure
        """
        start = time.monotonic()
        text = await self._send(conversation)
        self._request_count += 1
        self._total_latency_ms += (time.monotonic() - start) * 1000
        logger.debug(f"{self.label} reply ({len(text)} chars): {text[:500]!r}")
        return text

    async def _send(self, conversation: list[ConversationMessage]) -> str:
        raise NotImplementedError

    async def probe(self) -> str:
        """Minimal bounded request; returns a human-readable success message."""
        raise NotImplementedError

    def get_stats(self) -> dict[str, Any]:
        avg_ms = self._total_latency_ms / self._request_count if self._request_count else 0
        return {
            "kind": self.kind.value,
            "model": self.config.model,
            "request_count": self._request_count,
            "avg_latency_ms": round(avg_ms, 1),
        }


class LocalEngineProvider(ProviderAdapter):
    kind = ProviderKind.LOCAL
    label = "Local engine"

    def __init__(self, config: ProviderConfig, engine: EngineLifecycleManager):
        super().__init__(config)
        self.engine = engine

    async def _send(self, conversation: list[ConversationMessage]) -> str:
        try:
            return await self.engine.generate(
                [m.to_dict() for m in conversation],
                max_tokens=LOCAL_MAX_TOKENS,
                temperature=LOCAL_TEMPERATURE,
                stop=STOP_SEQUENCES,
            )
        except EngineInitError:
            raise
        except Exception as e:
            raise ProviderError(
                code="provider.local_generation_failed",
                message=str(e),
                kind=ProviderErrorKind.UNSUPPORTED,
            ) from e

    async def probe(self) -> str:
        await self.engine.load()
        return f"Local engine loaded ({self.config.model})"


class HTTPProvider(ProviderAdapter):
    """Shared request/response handling for HTTP-backed providers."""

    def __init__(self, config: ProviderConfig, client_factory: ClientFactory = httpx.AsyncClient):
        super().__init__(config)
        self._client_factory = client_factory

    def _url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _body(self, messages: list[dict[str, str]], probe: bool = False) -> dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, data: dict) -> str:
        raise NotImplementedError

    def _extract_error(self, data: Any) -> str | None:
        raise NotImplementedError

    async def _post(self, body: dict, timeout: float | None) -> dict:
        try:
            async with self._client_factory(timeout=timeout) as client:
                response = await client.post(self._url(), json=body, headers=self._headers())
        except httpx.TimeoutException as e:
            raise NetworkError(
                code="provider.timeout",
                message=f"{self.label} did not respond in time",
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                code="provider.connection_failed",
                message=f"Could not reach {self.label}: {e}",
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            detail = self._extract_error(data) or f"HTTP {response.status_code}"
            raise _status_error(self.label, response.status_code, detail)
        if not isinstance(data, dict):
            raise ProviderError(
                code="provider.invalid_response",
                message=f"{self.label} returned a non-JSON response",
                kind=ProviderErrorKind.UNSUPPORTED,
            )
        return data

    async def _send(self, conversation: list[ConversationMessage]) -> str:
        data = await self._post(self._body([m.to_dict() for m in conversation]), timeout=None)
        try:
            return self._extract_text(data) or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                code="provider.invalid_response",
                message=f"Unexpected {self.label} response shape: {e}",
                kind=ProviderErrorKind.UNSUPPORTED,
            ) from e

    async def probe(self) -> str:
        await self._post(self._body([{"role": "user", "content": "Say OK"}], probe=True), CONNECT_TEST_TIMEOUT)
        return f"Connected to {self.label} ({self.config.model})"


class OllamaProvider(HTTPProvider):
    kind = ProviderKind.NETWORK_LOCAL
    label = "Ollama"

    def _url(self) -> str:
        return self.config.endpoint

    def _body(self, messages: list[dict[str, str]], probe: bool = False) -> dict[str, Any]:
        return {"model": self.config.model, "messages": messages, "stream": False}

    def _extract_text(self, data: dict) -> str:
        return data["message"]["content"]

    def _extract_error(self, data: Any) -> str | None:
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            return data["error"]
        return None


class OpenAIProvider(HTTPProvider):
    kind = ProviderKind.CLOUD
    label = "OpenAI"

    def _url(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.credential}",
        }

    def _body(self, messages: list[dict[str, str]], probe: bool = False) -> dict[str, Any]:
        body: dict[str, Any] = {"model": self.config.model, "messages": messages}
        if probe:
            body["max_tokens"] = 5
        return body

    def _extract_text(self, data: dict) -> str:
        return data["choices"][0]["message"]["content"]

    def _extract_error(self, data: Any) -> str | None:
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                return error.get("message")
            if isinstance(error, str):
                return error
        return None


def _status_error(label: str, status: int, detail: str) -> ProviderError:
    if status in (401, 403):
        return ProviderError(
            code="provider.auth_failed",
            message=f"{label} rejected the credentials: {detail}",
            data={"status": status},
            kind=ProviderErrorKind.AUTH,
        )
    if status == 429:
        return ProviderError(
            code="provider.rate_limited",
            message=f"{label} rate limit reached: {detail}",
            data={"status": status},
            kind=ProviderErrorKind.RATE_LIMIT,
        )
    return NetworkError(
        code="provider.http_error",
        message=f"{label} error: {detail}",
        data={"status": status},
    )


def create_provider(
    config: ProviderConfig,
    engine: EngineLifecycleManager,
    client_factory: ClientFactory = httpx.AsyncClient,
) -> ProviderAdapter:
    """Build the adapter for the configured kind."""
    config.validate()
    if config.kind == ProviderKind.LOCAL:
        return LocalEngineProvider(config, engine)
    if config.kind == ProviderKind.NETWORK_LOCAL:
        return OllamaProvider(config, client_factory)
    if config.kind == ProviderKind.CLOUD:
        return OpenAIProvider(config, client_factory)
    raise ProviderError(
        code="provider.unsupported",
        message=f"Unsupported provider kind: {config.kind}",
        kind=ProviderErrorKind.UNSUPPORTED,
    )
