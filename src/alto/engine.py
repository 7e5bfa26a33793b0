"""Local inference engine lifecycle: lazy load, shared pending loads, cache self-repair.

State machine:
    Uninitialized --load()--> Loading --success--> Ready
    Loading --failure (cache corruption)--> purge stores --retry once--> Loading
    Loading --failure (other)--> Failed
    Ready --unload()--> Uninitialized

The MLX runtime is the default backend (Apple Silicon). Model weights
live in the Hugging Face hub cache; a half-written download or a stale
lock there is the usual reason a load fails repeatedly, which is what
the purge-and-retry path repairs.

Requirements:
    pip install "alto-agent[local]"
"""

import asyncio
import gc
import logging
import platform
import re
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from huggingface_hub import constants as hf_constants
from huggingface_hub.file_download import repo_folder_name

from alto.config import ALTO_ENGINE_CACHE, DEFAULT_LOCAL_MODEL
from alto.errors import CacheCorruptionError, EngineInitError
from alto.events import (
    PHASE_DOWNLOAD,
    PHASE_FAILED,
    PHASE_LOAD,
    PHASE_PURGE,
    PHASE_READY,
    PHASE_RETRY,
    PHASE_START,
    ProgressChannel,
)

logger = logging.getLogger(__name__)

# MLX imports are conditional, only available on macOS Apple Silicon
_mlx_available = False
_mlx_lm = None
_make_sampler = None

if platform.system() == "Darwin" and platform.machine() == "arm64":
    try:
        import mlx_lm
        from mlx_lm.sample_utils import make_sampler

        _mlx_available = True
        _mlx_lm = mlx_lm
        _make_sampler = make_sampler
        logger.info("MLX framework loaded successfully")
    except ImportError:
        logger.info("MLX not installed, run: pip install mlx mlx-lm")

# Known fault identifiers surfaced by a load against a damaged cache
CACHE_CORRUPTION_SIGNATURES = (
    r"SafetensorError",
    r"HeaderTooLarge",
    r"InvalidHeaderDeserialization",
    r"incomplete metadata",
    r"unexpected end of file",
    r"EOF while parsing",
    r"checksum mismatch",
    r"corrupt",
    r"No safetensors found",
    r"Unable to load weights",
    r"LocalEntryNotFoundError",
)
_CORRUPTION_RE = re.compile("|".join(CACHE_CORRUPTION_SIGNATURES), re.IGNORECASE)


def is_cache_corruption(error: BaseException) -> bool:
    """Check whether a load error carries a known cache-corruption signature."""
    if isinstance(error, CacheCorruptionError):
        return True
    text = f"{type(error).__name__}: {error}"
    return bool(_CORRUPTION_RE.search(text))


def default_cache_stores(model_name: str) -> list[Path]:
    """Persistent stores used by the runtime for one model, in purge order."""
    hub = Path(hf_constants.HF_HUB_CACHE)
    folder = repo_folder_name(repo_id=model_name, repo_type="model")
    return [
        hub / folder,
        hub / ".locks" / folder,
        ALTO_ENGINE_CACHE,
    ]


class LocalModel(Protocol):
    """A loaded in-process model."""

    name: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
        stop: tuple[str, ...],
    ) -> str: ...

    def close(self) -> None: ...


ProgressReporter = Callable[[str, str, float | None], Any]
Loader = Callable[[str, ProgressReporter], Awaitable[LocalModel]]


class MLXModel:
    """A model/tokenizer pair loaded through mlx-lm."""

    def __init__(self, name: str, model: Any, tokenizer: Any):
        self.name = name
        self._model = model
        self._tokenizer = tokenizer

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
        stop: tuple[str, ...],
    ) -> str:
        formatted = self._tokenizer.apply_chat_template(
            _fold_system_prompt(messages), tokenize=False, add_generation_prompt=True
        )
        sampler = _make_sampler(temp=temperature)

        def _run() -> str:
            text = ""
            for chunk in _mlx_lm.stream_generate(
                self._model, self._tokenizer, prompt=formatted, max_tokens=max_tokens, sampler=sampler
            ):
                text += chunk.text
                if any(s in text for s in stop):
                    break
            return truncate_at_stop(text, stop)

        # Run inference in thread pool to avoid blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _run)

    def close(self) -> None:
        self._model = None
        self._tokenizer = None
        # Force garbage collection to free Metal memory
        gc.collect()


def _fold_system_prompt(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Merge system content into the first user turn.

    Several small chat templates (Gemma among them) reject a system role.
    """
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    rest = [dict(m) for m in messages if m["role"] != "system"]
    if not system:
        return rest
    for m in rest:
        if m["role"] == "user":
            m["content"] = f"{system}\n\n{m['content']}"
            return rest
    return [{"role": "user", "content": system}] + rest


def truncate_at_stop(text: str, stop: tuple[str, ...]) -> str:
    """Cut generated text at the earliest stop sequence."""
    cut = len(text)
    for s in stop:
        idx = text.find(s)
        if idx != -1:
            cut = min(cut, idx)
    return text[:cut]


async def mlx_loader(model_name: str, report: ProgressReporter) -> LocalModel:
    """Default loader: fetch (if needed) and load an MLX model."""
    if not _mlx_available:
        raise EngineInitError(
            code="engine.unavailable",
            message="MLX not available: requires macOS Apple Silicon with mlx-lm installed",
        )
    report(PHASE_DOWNLOAD, f"Fetching {model_name}...", 0.1)
    loop = asyncio.get_running_loop()
    model, tokenizer = await loop.run_in_executor(None, _mlx_lm.load, model_name)
    report(PHASE_LOAD, "Weights loaded into unified memory", 0.9)
    return MLXModel(model_name, model, tokenizer)


class EngineStatus(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineState:
    """Snapshot of the engine lifecycle; payload depends on status."""

    status: EngineStatus
    pending: asyncio.Task | None = None
    instance: LocalModel | None = None
    error: EngineInitError | None = None


@dataclass(frozen=True)
class PurgeOutcome:
    store: str
    status: str  # deleted | missing | blocked | error
    detail: str = ""


class EngineLifecycleManager:
    """Owns the one local runtime instance for the process.

    Concurrent ``load()`` callers share a single pending load; a second
    load against the same cache while one is in flight is exactly what
    corrupts it.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        loader: Loader | None = None,
        cache_stores: Callable[[str], list[Path]] | None = None,
        progress: ProgressChannel | None = None,
    ):
        self.model_name = model_name
        self.progress = progress or ProgressChannel()
        self._loader = loader or mlx_loader
        self._cache_stores = cache_stores or default_cache_stores
        self._state = EngineState(EngineStatus.UNINITIALIZED)
        self._load_count = 0
        self._load_time_ms: float = 0
        self._purge_count = 0
        # MLX generation runs on an executor thread; the model is not safe to share
        self._generate_lock = asyncio.Lock()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state.status == EngineStatus.READY

    @property
    def available(self) -> bool:
        """Check if the default MLX runtime is usable on this system."""
        return _mlx_available

    async def load(self) -> LocalModel:
        """Return the ready instance, loading it first if needed.

        Raises:
            EngineInitError: if the load (and any single retry) failed
        """
        state = self._state
        if state.status == EngineStatus.READY:
            return state.instance
        if state.status == EngineStatus.LOADING:
            # shield: one caller giving up must not cancel the shared load
            return await asyncio.shield(state.pending)

        pending = asyncio.create_task(self._run_load(self.model_name))
        self._state = EngineState(EngineStatus.LOADING, pending=pending)
        return await asyncio.shield(pending)

    async def generate(
        self,
        messages: list[dict[str, str]],
        *,
        max_tokens: int,
        temperature: float,
        stop: tuple[str, ...],
    ) -> str:
        """Complete on the loaded instance, one completion at a time."""
        instance = await self.load()
        async with self._generate_lock:
            return await instance.complete(messages, max_tokens=max_tokens, temperature=temperature, stop=stop)

    async def _run_load(self, model_name: str) -> LocalModel:
        start = time.monotonic()
        self._load_count += 1
        self._report(PHASE_START, f"Initializing {model_name}...", 0.0)
        try:
            instance = await self._attempt(model_name)
        except EngineInitError as e:
            self._state = EngineState(EngineStatus.FAILED, error=e)
            self._report(PHASE_FAILED, f"Engine failed to load: {e.message}", None)
            logger.error(f"Failed to load local engine {model_name}: {e}")
            raise
        except BaseException:
            self._state = EngineState(EngineStatus.UNINITIALIZED)
            raise

        self._load_time_ms = (time.monotonic() - start) * 1000
        self._state = EngineState(EngineStatus.READY, instance=instance)
        self._report(PHASE_READY, "Engine ready", 1.0)
        logger.info(f"Local engine loaded in {self._load_time_ms:.0f}ms: {model_name}")
        return instance

    async def _attempt(self, model_name: str) -> LocalModel:
        try:
            return await self._loader(model_name, self._report)
        except EngineInitError as e:
            if not e.cache_corruption:
                raise
            first = e
        except Exception as e:
            if not is_cache_corruption(e):
                raise EngineInitError(
                    code="engine.load_failed",
                    message=str(e),
                    data={"model": model_name},
                ) from e
            first = e

        logger.warning(f"Cache corruption detected loading {model_name}: {first}")
        self._report(PHASE_PURGE, "Model cache looks corrupted, clearing it...", None)
        await self.purge_cache_stores(model_name)

        self._report(PHASE_RETRY, "Retrying engine load...", 0.0)
        try:
            return await self._loader(model_name, self._report)
        except Exception as e:
            message = e.message if isinstance(e, EngineInitError) else str(e)
            raise CacheCorruptionError(
                code="engine.load_failed_after_purge",
                message=message,
                data={"model": model_name, "initial_error": str(first)},
            ) from e

    async def purge_cache_stores(self, model_name: str | None = None) -> list[PurgeOutcome]:
        """Delete every known persistent store, one at a time.

        A blocked or failed deletion is logged and skipped; a partial purge
        still tends to unblock the next load.
        """
        model_name = model_name or self.model_name
        outcomes = []
        loop = asyncio.get_running_loop()
        self._purge_count += 1
        for store in self._cache_stores(model_name):
            if not store.exists():
                outcomes.append(PurgeOutcome(str(store), "missing"))
                continue
            try:
                if store.is_dir():
                    await loop.run_in_executor(None, shutil.rmtree, store)
                else:
                    await loop.run_in_executor(None, store.unlink)
                outcomes.append(PurgeOutcome(str(store), "deleted"))
                logger.info(f"Purged engine cache store: {store}")
            except PermissionError as e:
                outcomes.append(PurgeOutcome(str(store), "blocked", str(e)))
                logger.warning(f"Cache store delete blocked, continuing: {store} ({e})")
            except OSError as e:
                outcomes.append(PurgeOutcome(str(store), "error", str(e)))
                logger.warning(f"Failed to delete cache store {store}: {e}")
        return outcomes

    async def unload(self) -> None:
        """Release the ready instance (waits for an in-flight load first)."""
        state = self._state
        if state.status == EngineStatus.LOADING:
            try:
                await asyncio.shield(state.pending)
            except EngineInitError:
                pass
            state = self._state
        if state.status == EngineStatus.READY:
            async with self._generate_lock:
                state.instance.close()
            logger.info("Local engine unloaded from memory")
        self._state = EngineState(EngineStatus.UNINITIALIZED)

    async def reset_cache(self) -> list[PurgeOutcome]:
        """User-invoked maintenance: unload, then purge every cache store."""
        await self.unload()
        outcomes = await self.purge_cache_stores()
        logger.info(f"Engine cache reset: {[o.status for o in outcomes]}")
        return outcomes

    def _report(self, phase: str, text: str, fraction: float | None = None) -> None:
        self.progress.publish(phase, text, fraction)

    def get_stats(self) -> dict[str, Any]:
        """Get engine lifecycle statistics."""
        return {
            "available": self.available,
            "status": self._state.status.value,
            "model": self.model_name,
            "load_count": self._load_count,
            "load_time_ms": self._load_time_ms,
            "purge_count": self._purge_count,
            "last_error": str(self._state.error) if self._state.error else None,
        }


def is_mlx_available() -> bool:
    """Quick check if MLX is available on this system."""
    return _mlx_available
