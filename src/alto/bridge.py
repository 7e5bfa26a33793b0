"""Host command bridge: the privileged helper process that touches the disk.

The orchestration layer never scans or deletes anything itself. Each
action maps to one request/response command on the bridge:

    scan_junk         -> {items[], total_size_bytes, errors[]}
    clean_items       {paths[]} -> {removed, errors[]}
    scan_malware      -> {threats_found[], status}
    run_speed_task    {taskId} -> {task, status}
    scan_large_files  -> {items[], total_size_bytes}
    schedule_task     {cron, taskType} -> ack
    reset_context     -> fresh context store snapshot

``HttpHostBridge`` talks to the helper over a local HTTP endpoint:

    Python (this client) -> HTTP POST 127.0.0.1:9849/invoke -> helper process
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from alto.config import DEFAULT_BRIDGE_URL
from alto.errors import BridgeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScannedItem:
    path: str
    size_bytes: int
    category_name: str = ""
    is_directory: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ScannedItem":
        return cls(
            path=data["path"],
            size_bytes=int(data.get("size_bytes", 0)),
            category_name=data.get("category_name", ""),
            is_directory=bool(data.get("is_directory", False)),
        )


@dataclass(frozen=True)
class ScanResult:
    items: tuple[ScannedItem, ...] = ()
    total_size_bytes: int = 0
    errors: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "ScanResult":
        return cls(
            items=tuple(ScannedItem.from_dict(i) for i in data.get("items", [])),
            total_size_bytes=int(data.get("total_size_bytes", 0)),
            errors=tuple(data.get("errors", [])),
        )


@dataclass(frozen=True)
class CleanResult:
    removed: int
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class MalwareResult:
    threats_found: tuple[str, ...]
    status: str


@dataclass(frozen=True)
class SpeedTaskResult:
    task: str
    status: str


@dataclass(frozen=True)
class SystemStats:
    cpu_load: float
    memory_used: int
    memory_total: int
    extra: dict = field(default_factory=dict)


class HostBridge:
    """Contract consumed by the action dispatcher.

    Implementations raise ``BridgeError`` on any failure.
    """

    async def scan_junk(self) -> ScanResult:
        raise NotImplementedError

    async def clean_items(self, paths: list[str]) -> CleanResult:
        raise NotImplementedError

    async def scan_malware(self) -> MalwareResult:
        raise NotImplementedError

    async def run_speed_task(self, task_id: str) -> SpeedTaskResult:
        raise NotImplementedError

    async def scan_large_files(self) -> ScanResult:
        raise NotImplementedError

    async def schedule_task(self, cron: str, task_type: str) -> None:
        raise NotImplementedError

    async def reset_context(self) -> dict[str, Any]:
        raise NotImplementedError

    async def get_system_stats(self) -> SystemStats:
        raise NotImplementedError

    async def count_installed_apps(self) -> int:
        raise NotImplementedError


class HttpHostBridge(HostBridge):
    """Bridge client for the helper's local HTTP endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_BRIDGE_URL,
        timeout: float = 120.0,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client_factory = client_factory
        self._request_count = 0

    async def _invoke(self, command: str, args: dict | None = None) -> Any:
        """Send one command and return the decoded ``result``."""
        self._request_count += 1
        payload = {"command": command, "args": args or {}}
        try:
            async with self._client_factory(timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/invoke", json=payload)
        except httpx.HTTPError as e:
            raise BridgeError(
                code="bridge.unreachable",
                message=f"Host helper unreachable: {e}",
                data={"command": command},
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != 200 or not isinstance(body, dict) or body.get("error"):
            error = body.get("error") if isinstance(body, dict) else None
            raise BridgeError(
                code="bridge.command_failed",
                message=error or f"HTTP {response.status_code}",
                data={"command": command, "status": response.status_code},
            )
        logger.debug(f"Bridge command {command} completed")
        return body.get("result")

    async def scan_junk(self) -> ScanResult:
        return ScanResult.from_dict(await self._invoke("scan_junk") or {})

    async def clean_items(self, paths: list[str]) -> CleanResult:
        data = await self._invoke("clean_items", {"paths": paths}) or {}
        return CleanResult(removed=int(data.get("removed", 0)), errors=tuple(data.get("errors", [])))

    async def scan_malware(self) -> MalwareResult:
        data = await self._invoke("scan_malware") or {}
        return MalwareResult(threats_found=tuple(data.get("threats_found", [])), status=data.get("status", ""))

    async def run_speed_task(self, task_id: str) -> SpeedTaskResult:
        data = await self._invoke("run_speed_task", {"taskId": task_id}) or {}
        return SpeedTaskResult(task=data.get("task", task_id), status=data.get("status", ""))

    async def scan_large_files(self) -> ScanResult:
        return ScanResult.from_dict(await self._invoke("scan_large_files") or {})

    async def schedule_task(self, cron: str, task_type: str) -> None:
        await self._invoke("schedule_task", {"cron": cron, "taskType": task_type})

    async def reset_context(self) -> dict[str, Any]:
        return await self._invoke("reset_context") or {}

    async def get_system_stats(self) -> SystemStats:
        data = await self._invoke("get_system_stats") or {}
        known = {"cpu_load", "memory_used", "memory_total"}
        return SystemStats(
            cpu_load=float(data.get("cpu_load", 0.0)),
            memory_used=int(data.get("memory_used", 0)),
            memory_total=int(data.get("memory_total", 0)),
            extra={k: v for k, v in data.items() if k not in known},
        )

    async def count_installed_apps(self) -> int:
        apps = await self._invoke("scan_apps") or []
        return len(apps)

    def get_stats(self) -> dict[str, Any]:
        return {"base_url": self.base_url, "request_count": self._request_count}
