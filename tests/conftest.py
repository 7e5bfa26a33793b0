"""Shared test fixtures for the Alto test suite."""

from datetime import datetime

import pytest

from alto.bridge import CleanResult, HostBridge, MalwareResult, ScannedItem, ScanResult, SpeedTaskResult, SystemStats
from alto.config import UserProfile
from alto.errors import BridgeError
from alto.telemetry import TelemetryStore

FIXED_NOW = datetime(2025, 3, 14, 9, 30)


class RecordingBridge(HostBridge):
    """In-memory host bridge that records every command it receives.

    Set ``fail`` to a command name (or set of names) to make it raise
    ``BridgeError``.
    """

    def __init__(self):
        self.calls: list[tuple[str, tuple]] = []
        self.junk = ScanResult()
        self.large_files = ScanResult()
        self.malware = MalwareResult(threats_found=(), status="clean")
        self.stats = SystemStats(cpu_load=12.5, memory_used=8 * 1024**3, memory_total=16 * 1024**3)
        self.apps: list[str] = []
        self.fail: set[str] = set()

    def _record(self, command: str, *args):
        self.calls.append((command, args))
        if command in self.fail:
            raise BridgeError(code="bridge.command_failed", message=f"{command} exploded")

    def called(self, command: str) -> int:
        return sum(1 for name, _ in self.calls if name == command)

    async def scan_junk(self) -> ScanResult:
        self._record("scan_junk")
        return self.junk

    async def clean_items(self, paths: list[str]) -> CleanResult:
        self._record("clean_items", tuple(paths))
        return CleanResult(removed=len(paths))

    async def scan_malware(self) -> MalwareResult:
        self._record("scan_malware")
        return self.malware

    async def run_speed_task(self, task_id: str) -> SpeedTaskResult:
        self._record("run_speed_task", task_id)
        if f"run_speed_task:{task_id}" in self.fail:
            raise BridgeError(code="bridge.command_failed", message=f"{task_id} denied")
        return SpeedTaskResult(task=task_id, status="done")

    async def scan_large_files(self) -> ScanResult:
        self._record("scan_large_files")
        return self.large_files

    async def schedule_task(self, cron: str, task_type: str) -> None:
        self._record("schedule_task", cron, task_type)

    async def reset_context(self) -> dict:
        self._record("reset_context")
        return {"junk": None}

    async def get_system_stats(self) -> SystemStats:
        self._record("get_system_stats")
        return self.stats

    async def count_installed_apps(self) -> int:
        self._record("count_installed_apps")
        return len(self.apps)


def _junk_result(*sizes: int) -> ScanResult:
    items = tuple(
        ScannedItem(path=f"/Users/test/Library/Caches/item{i}", size_bytes=size, category_name="User Caches")
        for i, size in enumerate(sizes)
    )
    return ScanResult(items=items, total_size_bytes=sum(sizes))


@pytest.fixture
def make_junk():
    """Build a junk scan result with one cache item per size."""
    return _junk_result


@pytest.fixture
def bridge():
    """Provide a recording in-memory host bridge."""
    return RecordingBridge()


@pytest.fixture
def telemetry():
    """Provide a telemetry store with a fixed clock."""
    return TelemetryStore(profile=UserProfile(name="Sam", role="Designer"), now=lambda: FIXED_NOW)


@pytest.fixture
def config_path(tmp_path):
    """Provide a config file location inside a temporary directory."""
    return tmp_path / "alto" / "config.json"
