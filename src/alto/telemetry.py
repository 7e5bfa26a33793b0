"""Telemetry store: last known system stats, scan results and user profile.

The store only holds state; ``snapshot()`` turns it into the immutable
``SystemContextSnapshot`` that context assembly consumes each turn.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

from alto.bridge import HostBridge, ScanResult, SystemStats
from alto.config import UserProfile
from alto.context import ScanSummary, SystemContextSnapshot
from alto.errors import BridgeError

logger = logging.getLogger(__name__)


def _summary(result: ScanResult | None) -> ScanSummary | None:
    if result is None:
        return None
    return ScanSummary(item_count=len(result.items), total_bytes=result.total_size_bytes)


class TelemetryStore:
    """Mutable holder read by the assembler, dispatcher and alert scheduler."""

    def __init__(
        self,
        profile: UserProfile | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.profile = profile or UserProfile()
        self.system_stats: SystemStats | None = None
        self.junk_result: ScanResult | None = None
        self.large_files_result: ScanResult | None = None
        self.installed_app_count: int = 0
        self._now = now

    def record_junk_scan(self, result: ScanResult) -> None:
        self.junk_result = result

    def record_large_files_scan(self, result: ScanResult) -> None:
        self.large_files_result = result

    def clear_junk(self) -> None:
        self.junk_result = None

    def reset(self) -> None:
        """Forget all scan results and stats (profile is kept)."""
        self.system_stats = None
        self.junk_result = None
        self.large_files_result = None
        self.installed_app_count = 0

    @property
    def junk_bytes(self) -> int:
        return self.junk_result.total_size_bytes if self.junk_result else 0

    def snapshot(self) -> SystemContextSnapshot:
        stats = self.system_stats
        return SystemContextSnapshot(
            cpu_load_percent=stats.cpu_load if stats else None,
            memory_used=stats.memory_used if stats else None,
            memory_total=stats.memory_total if stats else None,
            last_junk_scan=_summary(self.junk_result),
            last_large_file_scan=_summary(self.large_files_result),
            installed_app_count=self.installed_app_count,
            user_name=self.profile.name,
            user_role=self.profile.role,
            timestamp=self._now(),
        )

    async def refresh(self, bridge: HostBridge, include_apps: bool = False) -> None:
        """Pull fresh stats (and optionally the app count) from the bridge."""
        self.system_stats = await bridge.get_system_stats()
        if include_apps:
            self.installed_app_count = await bridge.count_installed_apps()


class TelemetryRefresher:
    """Background loop that keeps the store's stats current."""

    def __init__(self, store: TelemetryStore, bridge: HostBridge, interval_seconds: float = 5.0):
        self.store = store
        self.bridge = bridge
        self.interval_seconds = interval_seconds
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._failures = 0

    async def _refresh_loop(self) -> None:
        first = True
        while self._running:
            try:
                await self.store.refresh(self.bridge, include_apps=first)
                first = False
                self._failures = 0
            except asyncio.CancelledError:
                break
            except BridgeError as e:
                self._failures += 1
                logger.warning(f"Telemetry refresh failed: {e}")
            except Exception as e:
                self._failures += 1
                logger.error(f"Telemetry refresher error: {e}")
            await asyncio.sleep(self.interval_seconds)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._refresh_loop())
        logger.info("Telemetry refresher started")

    async def stop(self) -> None:
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Telemetry refresher stopped")

    def get_stats(self) -> dict[str, Any]:
        return {"running": self._running, "consecutive_failures": self._failures}
