"""Action dispatch: turn an action identifier into host bridge calls.

``execute()`` never raises. Bridge and handler failures come back as
``ActionResult(success=False)`` with the failure reason as the summary.

Dispatch table:
    navigate:<target>          acknowledgement only, no host call
    show_overview              synthesized from current telemetry
    scan_junk                  host scan
    clean_junk                 scans first when no junk result is held
    scan_malware               host scan
    optimize_speed             DNS flush + RAM free, attempted independently
    scan_large_files           host scan (alias: scan_heavy_files)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from alto.bridge import HostBridge, ScanResult
from alto.context import format_bytes
from alto.errors import BridgeError
from alto.telemetry import TelemetryStore

logger = logging.getLogger(__name__)

NAVIGATE_PREFIX = "navigate:"

ACTION_ALIASES = {
    "scan_heavy_files": "scan_large_files",
}


@dataclass(frozen=True)
class Suggestion:
    """Quick-reply affordance; advisory only, never executed automatically."""

    label: str
    action_id: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class ActionResult:
    action_id: str
    success: bool
    summary_text: str
    payload: Any = None
    step_log: tuple[str, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()


class ActionDispatcher:
    """Maps action identifiers to bridge calls and enforces preconditions."""

    def __init__(self, bridge: HostBridge, telemetry: TelemetryStore):
        self.bridge = bridge
        self.telemetry = telemetry
        self._handlers: dict[str, Callable[[], Awaitable[ActionResult]]] = {
            "show_overview": self._show_overview,
            "scan_junk": self._scan_junk,
            "clean_junk": self._clean_junk,
            "scan_malware": self._scan_malware,
            "optimize_speed": self._optimize_speed,
            "scan_large_files": self._scan_large_files,
        }
        self._dispatch_counts: dict[str, int] = {}

    @property
    def known_actions(self) -> list[str]:
        return sorted(self._handlers) + sorted(ACTION_ALIASES)

    async def execute(self, action_id: str) -> ActionResult:
        action_id = action_id.strip().lower()
        self._dispatch_counts[action_id] = self._dispatch_counts.get(action_id, 0) + 1
        logger.info(f"Dispatching action: {action_id}")
        try:
            if action_id.startswith(NAVIGATE_PREFIX):
                return self._navigate(action_id)
            handler = self._handlers.get(ACTION_ALIASES.get(action_id, action_id))
            if handler is None:
                return ActionResult(action_id, False, f"Unknown action: {action_id}")
            return await handler()
        except Exception as e:
            logger.error(f"Action {action_id} failed: {e}")
            reason = e.message if isinstance(e, BridgeError) else (str(e) or "Unknown error")
            return ActionResult(action_id, False, f"Failed: {reason}")

    def _navigate(self, action_id: str) -> ActionResult:
        target = action_id[len(NAVIGATE_PREFIX):]
        return ActionResult(
            action_id=action_id,
            success=True,
            summary_text=f"Navigating to {target}...",
            payload={"target": target},
            step_log=(
                "Parsing navigation request...",
                f"Locating module: {target}",
                "Redirecting user interface...",
            ),
        )

    async def _show_overview(self) -> ActionResult:
        snapshot = self.telemetry.snapshot()
        payload = {
            "cpu_load_percent": snapshot.cpu_load_percent,
            "memory_percent": snapshot.memory_percent,
            "memory_used": snapshot.memory_used,
            "memory_total": snapshot.memory_total,
            "junk_bytes": snapshot.last_junk_scan.total_bytes if snapshot.last_junk_scan else None,
            "large_file_bytes": (
                snapshot.last_large_file_scan.total_bytes if snapshot.last_large_file_scan else None
            ),
            "installed_app_count": snapshot.installed_app_count,
        }
        suggestions = ()
        if snapshot.last_junk_scan is None:
            suggestions = (Suggestion("Scan for junk", "scan_junk"),)
        return ActionResult(
            action_id="show_overview",
            success=True,
            summary_text="Here is your system overview:",
            payload=payload,
            step_log=(
                "Querying system stats (CPU, RAM)...",
                "Scanning essential folders...",
                "Compiling overview widget...",
            ),
            suggestions=suggestions,
        )

    async def _scan_junk(self) -> ActionResult:
        result = await self.bridge.scan_junk()
        self.telemetry.record_junk_scan(result)
        size = format_bytes(result.total_size_bytes)
        if result.items:
            suggestions = (
                Suggestion("Clean it up", "clean_junk"),
                Suggestion("Find large files", "scan_large_files"),
            )
        else:
            suggestions = (Suggestion("Check for malware", "scan_malware"),)
        return ActionResult(
            action_id="scan_junk",
            success=True,
            summary_text=f"I've finished scanning. Found {size} of junk files.",
            payload=result,
            step_log=(
                "Initializing junk scanner...",
                "Analyzing application caches...",
                "Checking system logs...",
                "Aggregating results...",
            ),
            suggestions=suggestions,
        )

    async def _clean_junk(self) -> ActionResult:
        steps = ["Checking for existing scan results..."]
        junk: ScanResult | None = self.telemetry.junk_result
        if junk is None or not junk.items:
            steps.append("No scan results held, scanning first...")
            junk = await self.bridge.scan_junk()
            self.telemetry.record_junk_scan(junk)
            if not junk.items:
                steps.append("No junk found, skipping cleanup.")
                return ActionResult(
                    action_id="clean_junk",
                    success=True,
                    summary_text="No junk files found. Your system is already clean!",
                    step_log=tuple(steps),
                )

        paths = [item.path for item in junk.items]
        steps.append(f"Removing {len(paths)} items...")
        cleaned = await self.bridge.clean_items(paths)
        self.telemetry.clear_junk()

        summary = f"Cleaned {cleaned.removed} items ({format_bytes(junk.total_size_bytes)} freed)."
        if cleaned.errors:
            summary += f" {len(cleaned.errors)} errors."
        return ActionResult(
            action_id="clean_junk",
            success=True,
            summary_text=summary,
            payload=cleaned,
            step_log=tuple(steps),
            suggestions=(Suggestion("Speed things up", "optimize_speed"),),
        )

    async def _scan_malware(self) -> ActionResult:
        result = await self.bridge.scan_malware()
        if not result.threats_found:
            summary = "No threats found. Your system is safe!"
            suggestions = (Suggestion("Scan for junk", "scan_junk"),)
        else:
            summary = f"{len(result.threats_found)} potential threat(s) detected."
            suggestions = (Suggestion("What should I do?", text="What should I do about these threats?"),)
        return ActionResult(
            action_id="scan_malware",
            success=True,
            summary_text=summary,
            payload=result,
            step_log=("Loading threat signatures...", "Scanning applications and launch agents..."),
            suggestions=suggestions,
        )

    async def _optimize_speed(self) -> ActionResult:
        statuses: dict[str, str] = {}
        ok = True
        for label, task_id in (("dns", "flush_dns"), ("ram", "free_ram")):
            try:
                statuses[label] = (await self.bridge.run_speed_task(task_id)).status
            except BridgeError as e:
                # One failed task must not stop the other from running
                ok = False
                statuses[label] = f"failed ({e.message})"
                logger.warning(f"Speed task {task_id} failed: {e}")
        return ActionResult(
            action_id="optimize_speed",
            success=ok,
            summary_text=f"DNS: {statuses['dns']} | RAM: {statuses['ram']}",
            payload=statuses,
            step_log=("Flushing DNS cache...", "Freeing inactive memory..."),
            suggestions=(Suggestion("Show overview", "show_overview"),) if ok else (),
        )

    async def _scan_large_files(self) -> ActionResult:
        result = await self.bridge.scan_large_files()
        self.telemetry.record_large_files_scan(result)
        return ActionResult(
            action_id="scan_large_files",
            success=True,
            summary_text=(
                f"Found {len(result.items)} large files ({format_bytes(result.total_size_bytes)} total)"
            ),
            payload={"item_count": len(result.items), "total_size_bytes": result.total_size_bytes},
            step_log=("Walking home folder...", "Ranking files by size..."),
            suggestions=(Suggestion("Open Space Lens", "navigate:space_lens"),) if result.items else (),
        )

    def get_stats(self) -> dict[str, Any]:
        return {"dispatch_counts": dict(self._dispatch_counts)}
