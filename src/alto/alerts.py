"""Proactive alerts: periodic, cooldown-gated nudges from the assistant.

On each tick the scheduler evaluates triggers in priority order
(high CPU, then accumulated junk). The first trigger whose condition
holds fires one alert, provided the global cooldown has elapsed; the
rest are skipped for that tick. A suppressed attempt leaves the
cooldown timestamp untouched.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from alto.config import AlertConfig
from alto.context import ConversationMessage, Role, format_bytes
from alto.protocol import strip_action_tags
from alto.telemetry import TelemetryStore

logger = logging.getLogger(__name__)

TRIGGER_HIGH_CPU = "high_cpu"
TRIGGER_HIGH_JUNK = "high_junk"
TRIGGER_NEW_APP = "new_app"

ALERT_SYSTEM_PROMPT = "You are Alto. You speak briefly, wittily, and helpfully. Do NOT include any ACTION tags."

FALLBACK_MESSAGES = {
    TRIGGER_HIGH_CPU: "Your CPU is running hot at {cpu}%. Want me to take a look?",
    TRIGGER_HIGH_JUNK: "I'm carrying {junk} of junk files. Shall I clean them up?",
    TRIGGER_NEW_APP: "I noticed you just installed **{app}**. Shall I scan it for hidden junk or leftovers?",
}


@dataclass
class AlertCooldown:
    """Minimum spacing between any two alerts, shared by all triggers."""

    window_seconds: float
    last_fired_at: float | None = None

    def ready(self, now: float) -> bool:
        return self.last_fired_at is None or now - self.last_fired_at >= self.window_seconds

    def mark(self, now: float) -> None:
        self.last_fired_at = now


@dataclass(frozen=True)
class AlertTrigger:
    """A named condition; ``check`` returns prompt data when it holds."""

    code: str
    check: Callable[[TelemetryStore], dict[str, Any] | None]


@dataclass(frozen=True)
class ProactiveAlert:
    code: str
    text: str
    data: dict[str, Any] = field(default_factory=dict)
    fired_at: float = field(default_factory=time.time)


def sanitize_app_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9 _-]", "", name)[:50]


def default_triggers(config: AlertConfig) -> list[AlertTrigger]:
    """High CPU first, then accumulated junk."""

    def high_cpu(store: TelemetryStore) -> dict[str, Any] | None:
        stats = store.system_stats
        if stats and stats.cpu_load > config.cpu_threshold_percent:
            return {"cpu": stats.cpu_load}
        return None

    def high_junk(store: TelemetryStore) -> dict[str, Any] | None:
        if store.junk_bytes > config.junk_threshold_bytes:
            return {"junk_size": store.junk_bytes}
        return None

    return [AlertTrigger(TRIGGER_HIGH_CPU, high_cpu), AlertTrigger(TRIGGER_HIGH_JUNK, high_junk)]


def build_alert_prompt(code: str, data: dict[str, Any]) -> str:
    if code == TRIGGER_NEW_APP:
        return (
            f'User installed a new app: "{data["app_name"]}".\n'
            "Task: Write a short, witty, 1-sentence message asking if they want me to scan it.\n"
            "Tone: Helpful but slightly sassy system assistant."
        )
    if code == TRIGGER_HIGH_CPU:
        return (
            f"CPU usage is high ({data['cpu']:.1f}%).\n"
            "Task: Write a short, dramatic 1-sentence complaint about heat.\n"
            "Tone: Overworked computer."
        )
    if code == TRIGGER_HIGH_JUNK:
        return (
            f"I found junk files ({format_bytes(data['junk_size'])}).\n"
            "Task: Write a short, heavy-breathing 1-sentence message about feeling heavy.\n"
            "Tone: Exhausted."
        )
    raise ValueError(f"Unknown alert trigger: {code}")


def fallback_message(code: str, data: dict[str, Any]) -> str:
    return FALLBACK_MESSAGES[code].format(
        cpu=f"{data.get('cpu', 0):.0f}",
        junk=format_bytes(data.get("junk_size", 0)),
        app=data.get("app_name", "a new app"),
    )


def clean_alert_text(text: str) -> str:
    """Strip tags, wrapping quotes and a leading speaker label."""
    text = strip_action_tags(text).strip()
    text = re.sub(r"^[\"']|[\"']$", "", text)
    return re.sub(r"^Alto: ", "", text).strip()


SendFn = Callable[[list[ConversationMessage]], Awaitable[str]]


class ProactiveAlertScheduler:
    """Fixed-interval loop that emits at most one alert per cooldown window."""

    def __init__(
        self,
        telemetry: TelemetryStore,
        config: AlertConfig | None = None,
        send: SendFn | None = None,
        triggers: list[AlertTrigger] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.telemetry = telemetry
        self.config = config or AlertConfig()
        self.cooldown = AlertCooldown(window_seconds=self.config.cooldown_seconds)
        self.triggers = triggers if triggers is not None else default_triggers(self.config)
        self._send = send
        self._clock = clock
        self._listeners: list[Callable[[ProactiveAlert], Any]] = []
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._fired: list[ProactiveAlert] = []
        self._suppressed = 0

    def add_listener(self, callback: Callable[[ProactiveAlert], Any]) -> None:
        """Register a sink for emitted alerts. callback(alert)"""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    async def tick(self) -> ProactiveAlert | None:
        """Evaluate triggers once; fire at most one alert."""
        for trigger in self.triggers:
            data = trigger.check(self.telemetry)
            if data is None:
                continue
            return await self._fire(trigger.code, data)
        return None

    async def notify_new_app(self, app_name: str) -> ProactiveAlert | None:
        """Alert about a newly installed app (same cooldown as periodic alerts)."""
        return await self._fire(TRIGGER_NEW_APP, {"app_name": sanitize_app_name(app_name) or "Unknown App"})

    async def _fire(self, code: str, data: dict[str, Any]) -> ProactiveAlert | None:
        now = self._clock()
        if not self.cooldown.ready(now):
            self._suppressed += 1
            logger.debug(f"Alert '{code}' suppressed by cooldown")
            return None
        # Claim the window before awaiting the provider so no other trigger slips in
        self.cooldown.mark(now)

        text = await self._generate_text(code, data)
        alert = ProactiveAlert(code=code, text=text, data=data)
        self._fired.append(alert)
        logger.info(f"Proactive alert fired: {code}")
        for listener in list(self._listeners):
            try:
                result = listener(alert)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning(f"Alert listener error: {e}")
        return alert

    async def _generate_text(self, code: str, data: dict[str, Any]) -> str:
        if self._send is None:
            return fallback_message(code, data)
        messages = [
            ConversationMessage(Role.SYSTEM, ALERT_SYSTEM_PROMPT),
            ConversationMessage(Role.USER, build_alert_prompt(code, data)),
        ]
        try:
            text = clean_alert_text(await self._send(messages))
        except Exception as e:
            logger.warning(f"Failed to generate proactive alert text: {e}")
            return fallback_message(code, data)
        return text or fallback_message(code, data)

    async def _process_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self.config.check_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Alert scheduler error: {e}")
                await asyncio.sleep(self.config.check_interval_seconds)

    async def start(self) -> None:
        """Start the periodic alert loop."""
        if self._running or not self.config.enabled:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._process_loop())
        logger.info("Proactive alert scheduler started")

    async def stop(self) -> None:
        """Stop the periodic alert loop."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Proactive alert scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "fired": len(self._fired),
            "suppressed": self._suppressed,
            "last_fired_at": self.cooldown.last_fired_at,
            "cooldown_seconds": self.cooldown.window_seconds,
        }
