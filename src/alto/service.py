"""AgentService: the one object a host application talks to.

Owns the configuration, provider, engine, telemetry, dispatcher and
alert scheduler, all injected or built from ``AltoConfig``. A chat turn:

    prior messages
      -> assemble_conversation (fresh system message from telemetry)
      -> provider.send
      -> ProtocolParser.parse
      -> schedule hand-off (bridge.schedule_task per directive)
      -> ActionDispatcher.execute (at most one action, never on follow-ups)
      -> TurnResult

Only one turn runs at a time; a second ``chat()`` while one is in
flight is answered with a busy result instead of being queued.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from alto.alerts import ProactiveAlertScheduler
from alto.bridge import HostBridge
from alto.config import AltoConfig, ProviderConfig, ProviderKind
from alto.context import ConversationMessage, assemble_conversation, is_follow_up_turn
from alto.dispatcher import ActionDispatcher, ActionResult
from alto.engine import EngineLifecycleManager, PurgeOutcome
from alto.errors import AltoError
from alto.events import ProgressChannel
from alto.health import ConnectionTester, ConnectionTestResult
from alto.protocol import ActionMatch, NoAction, ProtocolParser, ScheduleDirective, strip_schedule_lines
from alto.providers import ClientFactory, ProviderAdapter, create_provider
from alto.telemetry import TelemetryRefresher, TelemetryStore

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "I'm still working on your last message. One moment!"
SCHEDULE_ACK = '(I have scheduled the task: "{task}" for you!)'

PROVIDER_LABELS = {
    ProviderKind.LOCAL: "Local engine",
    ProviderKind.NETWORK_LOCAL: "Ollama",
    ProviderKind.CLOUD: "OpenAI",
}


@dataclass
class TurnResult:
    """Outcome of one chat turn. ``error`` is set when the provider failed."""

    text: str
    action: ActionMatch = field(default_factory=NoAction)
    action_result: ActionResult | None = None
    schedules: tuple[ScheduleDirective, ...] = ()
    schedule_errors: tuple[str, ...] = ()
    follow_up: bool = False
    error: AltoError | None = None
    busy: bool = False


class AgentService:
    def __init__(
        self,
        config: AltoConfig,
        bridge: HostBridge,
        *,
        engine: EngineLifecycleManager | None = None,
        telemetry: TelemetryStore | None = None,
        parser: ProtocolParser | None = None,
        client_factory: ClientFactory = httpx.AsyncClient,
        config_path: Path | None = None,
    ):
        self.config = config
        self.bridge = bridge
        self.engine = engine or EngineLifecycleManager(model_name=config.provider.model)
        self.telemetry = telemetry or TelemetryStore(profile=config.profile)
        self.parser = parser or ProtocolParser()
        self.dispatcher = ActionDispatcher(bridge, self.telemetry)
        self.alerts = ProactiveAlertScheduler(self.telemetry, config.alerts, send=self._send_alert_prompt)
        self.refresher = TelemetryRefresher(
            self.telemetry, bridge, interval_seconds=config.bridge.telemetry_interval_seconds
        )
        self._client_factory = client_factory
        self._config_path = config_path
        self._provider: ProviderAdapter | None = None
        self._turn_in_flight = False
        self._turn_count = 0
        self._error_count = 0

    @property
    def progress(self) -> ProgressChannel:
        """Engine load progress; subscribe via listener or ``stream()``."""
        return self.engine.progress

    @property
    def provider(self) -> ProviderAdapter:
        """Adapter for the current config, built on first use.

        Raises:
            ConfigurationError: if the provider config is incomplete
        """
        if self._provider is None:
            self._provider = create_provider(self.config.provider, self.engine, self._client_factory)
        return self._provider

    @property
    def provider_label(self) -> str:
        return PROVIDER_LABELS.get(self.config.provider.kind, "provider")

    async def chat(self, messages: list[ConversationMessage]) -> TurnResult:
        """Run one conversation turn; never raises."""
        if self._turn_in_flight:
            logger.info("Rejected chat turn: another turn is in flight")
            return TurnResult(text=BUSY_MESSAGE, busy=True)

        self._turn_in_flight = True
        self._turn_count += 1
        try:
            return await self._run_turn(messages)
        finally:
            self._turn_in_flight = False

    async def _run_turn(self, messages: list[ConversationMessage]) -> TurnResult:
        follow_up = is_follow_up_turn(messages)
        conversation = assemble_conversation(self.telemetry.snapshot(), messages)

        try:
            raw = await self.provider.send(conversation)
        except AltoError as e:
            return self._failed_turn(e, follow_up)
        except Exception as e:  # noqa: BLE001
            return self._failed_turn(AltoError(code="provider.unexpected", message=str(e)), follow_up)

        parsed = self.parser.parse(raw, follow_up=follow_up)
        text = strip_schedule_lines(parsed.display_text)

        schedule_errors = []
        for directive in parsed.schedules:
            try:
                await self.bridge.schedule_task(directive.cron, directive.task)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Failed to schedule '{directive.task}': {e}")
                reason = e.message if isinstance(e, AltoError) else (str(e) or "Unknown error")
                schedule_errors.append(f"{directive.task}: {reason}")
                continue
            logger.info(f"Scheduled task '{directive.task}' ({directive.cron})")
            text = f"{text}\n\n{SCHEDULE_ACK.format(task=directive.task)}".strip()

        action_result = None
        if parsed.action_id and not follow_up:
            action_result = await self.dispatcher.execute(parsed.action_id)

        return TurnResult(
            text=text,
            action=parsed.action,
            action_result=action_result,
            schedules=parsed.schedules,
            schedule_errors=tuple(schedule_errors),
            follow_up=follow_up,
        )

    def _failed_turn(self, error: AltoError, follow_up: bool) -> TurnResult:
        self._error_count += 1
        logger.error(f"Chat turn failed: {error}")
        return TurnResult(
            text=f"Error connecting to {self.provider_label}. Please check your settings.",
            follow_up=follow_up,
            error=error,
        )

    async def _send_alert_prompt(self, messages: list[ConversationMessage]) -> str:
        return await self.provider.send(messages)

    async def save_config(self, provider_config: ProviderConfig) -> None:
        """Validate, persist and apply a new provider configuration.

        A ready local engine is unloaded before switching away from the
        local kind or to a different local model.

        Raises:
            ConfigurationError: if a required field is missing
        """
        provider_config.validate()
        old = self.config.provider
        if old.kind == ProviderKind.LOCAL and (
            provider_config.kind != ProviderKind.LOCAL or provider_config.model != old.model
        ):
            await self.engine.unload()

        if provider_config.kind == ProviderKind.LOCAL:
            self.engine.model_name = provider_config.model
        self.config.provider = provider_config
        self.config.save(self._config_path)
        self._provider = None
        logger.info(f"Provider config saved: {provider_config.kind.value} ({provider_config.model})")

    async def test_connection(self) -> ConnectionTestResult:
        """Probe the configured provider without touching conversation state."""
        try:
            provider = self.provider
        except AltoError as e:
            return ConnectionTestResult(ok=False, message=e.message, latency_ms=0.0)
        return await ConnectionTester(provider).test()

    async def reset_engine_cache(self) -> list[PurgeOutcome]:
        return await self.engine.reset_cache()

    async def reset_context(self) -> dict[str, Any]:
        """Reset the host context store and forget held scan results."""
        snapshot = await self.bridge.reset_context()
        self.telemetry.reset()
        logger.info("Context store reset")
        return snapshot

    async def notify_new_app(self, app_name: str):
        return await self.alerts.notify_new_app(app_name)

    async def start(self) -> None:
        """Start the background telemetry and alert loops."""
        await self.refresher.start()
        await self.alerts.start()

    async def stop(self) -> None:
        await self.alerts.stop()
        await self.refresher.stop()

    def get_stats(self) -> dict[str, Any]:
        return {
            "turns": self._turn_count,
            "errors": self._error_count,
            "provider": self._provider.get_stats() if self._provider else None,
            "engine": self.engine.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "alerts": self.alerts.get_stats(),
            "telemetry": self.refresher.get_stats(),
        }
