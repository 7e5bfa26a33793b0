"""Alto: agent orchestration layer for an on-device Mac assistant."""

__version__ = "0.1.0"

from alto.config import AltoConfig, ProviderConfig, ProviderKind
from alto.engine import EngineLifecycleManager, EngineStatus
from alto.events import ProgressChannel, ProgressEvent
from alto.context import ConversationMessage, Role, SystemContextSnapshot, assemble_conversation
from alto.protocol import ExplicitAction, InferredAction, NoAction, ProtocolParser
from alto.bridge import HostBridge, HttpHostBridge
from alto.dispatcher import ActionDispatcher, ActionResult
from alto.alerts import ProactiveAlertScheduler, ProactiveAlert
from alto.health import ConnectionTester, ConnectionTestResult
from alto.service import AgentService, TurnResult

__all__ = [
    "AltoConfig",
    "ProviderConfig",
    "ProviderKind",
    "EngineLifecycleManager",
    "EngineStatus",
    "ProgressChannel",
    "ProgressEvent",
    "ConversationMessage",
    "Role",
    "SystemContextSnapshot",
    "assemble_conversation",
    "ExplicitAction",
    "InferredAction",
    "NoAction",
    "ProtocolParser",
    "HostBridge",
    "HttpHostBridge",
    "ActionDispatcher",
    "ActionResult",
    "ProactiveAlertScheduler",
    "ProactiveAlert",
    "ConnectionTester",
    "ConnectionTestResult",
    "AgentService",
    "TurnResult",
]
