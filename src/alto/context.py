"""Conversation context assembly.

Every turn gets a freshly rendered system message built from a
``SystemContextSnapshot``; system messages already present in the
history are dropped, never reused. Rendering depends only on its inputs,
so the same snapshot and history always produce the same conversation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

# Marks a synthetic user-role notice that an action has already completed
FOLLOW_UP_PREFIX = "[Action completed]"

TURN_REINFORCEMENT = (
    "\n\n(Answer as Alto using the live system state. If an action is needed, "
    "put exactly one ACTION:<id> tag on its own line.)"
)

TOOL_MANIFEST = """
## Available Actions
  ACTION:scan_junk - Scan for system junk and cache files
  ACTION:clean_junk - Clean all found junk files (a confirmation is always shown first)
  ACTION:scan_malware - Run a security/malware scan
  ACTION:optimize_speed - Flush DNS cache and free up RAM
  ACTION:scan_large_files - Find large files taking up disk space
  ACTION:show_overview - Show a graphical system status widget
  ACTION:navigate:dashboard - Go to the Dashboard page
  ACTION:navigate:system_junk - Go to System Junk page
  ACTION:navigate:cleaner - Go to Mail Cleaner page

## Scheduling
To schedule a recurring task, add a line: SCHEDULE:<minute> <hour> <day> <month> <weekday> <task>
Example: SCHEDULE:0 9 * * 1 scan_junk

## Safety Rules (never violate)
1. Never delete files without user confirmation.
2. Never suggest deleting files in ~/Documents, ~/Desktop, ~/Downloads, ~/Pictures, ~/Movies, or ~/Music.
3. Never delete system files in /System, /usr, /bin, /sbin.
4. When asked to "clean", always run ACTION:scan_junk first.
5. Always explain what you found before suggesting any action.
6. If a request seems risky, warn the user first.

## Format Rules
- Put the ACTION tag on its own line: "ACTION:scan_junk"
- Do NOT use markdown code blocks for the action.
- Only use ONE action per response.
- Always explain what you're about to do before the ACTION tag.
"""

PERSONALITY = """## Your Personality
- You are warm, direct, and slightly witty, like a smart friend who happens to be a Mac expert.
- You speak in plain English, not tech jargon, unless the user asks for details.
- You proactively use the live system data above to give relevant, personalized advice.
- If the user asks "how is my Mac?", use the real numbers above.
- If RAM is above 80%, mention it. If junk is large, mention it.
- You remember everything said in this conversation."""


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationMessage":
        return cls(role=Role(data["role"]), text=data.get("content", data.get("text", "")))


@dataclass(frozen=True)
class ScanSummary:
    item_count: int
    total_bytes: int


@dataclass(frozen=True)
class SystemContextSnapshot:
    """Immutable per-turn view of live telemetry and the user profile."""

    cpu_load_percent: float | None
    memory_used: int | None
    memory_total: int | None
    last_junk_scan: ScanSummary | None
    last_large_file_scan: ScanSummary | None
    installed_app_count: int
    user_name: str
    user_role: str
    timestamp: datetime

    @property
    def memory_percent(self) -> float | None:
        if self.memory_used is None or not self.memory_total:
            return None
        return self.memory_used / self.memory_total * 100

    @property
    def total_clutter_bytes(self) -> int:
        junk = self.last_junk_scan.total_bytes if self.last_junk_scan else 0
        large = self.last_large_file_scan.total_bytes if self.last_large_file_scan else 0
        return junk + large


def format_bytes(size: int | float, decimals: int = 2) -> str:
    """Human-readable byte count (1024-based), e.g. ``1.5 GB``."""
    if not size or size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


def render_system_prompt(snapshot: SystemContextSnapshot, tool_manifest: str = TOOL_MANIFEST) -> str:
    """Render the system message for one turn."""
    if snapshot.user_name:
        greeting = (
            f"The user's name is **{snapshot.user_name}** ({snapshot.user_role}). "
            "Always address them by name when appropriate."
        )
    else:
        greeting = "The user has not set their name yet. You can suggest they set it in Settings."

    junk = snapshot.last_junk_scan
    junk_status = (
        f"Last scan found **{junk.item_count} junk items** totalling **{format_bytes(junk.total_bytes)}**."
        if junk
        else "No junk scan has been run yet this session."
    )
    large = snapshot.last_large_file_scan
    large_status = (
        f"Large files scan found **{large.item_count} items** totalling **{format_bytes(large.total_bytes)}**."
        if large
        else "No large files scan has been run yet."
    )

    cpu = f"{snapshot.cpu_load_percent:.1f}" if snapshot.cpu_load_percent is not None else "unknown"
    mem_pct = snapshot.memory_percent
    if mem_pct is not None:
        ram = (
            f"{format_bytes(snapshot.memory_used)} used / {format_bytes(snapshot.memory_total)} total "
            f"({mem_pct:.1f}% full)"
        )
    else:
        ram = "unknown"
    apps = snapshot.installed_app_count if snapshot.installed_app_count > 0 else "not yet scanned"
    clutter = format_bytes(snapshot.total_clutter_bytes) if snapshot.total_clutter_bytes > 0 else "none detected yet"

    return "\n".join([
        "You are **Alto**, an intelligent, friendly, and safety-first Mac system agent. "
        "You have real-time access to this Mac's system state.",
        "",
        "## User Profile",
        greeting,
        f"Current time: {snapshot.timestamp.strftime('%Y-%m-%d %H:%M')}",
        "",
        "## Live System State (as of right now)",
        f"- **CPU Load**: {cpu}%",
        f"- **RAM**: {ram}",
        f"- **Installed Apps**: {apps}",
        f"- **Junk Files**: {junk_status}",
        f"- **Large Files**: {large_status}",
        f"- **Total Clutter**: {clutter}",
        "",
        PERSONALITY,
        tool_manifest,
    ])


def is_follow_up_notice(message: ConversationMessage) -> bool:
    return message.role == Role.USER and message.text.startswith(FOLLOW_UP_PREFIX)


def is_follow_up_turn(messages: list[ConversationMessage]) -> bool:
    """A follow-up turn answers a synthetic notice that an action already ran."""
    history = [m for m in messages if m.role != Role.SYSTEM]
    return bool(history) and is_follow_up_notice(history[-1])


def follow_up_notice(action_id: str, summary: str) -> ConversationMessage:
    """Build the synthetic notice a caller appends after an action completes."""
    return ConversationMessage(Role.USER, f"{FOLLOW_UP_PREFIX} {action_id}: {summary}")


def assemble_conversation(
    snapshot: SystemContextSnapshot,
    prior_messages: list[ConversationMessage],
    tool_manifest: str = TOOL_MANIFEST,
) -> list[ConversationMessage]:
    """Build the conversation sent to the provider for this turn.

    Drops system messages from history, copies the rest, reinforces the
    final user message (unless it is a follow-up notice) and prepends one
    freshly rendered system message.
    """
    history = [replace(m) for m in prior_messages if m.role != Role.SYSTEM]
    if history and history[-1].role == Role.USER and not is_follow_up_notice(history[-1]):
        history[-1] = replace(history[-1], text=history[-1].text + TURN_REINFORCEMENT)
    system = ConversationMessage(Role.SYSTEM, render_system_prompt(snapshot, tool_manifest))
    return [system] + history
