"""Text tool-invocation protocol: action tags, keyword fallback, schedule lines.

Model replies are free-form text. An action is requested with an
``ACTION:<id>`` tag anywhere in the reply; the first tag wins. When a
reply has no tag, a keyword fallback may infer a default action from the
prose ("compliance rescue"), since small models often describe an action
without emitting the tag. The fallback never overrides a real tag and is
never consulted on a follow-up turn.

Schedule requests are ``SCHEDULE:<5 cron fields> <task text>`` lines and
are parsed independently of the action.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Union

logger = logging.getLogger(__name__)

# Emphasis markers a model may wrap around the tag: **ACTION:x**, **Action:** x, `ACTION: x`
_EMPHASIS = r"[*_`~]*"
ACTION_PATTERN = re.compile(
    rf"{_EMPHASIS}(?<![A-Za-z0-9])ACTION{_EMPHASIS}\s*:{_EMPHASIS}\s*{_EMPHASIS}([A-Za-z0-9_:]+){_EMPHASIS}",
    re.IGNORECASE,
)
SCHEDULE_MARKER = "SCHEDULE:"


@dataclass(frozen=True)
class NoAction:
    pass


@dataclass(frozen=True)
class ExplicitAction:
    action_id: str


@dataclass(frozen=True)
class InferredAction:
    action_id: str
    matched_phrase: str


ActionMatch = Union[NoAction, ExplicitAction, InferredAction]


@dataclass(frozen=True)
class ScheduleDirective:
    cron: str       # exactly 5 whitespace-separated fields
    task: str


@dataclass(frozen=True)
class ParsedReply:
    action: ActionMatch
    schedules: tuple[ScheduleDirective, ...]
    display_text: str  # action tags removed; schedule lines still present

    @property
    def action_id(self) -> str | None:
        return None if isinstance(self.action, NoAction) else self.action.action_id


@dataclass(frozen=True)
class FallbackRule:
    phrases: tuple[str, ...]
    action_id: str


# Ordered: the first rule with any matching phrase wins.
DEFAULT_FALLBACK_RULES: tuple[FallbackRule, ...] = (
    FallbackRule(phrases=("junk", "scan"), action_id="scan_junk"),
    FallbackRule(phrases=("overview", "status"), action_id="show_overview"),
)


class KeywordFallback:
    """Infer an action from prose using an explicit phrase table."""

    def __init__(self, rules: tuple[FallbackRule, ...] = DEFAULT_FALLBACK_RULES):
        self.rules = rules

    def infer(self, text: str) -> InferredAction | None:
        lowered = text.lower()
        for rule in self.rules:
            for phrase in rule.phrases:
                if phrase in lowered:
                    return InferredAction(action_id=rule.action_id, matched_phrase=phrase)
        return None


def find_action_tag(text: str) -> str | None:
    """Return the first action identifier in the text, lowercased."""
    match = ACTION_PATTERN.search(text)
    if not match:
        return None
    action_id = match.group(1).strip("_:").lower()
    return action_id or None


def strip_action_tags(text: str) -> str:
    """Remove every action tag and tidy the whitespace left behind."""
    stripped = ACTION_PATTERN.sub("", text)
    lines = [line.rstrip() for line in stripped.splitlines()]
    cleaned = "\n".join(lines)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def parse_schedule_lines(text: str) -> list[ScheduleDirective]:
    """Extract every well-formed SCHEDULE line."""
    directives = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(SCHEDULE_MARKER):
            continue
        parts = line[len(SCHEDULE_MARKER):].split()
        if len(parts) < 6:
            logger.debug(f"Ignoring malformed schedule line: {line!r}")
            continue
        directives.append(ScheduleDirective(cron=" ".join(parts[:5]), task=" ".join(parts[5:])))
    return directives


def strip_schedule_lines(text: str) -> str:
    """Drop SCHEDULE lines so they never reach the displayed text."""
    kept = [line for line in text.splitlines() if not line.strip().startswith(SCHEDULE_MARKER)]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(kept)).strip()


@dataclass
class ProtocolParser:
    """Two-stage action extraction plus schedule parsing."""

    fallback: KeywordFallback | None = field(default_factory=KeywordFallback)

    def parse(self, text: str, follow_up: bool = False) -> ParsedReply:
        action: ActionMatch = NoAction()
        action_id = find_action_tag(text)
        if action_id:
            action = ExplicitAction(action_id)
        elif not follow_up and self.fallback is not None:
            inferred = self.fallback.infer(strip_schedule_lines(text))
            if inferred:
                logger.info(f"No action tag; inferred {inferred.action_id} from '{inferred.matched_phrase}'")
                action = inferred

        return ParsedReply(
            action=action,
            schedules=tuple(parse_schedule_lines(text)),
            display_text=strip_action_tags(text),
        )
