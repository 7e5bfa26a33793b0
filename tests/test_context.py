"""Tests for alto.context: conversation assembly and prompt rendering."""

from datetime import datetime

import pytest

from alto.context import (
    FOLLOW_UP_PREFIX,
    TURN_REINFORCEMENT,
    ConversationMessage,
    Role,
    ScanSummary,
    SystemContextSnapshot,
    assemble_conversation,
    follow_up_notice,
    format_bytes,
    is_follow_up_turn,
    render_system_prompt,
)


def snapshot(**overrides):
    values = dict(
        cpu_load_percent=42.0,
        memory_used=12 * 1024**3,
        memory_total=16 * 1024**3,
        last_junk_scan=ScanSummary(item_count=3, total_bytes=1536 * 1024**2),
        last_large_file_scan=None,
        installed_app_count=87,
        user_name="Sam",
        user_role="Designer",
        timestamp=datetime(2025, 3, 14, 9, 30),
    )
    values.update(overrides)
    return SystemContextSnapshot(**values)


class TestFormatBytes:
    @pytest.mark.parametrize(
        "size,text",
        [
            (0, "0 B"),
            (512, "512 B"),
            (1024, "1 KB"),
            (1536 * 1024**2, "1.5 GB"),
            (1024**3 - 1, "1024 MB"),
        ],
    )
    def test_format(self, size, text):
        assert format_bytes(size) == text


class TestRenderSystemPrompt:
    def test_deterministic(self):
        assert render_system_prompt(snapshot()) == render_system_prompt(snapshot())

    def test_contains_live_state(self):
        prompt = render_system_prompt(snapshot())
        assert "**CPU Load**: 42.0%" in prompt
        assert "75.0% full" in prompt
        assert "**3 junk items** totalling **1.5 GB**" in prompt
        assert "**Installed Apps**: 87" in prompt
        assert "Current time: 2025-03-14 09:30" in prompt
        assert "**Sam** (Designer)" in prompt
        assert "ACTION:scan_junk" in prompt

    def test_unknown_values(self):
        prompt = render_system_prompt(
            snapshot(cpu_load_percent=None, memory_used=None, last_junk_scan=None, installed_app_count=0, user_name="")
        )
        assert "**CPU Load**: unknown%" in prompt
        assert "**RAM**: unknown" in prompt
        assert "No junk scan has been run yet" in prompt
        assert "not yet scanned" in prompt
        assert "has not set their name" in prompt

    def test_custom_manifest(self):
        assert render_system_prompt(snapshot(), tool_manifest="## Tools\nnone").endswith("## Tools\nnone")


class TestAssembleConversation:
    def test_prepends_fresh_system_and_drops_old(self):
        history = [
            ConversationMessage(Role.SYSTEM, "old system"),
            ConversationMessage(Role.USER, "Hi"),
        ]
        conversation = assemble_conversation(snapshot(), history)
        assert [m.role for m in conversation] == [Role.SYSTEM, Role.USER]
        assert conversation[0].text == render_system_prompt(snapshot())
        assert sum(1 for m in conversation if m.role == Role.SYSTEM) == 1

    def test_reinforces_final_user_message(self):
        history = [ConversationMessage(Role.USER, "How is my Mac?")]
        conversation = assemble_conversation(snapshot(), history)
        assert conversation[-1].text == "How is my Mac?" + TURN_REINFORCEMENT
        assert history[0].text == "How is my Mac?"

    def test_follow_up_notice_not_reinforced(self):
        notice = follow_up_notice("scan_junk", "Found 1.5 GB of junk files.")
        conversation = assemble_conversation(snapshot(), [ConversationMessage(Role.USER, "scan"), notice])
        assert conversation[-1].text == notice.text
        assert notice.text.startswith(FOLLOW_UP_PREFIX)

    def test_only_final_user_message_reinforced(self):
        history = [
            ConversationMessage(Role.USER, "first"),
            ConversationMessage(Role.ASSISTANT, "reply"),
        ]
        conversation = assemble_conversation(snapshot(), history)
        assert conversation[1].text == "first"
        assert conversation[2].text == "reply"

    def test_is_follow_up_turn(self):
        assert is_follow_up_turn([follow_up_notice("scan_junk", "done")])
        assert not is_follow_up_turn([ConversationMessage(Role.USER, "hello")])
        assert not is_follow_up_turn([])

    def test_message_dict_roundtrip(self):
        message = ConversationMessage(Role.ASSISTANT, "hello")
        assert message.to_dict() == {"role": "assistant", "content": "hello"}
        assert ConversationMessage.from_dict(message.to_dict()) == message
