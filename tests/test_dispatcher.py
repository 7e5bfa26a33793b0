"""Tests for alto.dispatcher: action dispatch against the host bridge."""

import pytest

from alto.bridge import MalwareResult, ScannedItem, ScanResult
from alto.dispatcher import ActionDispatcher


@pytest.fixture
def dispatcher(bridge, telemetry):
    return ActionDispatcher(bridge, telemetry)


class TestCleanJunk:
    """clean_junk precondition handling."""

    @pytest.mark.asyncio
    async def test_nothing_to_clean_skips_clean_call(self, dispatcher, bridge):
        result = await dispatcher.execute("clean_junk")
        assert result.success is True
        assert "already clean" in result.summary_text
        assert bridge.called("scan_junk") == 1
        assert bridge.called("clean_items") == 0

    @pytest.mark.asyncio
    async def test_scans_first_when_no_result_held(self, dispatcher, bridge, telemetry, make_junk):
        bridge.junk = make_junk(1024, 2048)
        result = await dispatcher.execute("clean_junk")
        assert result.success is True
        assert [name for name, _ in bridge.calls] == ["scan_junk", "clean_items"]
        assert bridge.calls[1][1][0] == (
            "/Users/test/Library/Caches/item0",
            "/Users/test/Library/Caches/item1",
        )
        assert "Cleaned 2 items" in result.summary_text
        assert telemetry.junk_result is None

    @pytest.mark.asyncio
    async def test_uses_held_scan_result(self, dispatcher, bridge, telemetry, make_junk):
        telemetry.record_junk_scan(make_junk(4096))
        result = await dispatcher.execute("clean_junk")
        assert result.success is True
        assert bridge.called("scan_junk") == 0
        assert bridge.called("clean_items") == 1

    @pytest.mark.asyncio
    async def test_clean_failure_reported(self, dispatcher, bridge, telemetry, make_junk):
        telemetry.record_junk_scan(make_junk(4096))
        bridge.fail = {"clean_items"}
        result = await dispatcher.execute("clean_junk")
        assert result.success is False
        assert result.summary_text == "Failed: clean_items exploded"
        assert telemetry.junk_result is not None


class TestScans:
    @pytest.mark.asyncio
    async def test_scan_junk_records_result(self, dispatcher, bridge, telemetry, make_junk):
        bridge.junk = make_junk(1024 * 1024)
        result = await dispatcher.execute("scan_junk")
        assert result.success is True
        assert "1 MB" in result.summary_text
        assert telemetry.junk_bytes == 1024 * 1024
        assert result.suggestions[0].action_id == "clean_junk"
        assert result.step_log[0] == "Initializing junk scanner..."

    @pytest.mark.asyncio
    async def test_scan_malware_clean(self, dispatcher):
        result = await dispatcher.execute("scan_malware")
        assert result.summary_text == "No threats found. Your system is safe!"

    @pytest.mark.asyncio
    async def test_scan_malware_threats(self, dispatcher, bridge):
        bridge.malware = MalwareResult(threats_found=("Adware.Genieo",), status="threats")
        result = await dispatcher.execute("scan_malware")
        assert result.success is True
        assert result.summary_text == "1 potential threat(s) detected."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action_id", ["scan_large_files", "scan_heavy_files"])
    async def test_large_file_alias_normalizes(self, dispatcher, bridge, telemetry, action_id):
        bridge.large_files = ScanResult(
            items=(ScannedItem(path="/Users/test/Movies/big.mov", size_bytes=3 * 1024**3),),
            total_size_bytes=3 * 1024**3,
        )
        result = await dispatcher.execute(action_id)
        assert result.success is True
        assert result.payload == {"item_count": 1, "total_size_bytes": 3 * 1024**3}
        assert bridge.called("scan_large_files") == 1
        assert telemetry.large_files_result is bridge.large_files


class TestOptimizeSpeed:
    @pytest.mark.asyncio
    async def test_both_tasks_run(self, dispatcher, bridge):
        result = await dispatcher.execute("optimize_speed")
        assert result.success is True
        assert result.summary_text == "DNS: done | RAM: done"
        assert [args for name, args in bridge.calls] == [("flush_dns",), ("free_ram",)]

    @pytest.mark.asyncio
    async def test_dns_failure_still_frees_ram(self, dispatcher, bridge):
        bridge.fail = {"run_speed_task:flush_dns"}
        result = await dispatcher.execute("optimize_speed")
        assert result.success is False
        assert bridge.called("run_speed_task") == 2
        assert result.summary_text == "DNS: failed (flush_dns denied) | RAM: done"


class TestDispatchTable:
    @pytest.mark.asyncio
    async def test_unknown_action(self, dispatcher):
        result = await dispatcher.execute("launch_rockets")
        assert result.success is False
        assert result.summary_text == "Unknown action: launch_rockets"

    @pytest.mark.asyncio
    async def test_navigate_makes_no_host_call(self, dispatcher, bridge):
        result = await dispatcher.execute("navigate:settings")
        assert result.success is True
        assert result.payload == {"target": "settings"}
        assert bridge.calls == []

    @pytest.mark.asyncio
    async def test_show_overview_from_telemetry(self, dispatcher, bridge, telemetry):
        telemetry.system_stats = bridge.stats
        result = await dispatcher.execute("show_overview")
        assert result.success is True
        assert result.payload["cpu_load_percent"] == 12.5
        assert result.payload["memory_percent"] == 50.0
        assert result.payload["junk_bytes"] is None
        assert bridge.calls == []

    @pytest.mark.asyncio
    async def test_identifier_case_normalized(self, dispatcher, bridge):
        await dispatcher.execute("SCAN_JUNK")
        assert bridge.called("scan_junk") == 1

    @pytest.mark.asyncio
    async def test_bridge_failure_never_raises(self, dispatcher, bridge):
        bridge.fail = {"scan_junk"}
        result = await dispatcher.execute("scan_junk")
        assert result.success is False
        assert result.summary_text.startswith("Failed:")

    def test_known_actions(self, dispatcher):
        assert "clean_junk" in dispatcher.known_actions
        assert "scan_heavy_files" in dispatcher.known_actions

    @pytest.mark.asyncio
    async def test_stats_count_dispatches(self, dispatcher):
        await dispatcher.execute("navigate:dashboard")
        assert dispatcher.get_stats()["dispatch_counts"] == {"navigate:dashboard": 1}
