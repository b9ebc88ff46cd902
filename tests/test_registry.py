"""Tests for the capability registry and its filesystem manifest store."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from toolsmith.core.types import ShareMode
from toolsmith.exceptions import (
    DuplicateToolError,
    LoadExhaustedError,
    ToolNotFoundError,
    ToolQuarantinedError,
)
from toolsmith.registry import CapabilityRegistry, find_similar_names, similarity_score


def _registry(store, sandbox, registry_settings, **overrides) -> CapabilityRegistry:
    settings = registry_settings.model_copy(update=overrides)
    return CapabilityRegistry(store, sandbox, settings)


# =====================================================================
# Registration and persistence
# =====================================================================


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_persists_code_and_manifest(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")

        assert manifest.tool_name == "add_numbers"
        assert manifest.created_by == "agent-1"
        assert manifest.manifest_key == f"agent-1/add_numbers_{manifest.content_hash}"
        assert manifest.usage_count == 0
        assert manifest.template_used == "calculator"

        code_path = Path(manifest.code_location)
        assert code_path.parent == store.code_dir
        assert code_path.name.startswith("agent-1_add_numbers_")
        assert code_path.name.endswith(f"_{manifest.content_hash}.py")
        assert (store.manifests_dir / f"{manifest.manifest_key}.json").exists()

    @pytest.mark.asyncio
    async def test_manifest_survives_reload(self, registry, store, sandbox, registry_settings, make_tool):
        manifest = await registry.register(make_tool(expected_inputs={"a": "first"}), "agent-1")
        await registry.record_outcome(manifest.manifest_key, success=True)

        fresh = CapabilityRegistry(store, sandbox, registry_settings)
        listed = await fresh.list("agent-1")

        assert len(listed) == 1
        reloaded = listed[0]
        assert reloaded.manifest_key == manifest.manifest_key
        assert reloaded.original_request.expected_inputs == {"a": "first"}
        assert reloaded.usage_count == 1
        assert reloaded.success_count == 1
        assert reloaded.created_at == manifest.created_at

    @pytest.mark.asyncio
    async def test_manifest_file_is_camel_case(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        data = json.loads((store.manifests_dir / f"{manifest.manifest_key}.json").read_text())
        assert data["toolName"] == "add_numbers"
        assert data["createdBy"] == "agent-1"
        assert {"usageCount", "successCount", "failureCount", "codeLocation"} <= set(data)

    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, registry, make_tool):
        await registry.register(make_tool(), "agent-1")
        with pytest.raises(DuplicateToolError):
            await registry.register(make_tool(), "agent-1")

    @pytest.mark.asyncio
    async def test_same_code_other_agent_allowed(self, registry, store, sandbox, registry_settings, make_tool):
        first = await registry.register(make_tool(), "agent-1")
        second = await registry.register(make_tool(), "agent-2")
        assert first.content_hash == second.content_hash
        assert first.manifest_key != second.manifest_key

        await registry.record_outcome(first.manifest_key, success=True)
        await registry.record_outcome(first.manifest_key, success=False)

        mine = await registry.list("agent-1")
        theirs = await registry.list("agent-2")
        assert [(m.created_by, m.usage_count, m.failure_count) for m in mine] == [("agent-1", 2, 1)]
        assert [(m.created_by, m.usage_count) for m in theirs] == [("agent-2", 0)]

        # Both copies survive a reload from disk.
        fresh = CapabilityRegistry(store, sandbox, registry_settings)
        assert [m.usage_count for m in await fresh.list("agent-1")] == [2]
        assert [m.usage_count for m in await fresh.list("agent-2")] == [0]

    @pytest.mark.asyncio
    async def test_unsafe_creator_id_gets_own_namespace(self, registry, store, make_tool):
        first = await registry.register(make_tool(), "team/a")
        second = await registry.register(make_tool(), "team_a")

        assert first.manifest_key.split("/")[0] != "team_a"
        assert first.manifest_key != second.manifest_key
        assert (store.manifests_dir / f"{first.manifest_key}.json").exists()
        assert [m.created_by for m in await registry.list("team/a")] == ["team/a"]

    @pytest.mark.asyncio
    async def test_new_version_supersedes(self, registry, make_tool, add_numbers_source):
        await registry.register(make_tool(), "agent-1")
        tool = await registry.ensure("agent-1", "add_numbers")

        newer_source = add_numbers_source.replace("Add two numbers", "Add two numbers (v2)")
        newer = await registry.register(make_tool(source=newer_source), "agent-1")

        listed = await registry.list("agent-1")
        assert [m.manifest_key for m in listed] == [newer.manifest_key]
        resolved = await registry.ensure("agent-1", "add_numbers")
        assert resolved.tool_id == newer.manifest_key
        assert resolved.tool_id != tool.tool_id
        assert resolved.description == "Add two numbers (v2)"

    @pytest.mark.asyncio
    async def test_corrupt_manifest_is_skipped(self, registry, store, make_tool):
        await registry.register(make_tool(), "agent-1")
        (store.manifests_dir / "agent-1" / "broken_deadbeef.json").write_text("{not json")

        listed = await registry.list("agent-1")
        assert [m.tool_name for m in listed] == ["add_numbers"]


# =====================================================================
# Visibility
# =====================================================================


class TestVisibility:
    """Strict isolation by default; sharing only when configured."""

    @pytest.mark.asyncio
    async def test_strict_isolation(self, registry, make_tool):
        await registry.register(make_tool(), "agent-1")

        assert await registry.list("agent-2") == []
        with pytest.raises(ToolNotFoundError):
            await registry.resolve("agent-2", "add_numbers")

    @pytest.mark.asyncio
    async def test_share_all(self, store, sandbox, registry_settings, make_tool, tool_source):
        registry = _registry(store, sandbox, registry_settings, share_mode=ShareMode.ALL)
        await registry.register(make_tool(), "agent-1")
        other = tool_source("word_count", 'return {"success": True, "result": len(params["text"].split()), "toolName": TOOL_NAME}')
        await registry.register(make_tool("word_count", other, "Count words"), "agent-2")

        names = [m.tool_name for m in await registry.list("agent-2")]
        assert names == ["word_count", "add_numbers"]
        tool = await registry.resolve("agent-2", "add_numbers")
        assert tool.manifest.created_by == "agent-1"

    @pytest.mark.asyncio
    async def test_own_tool_wins_name_clash(self, store, sandbox, registry_settings, make_tool, add_numbers_source):
        registry = _registry(store, sandbox, registry_settings, share_mode=ShareMode.ALL)
        await registry.register(make_tool(), "agent-1")
        mine = await registry.register(
            make_tool(source=add_numbers_source.replace("Add two numbers", "Mine")), "agent-2"
        )
        tool = await registry.resolve("agent-2", "add_numbers")
        assert tool.tool_id == mine.manifest_key

    @pytest.mark.asyncio
    async def test_share_recent(self, store, sandbox, registry_settings, make_tool):
        registry = _registry(store, sandbox, registry_settings, share_mode=ShareMode.RECENT, recent_hours=1)
        manifest = await registry.register(make_tool(), "agent-1")
        assert len(await registry.list("agent-2")) == 1

        manifest.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        await store.save_manifest(manifest)
        assert await registry.list("agent-2") == []

    @pytest.mark.asyncio
    async def test_share_success_rate(self, store, sandbox, registry_settings, make_tool):
        registry = _registry(
            store, sandbox, registry_settings, share_mode=ShareMode.SUCCESS_RATE, share_min_success_rate=0.6
        )
        manifest = await registry.register(make_tool(), "agent-1")
        # Unused tools are not shared.
        assert await registry.list("agent-2") == []

        await registry.record_outcome(manifest.manifest_key, success=True)
        await registry.record_outcome(manifest.manifest_key, success=False)
        assert await registry.list("agent-2") == []

        await registry.record_outcome(manifest.manifest_key, success=True)
        assert len(await registry.list("agent-2")) == 1

    @pytest.mark.asyncio
    async def test_listing_is_capped(self, store, sandbox, registry_settings, make_tool, tool_source):
        registry = _registry(store, sandbox, registry_settings, max_tools_per_agent=2)
        for name in ("one", "two", "three"):
            source = tool_source(name, f'return {{"success": True, "result": "{name}", "toolName": TOOL_NAME}}')
            await registry.register(make_tool(name, source, f"Tool {name}"), "agent-1")
        assert len(await registry.list("agent-1")) == 2

    @pytest.mark.asyncio
    async def test_available_tools(self, registry, make_tool):
        await registry.register(make_tool(), "agent-1")
        summaries = await registry.available_tools("agent-1")
        assert [(s.name, s.description) for s in summaries] == [("add_numbers", "Add two numbers")]


# =====================================================================
# Resolution
# =====================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolve_caches_loaded_tool(self, registry, make_tool):
        await registry.register(make_tool(), "agent-1")
        first = await registry.resolve("agent-1", "add_numbers")
        second = await registry.resolve("agent-1", "add_numbers")
        assert first is second
        assert first.compiled.tool_name == "add_numbers"

    @pytest.mark.asyncio
    async def test_not_found_suggests_similar_names(self, registry, make_tool):
        await registry.register(make_tool(), "agent-1")
        with pytest.raises(ToolNotFoundError) as exc_info:
            await registry.ensure("agent-1", "add_number")
        error = exc_info.value
        assert error.code == "not_found"
        assert error.suggestions == ["add_numbers"]
        assert str(error) == (
            "Tool add_number not found in registry. Did you mean one of these? add_numbers"
        )

    @pytest.mark.asyncio
    async def test_tool_registered_by_other_registry_found(self, registry, store, sandbox, registry_settings, make_tool):
        other = CapabilityRegistry(store, sandbox, registry_settings)
        await registry.list("agent-1")
        await other.register(make_tool(), "agent-1")

        tool = await registry.resolve("agent-1", "add_numbers")
        assert tool.name == "add_numbers"

    @pytest.mark.asyncio
    async def test_load_failure_exhausts_retries(self, registry, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        Path(manifest.code_location).write_text("def invoke(:\n")

        with pytest.raises(LoadExhaustedError) as exc_info:
            await registry.resolve("agent-1", "add_numbers")
        assert exc_info.value.attempts == registry.settings.load_retries

        listed = await registry.list("agent-1")
        assert listed[0].failure_count == registry.settings.load_retries

    @pytest.mark.asyncio
    async def test_missing_code_file(self, registry, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        Path(manifest.code_location).unlink()
        with pytest.raises(LoadExhaustedError):
            await registry.resolve("agent-1", "add_numbers")


# =====================================================================
# Telemetry and quarantine
# =====================================================================


class TestTelemetry:
    @pytest.mark.asyncio
    async def test_counters(self, registry, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        key = manifest.manifest_key
        await registry.record_outcome(key, success=True)
        await registry.record_outcome(key, success=True)
        updated = await registry.record_outcome(key, success=False)

        assert updated.usage_count == 3
        assert updated.success_count == 2
        assert updated.failure_count == 1
        assert updated.usage_count == updated.success_count + updated.failure_count
        assert updated.success_rate == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_concurrent_outcomes_are_not_lost(self, store, sandbox, registry_settings, make_tool):
        registry = _registry(store, sandbox, registry_settings, quarantine_threshold=100)
        manifest = await registry.register(make_tool(), "agent-1")
        await asyncio.gather(
            *(registry.record_outcome(manifest.manifest_key, success=i % 2 == 0) for i in range(20))
        )
        stored = (await registry.list("agent-1"))[0]
        assert stored.usage_count == 20
        assert stored.success_count == 10
        assert stored.failure_count == 10

    @pytest.mark.asyncio
    async def test_per_tool_locks_are_released(self, registry, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        await asyncio.gather(
            *(registry.record_outcome(manifest.manifest_key, success=True) for _ in range(5))
        )
        await registry.quarantine(manifest.manifest_key)
        assert registry._locks == {}
        assert registry._lock_users == {}

    @pytest.mark.asyncio
    async def test_unknown_tool_outcome(self, registry):
        assert await registry.record_outcome("agent-1/missing_00000000", success=True) is None

    @pytest.mark.asyncio
    async def test_success_rate(self, registry, make_tool):
        assert await registry.success_rate("agent-1") == 0.0
        manifest = await registry.register(make_tool(), "agent-1")
        await registry.record_outcome(manifest.manifest_key, success=True)
        await registry.record_outcome(manifest.manifest_key, success=False)
        assert await registry.success_rate("agent-1") == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_stats(self, registry, make_tool):
        assert registry.stats() == {"totalTools": 0, "averageSuccessRate": 0.0, "toolNames": []}
        manifest = await registry.register(make_tool(), "agent-1")
        await registry.ensure("agent-1", "add_numbers")
        await registry.record_outcome(manifest.manifest_key, success=True)

        stats = registry.stats()
        assert stats["totalTools"] == 1
        assert stats["averageSuccessRate"] == 1.0
        assert stats["toolNames"] == ["add_numbers"]


class TestQuarantine:
    @pytest.mark.asyncio
    async def test_quarantine_after_threshold(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        key = manifest.manifest_key
        threshold = registry.settings.quarantine_threshold

        for _ in range(threshold):
            await registry.record_outcome(key, success=False)
        assert not await store.is_quarantined(key)

        await registry.record_outcome(key, success=False)
        assert await store.is_quarantined(key)
        assert await registry.list("agent-1") == []

        with pytest.raises(ToolQuarantinedError) as exc_info:
            await registry.ensure("agent-1", "add_numbers")
        assert exc_info.value.code == "quarantined"

        quarantined = await store.iter_quarantined()
        assert quarantined[0].failure_count == threshold + 1

    @pytest.mark.asyncio
    async def test_quarantined_copy_keeps_counters(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        key = manifest.manifest_key
        threshold = registry.settings.quarantine_threshold

        await asyncio.gather(*(registry.record_outcome(key, success=True) for _ in range(3)))
        await asyncio.gather(
            *(registry.record_outcome(key, success=False) for _ in range(threshold + 1))
        )

        assert await store.is_quarantined(key)
        [frozen] = await store.iter_quarantined()
        assert frozen.success_count == 3
        assert frozen.failure_count == threshold + 1
        assert frozen.usage_count == frozen.success_count + frozen.failure_count

    @pytest.mark.asyncio
    async def test_quarantine_is_idempotent(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        assert await registry.quarantine(manifest.manifest_key) is True
        assert await registry.quarantine(manifest.manifest_key) is False
        assert len(await store.iter_quarantined()) == 1
        assert await store.load_manifest(manifest.manifest_key) is None

    @pytest.mark.asyncio
    async def test_quarantined_manifest_cannot_be_saved(self, registry, store, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        await registry.quarantine(manifest.manifest_key)
        with pytest.raises(ToolQuarantinedError):
            await store.save_manifest(manifest)

    @pytest.mark.asyncio
    async def test_no_outcomes_after_quarantine(self, registry, make_tool):
        manifest = await registry.register(make_tool(), "agent-1")
        await registry.quarantine(manifest.manifest_key)
        assert await registry.record_outcome(manifest.manifest_key, success=True) is None


# =====================================================================
# Name similarity
# =====================================================================


class TestSimilarity:
    def test_scores(self):
        assert similarity_score("add_numbers", "ADD_NUMBERS") == 1000
        assert similarity_score("add", "add_numbers") == 800
        assert similarity_score("add_numbers_fast", "add_numbers") == 700
        assert similarity_score("abc", "xyz") == 0

    def test_find_similar_names(self):
        names = ["add_numbers", "subtract_numbers", "weather_lookup", "zzz"]
        suggestions = find_similar_names("add_number", names)
        assert suggestions[0] == "add_numbers"
        assert "zzz" not in suggestions
        assert len(suggestions) <= 3
