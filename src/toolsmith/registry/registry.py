"""
Capability registry: per-agent tool manifests, loading and telemetry.

Tools are private mutations of the agent that created them. Another agent
sees them only when a share mode other than ``strict`` is configured.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, NoReturn

from toolsmith.config.settings import RegistrySettings
from toolsmith.core.types import AvailableToolSummary, ShareMode, ToolManifest
from toolsmith.exceptions import (
    DuplicateToolError,
    LoadExhaustedError,
    RejectedAtLoadError,
    ToolNotFoundError,
    ToolQuarantinedError,
)
from toolsmith.registry.store import ManifestStore
from toolsmith.sandbox import CompiledTool, Sandbox
from toolsmith.synthesis import SynthesizedTool

logger = logging.getLogger(__name__)


@dataclass
class LoadedTool:
    """A manifest plus its compiled, load-checked code. Never persisted."""

    manifest: ToolManifest
    compiled: CompiledTool

    @property
    def name(self) -> str:
        return self.manifest.tool_name

    @property
    def tool_id(self) -> str:
        return self.manifest.manifest_key

    @property
    def description(self) -> str:
        return self.compiled.description or self.manifest.description


def similarity_score(target: str, candidate: str) -> int:
    """Case-insensitive name similarity on a 0..1000 scale."""
    target_lower = target.lower()
    candidate_lower = candidate.lower()
    if candidate_lower == target_lower:
        return 1000
    if target_lower in candidate_lower:
        return 800
    if candidate_lower in target_lower:
        return 700
    target_chars = set(target_lower)
    candidate_chars = set(candidate_lower)
    union = target_chars | candidate_chars
    if not union:
        return 0
    return int(len(target_chars & candidate_chars) / len(union) * 600)


def find_similar_names(target: str, candidates: list[str], limit: int = 3) -> list[str]:
    """Best-matching names scoring above 200, highest first."""
    scored = [(similarity_score(target, name), name) for name in dict.fromkeys(candidates)]
    scored = [item for item in scored if item[0] > 200]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [name for _, name in scored[:limit]]


class CapabilityRegistry:
    """
    Registry of synthesized tools backed by a ``ManifestStore``.

    Usage:
        registry = CapabilityRegistry(FileSystemManifestStore(root), Sandbox())
        manifest = await registry.register(synthesized, agent_id="agent-1")
        tool = await registry.ensure("agent-1", manifest.tool_name)
        await registry.record_outcome(tool.tool_id, success=True)
    """

    def __init__(
        self,
        store: ManifestStore,
        sandbox: Sandbox,
        settings: RegistrySettings | None = None,
    ) -> None:
        self.store = store
        self.sandbox = sandbox
        self.settings = settings or RegistrySettings()
        self._index: dict[str, ToolManifest] = {}
        self._loaded: dict[str, LoadedTool] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, tool: SynthesizedTool, agent_id: str) -> ToolManifest:
        """Persist a validated tool for ``agent_id`` and return its manifest.

        A new content hash under an existing name supersedes the older tool
        for resolution; identical code under the same name is rejected.

        Raises:
            DuplicateToolError: Same creator, name and content hash.
        """
        await self.refresh()
        for existing in self._index.values():
            if (
                existing.created_by == agent_id
                and existing.tool_name == tool.tool_name
                and existing.content_hash == tool.content_hash
            ):
                raise DuplicateToolError(
                    f"Tool {tool.tool_name} with hash {tool.content_hash} is already registered",
                    tool_name=tool.tool_name,
                )

        location = await self.store.save_code(
            tool.source,
            creator=agent_id,
            tool_name=tool.tool_name,
            content_hash=tool.content_hash,
        )
        manifest = ToolManifest(
            tool_name=tool.tool_name,
            original_request=tool.spec.original_request,
            code_location=location,
            created_by=agent_id,
            content_hash=tool.content_hash,
            template_used=tool.template_used,
        )
        await self.store.save_manifest(manifest)
        self._index[manifest.manifest_key] = manifest

        for key, loaded in list(self._loaded.items()):
            if loaded.manifest.created_by == agent_id and loaded.name == tool.tool_name:
                del self._loaded[key]

        logger.info(
            "Registered tool %s for agent %s (%s)", tool.tool_name, agent_id, manifest.manifest_key
        )
        return manifest

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Re-read the active manifest set from the store."""
        manifests = await self.store.iter_manifests()
        self._index = {m.manifest_key: m for m in manifests}

    def invalidate(self) -> None:
        """Drop every cached manifest and loaded tool."""
        self._index.clear()
        self._loaded.clear()

    async def list(self, agent_id: str) -> list[ToolManifest]:
        """Manifests visible to ``agent_id``, own tools first, capped."""
        await self.refresh()
        return self._visible(agent_id)[: self.settings.max_tools_per_agent]

    async def available_tools(self, agent_id: str) -> list[AvailableToolSummary]:
        return [
            AvailableToolSummary(name=m.tool_name, description=m.description)
            for m in await self.list(agent_id)
        ]

    def _visible(self, agent_id: str) -> list[ToolManifest]:
        ordered = sorted(self._index.values(), key=lambda m: m.created_at, reverse=True)
        own = [m for m in ordered if m.created_by == agent_id]
        others = [m for m in ordered if m.created_by != agent_id and self._is_shared(m)]

        seen: set[str] = set()
        visible: list[ToolManifest] = []
        for manifest in own + others:
            # Newest first, so a superseded version is skipped.
            if manifest.tool_name in seen:
                continue
            seen.add(manifest.tool_name)
            visible.append(manifest)
        return visible

    def _is_shared(self, manifest: ToolManifest) -> bool:
        mode = self.settings.share_mode
        if mode == ShareMode.ALL:
            return True
        if mode == ShareMode.RECENT:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=self.settings.recent_hours)
            return manifest.created_at >= cutoff
        if mode == ShareMode.SUCCESS_RATE:
            return (
                manifest.usage_count > 0
                and manifest.success_rate >= self.settings.share_min_success_rate
            )
        return False

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, agent_id: str, tool_name: str) -> LoadedTool:
        """
        Resolve a visible tool to an executable handle.

        Raises:
            ToolNotFoundError: No visible manifest has this name.
            ToolQuarantinedError: The tool exists only in quarantine.
            LoadExhaustedError: Every load attempt failed.
        """
        manifest = self._find(agent_id, tool_name)
        if manifest is None:
            await self.refresh()
            manifest = self._find(agent_id, tool_name)
        if manifest is None:
            await self._raise_missing(agent_id, tool_name)

        cached = self._loaded.get(manifest.manifest_key)
        if cached is not None:
            return cached
        return await self._load(manifest)

    async def ensure(self, agent_id: str, tool_name: str) -> LoadedTool:
        """``resolve`` with one full cache invalidation and retry before failing."""
        try:
            return await self.resolve(agent_id, tool_name)
        except (ToolNotFoundError, LoadExhaustedError) as e:
            logger.info("Lookup of %s failed (%s); reloading registry once", tool_name, e.code)
        self.invalidate()
        return await self.resolve(agent_id, tool_name)

    def _find(self, agent_id: str, tool_name: str) -> ToolManifest | None:
        for manifest in self._visible(agent_id):
            if manifest.tool_name == tool_name:
                return manifest
        return None

    async def _raise_missing(self, agent_id: str, tool_name: str) -> NoReturn:
        for manifest in await self.store.iter_quarantined():
            if manifest.tool_name == tool_name and (
                manifest.created_by == agent_id or self._is_shared(manifest)
            ):
                raise ToolQuarantinedError(
                    f"Tool {tool_name} has been quarantined after "
                    f"{manifest.failure_count} failures",
                    tool_name=tool_name,
                )

        names = [m.tool_name for m in self._visible(agent_id)]
        suggestions = find_similar_names(tool_name, names)
        message = f"Tool {tool_name} not found in registry."
        if suggestions:
            message += f" Did you mean one of these? {', '.join(suggestions)}"
        logger.error(
            "Tool lookup failed: %s (agent %s, %d visible tools, suggestions %s)",
            tool_name,
            agent_id,
            len(names),
            suggestions,
        )
        raise ToolNotFoundError(message, tool_name=tool_name, suggestions=suggestions)

    async def _load(self, manifest: ToolManifest) -> LoadedTool:
        attempts = max(1, self.settings.load_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                source = await self.store.read_code(manifest.code_location)
                compiled = await self.sandbox.load(
                    source, tool_name=manifest.tool_name, location=manifest.manifest_key
                )
            except (OSError, RejectedAtLoadError) as e:
                last_error = e
                logger.warning(
                    "Failed to load tool %s (attempt %d/%d): %s",
                    manifest.tool_name,
                    attempt,
                    attempts,
                    e,
                )
                updated = await self.record_outcome(manifest.manifest_key, success=False)
                if await self.store.is_quarantined(manifest.manifest_key):
                    raise ToolQuarantinedError(
                        f"Tool {manifest.tool_name} was quarantined while loading",
                        tool_name=manifest.tool_name,
                        cause=e,
                    )
                if updated is not None:
                    manifest = updated
            else:
                loaded = LoadedTool(manifest=manifest, compiled=compiled)
                self._loaded[manifest.manifest_key] = loaded
                if attempt > 1:
                    logger.info("Loaded tool %s after %d attempts", manifest.tool_name, attempt)
                else:
                    logger.info("Loaded tool %s", manifest.tool_name)
                return loaded

            if attempt < attempts:
                await asyncio.sleep(attempt * self.settings.retry_delay_ms / 1000)

        raise LoadExhaustedError(
            f"Exhausted {attempts} attempts loading tool {manifest.tool_name}",
            tool_name=manifest.tool_name,
            attempts=attempts,
            cause=last_error,
        )

    # ------------------------------------------------------------------
    # Telemetry and lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, tool_id: str) -> AsyncIterator[None]:
        """Per-tool lock, dropped again once nobody holds or waits for it."""
        lock = self._locks.get(tool_id)
        if lock is None:
            lock = self._locks[tool_id] = asyncio.Lock()
        self._lock_users[tool_id] = self._lock_users.get(tool_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[tool_id] - 1
            if remaining:
                self._lock_users[tool_id] = remaining
            else:
                del self._lock_users[tool_id]
                del self._locks[tool_id]

    async def record_outcome(self, tool_id: str, success: bool) -> ToolManifest | None:
        """
        Apply one execution outcome to the persisted counters.

        Re-reads the manifest under a per-tool lock so concurrent completions
        of the same tool do not lose increments. Quarantines the tool once
        ``failureCount`` exceeds the threshold.

        Returns:
            The updated manifest, or None if it is no longer active.
        """
        async with self._locked(tool_id):
            manifest = await self.store.load_manifest(tool_id)
            if manifest is None:
                logger.warning("Cannot record outcome for %s: manifest is not active", tool_id)
                return None

            manifest.record(success)
            await self.store.save_manifest(manifest)
            self._index[tool_id] = manifest
            loaded = self._loaded.get(tool_id)
            if loaded is not None:
                loaded.manifest = manifest

            logger.debug(
                "Recorded %s for %s (usage %d, success %d, failure %d)",
                "success" if success else "failure",
                manifest.tool_name,
                manifest.usage_count,
                manifest.success_count,
                manifest.failure_count,
            )

            if manifest.failure_count > self.settings.quarantine_threshold:
                await self._quarantine(manifest)
            return manifest

    async def quarantine(self, tool_id: str) -> bool:
        """Move a tool out of the active set. Safe to call repeatedly."""
        async with self._locked(tool_id):
            manifest = await self.store.load_manifest(tool_id) or self._index.get(tool_id)
            if manifest is None:
                return False
            return await self._quarantine(manifest)

    async def _quarantine(self, manifest: ToolManifest) -> bool:
        moved = await self.store.quarantine(manifest)
        self._index.pop(manifest.manifest_key, None)
        self._loaded.pop(manifest.manifest_key, None)
        return moved

    def current_ids(self) -> set[str]:
        """Ids of active manifests that are not superseded by a newer version."""
        newest: dict[tuple[str, str], ToolManifest] = {}
        for manifest in self._index.values():
            key = (manifest.created_by, manifest.tool_name)
            known = newest.get(key)
            if known is None or manifest.created_at > known.created_at:
                newest[key] = manifest
        return {m.manifest_key for m in newest.values()}

    def stats(self) -> dict[str, Any]:
        """Summary of the tools loaded in this process."""
        tools = list(self._loaded.values())
        if not tools:
            return {"totalTools": 0, "averageSuccessRate": 0.0, "toolNames": []}
        rates = sum(t.manifest.success_rate for t in tools if t.manifest.usage_count > 0)
        return {
            "totalTools": len(tools),
            "averageSuccessRate": rates / len(tools),
            "toolNames": [t.name for t in tools],
        }

    async def success_rate(self, agent_id: str) -> float:
        """Overall success rate of the tools ``agent_id`` created."""
        await self.refresh()
        own = [m for m in self._index.values() if m.created_by == agent_id]
        usage = sum(m.usage_count for m in own)
        if usage == 0:
            return 0.0
        return sum(m.success_count for m in own) / usage
