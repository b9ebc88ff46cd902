"""Durable storage for tool manifests and code blobs.

The registry talks to storage only through ``ManifestStore``; the default
``FileSystemManifestStore`` keeps one JSON file per manifest and one source
file per tool under a root directory::

    <root>/code/{creator}_{toolName}_{timestamp}_{hash}.py
    <root>/manifests/{creator}/{toolName}_{hash}.json
    <root>/quarantine/{creator}/{toolName}_{hash}.json

Manifest keys are ``{creator}/{toolName}_{hash}``, so each creator owns a
subdirectory and identical code from two agents never shares a file.

All file operations run in the default executor so they never block the
event loop. Writes go to a temporary file first and are moved into place
with ``os.replace``, so readers never see a partially written manifest.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Any

from toolsmith.core.types import ToolManifest, creator_namespace
from toolsmith.exceptions import RegistryError, ToolQuarantinedError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+/[A-Za-z0-9_-]+$")


class ManifestStore(ABC):
    """Repository interface for manifests and the code they point to."""

    @abstractmethod
    async def save_code(
        self,
        source: str,
        *,
        creator: str,
        tool_name: str,
        content_hash: str,
    ) -> str:
        """Persist an immutable code blob and return its location."""

    @abstractmethod
    async def read_code(self, location: str) -> str:
        """Read a code blob written by ``save_code``."""

    @abstractmethod
    async def save_manifest(self, manifest: ToolManifest) -> None:
        """Create or overwrite the active manifest for ``manifest.manifest_key``.

        Raises:
            ToolQuarantinedError: The manifest was already quarantined.
        """

    @abstractmethod
    async def load_manifest(self, key: str) -> ToolManifest | None:
        """Read one active manifest, or None if it is not in the active set."""

    @abstractmethod
    async def iter_manifests(self) -> list[ToolManifest]:
        """All active manifests."""

    @abstractmethod
    async def iter_quarantined(self) -> list[ToolManifest]:
        """All quarantined manifests."""

    @abstractmethod
    async def quarantine(self, manifest: ToolManifest) -> bool:
        """Move a manifest out of the active set.

        Idempotent. Returns True if this call performed the move.
        """

    @abstractmethod
    async def is_quarantined(self, key: str) -> bool:
        """Whether the manifest ``key`` has been quarantined."""


class FileSystemManifestStore(ManifestStore):
    """Manifest store backed by a directory tree.

    Example:
        store = FileSystemManifestStore("./generated-tools")
        location = await store.save_code(source, creator="agent-1",
                                         tool_name="add_numbers", content_hash="1a2b3c4d")
        await store.save_manifest(manifest)
    """

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)
        self.code_dir = self.root_dir / "code"
        self.manifests_dir = self.root_dir / "manifests"
        self.quarantine_dir = self.root_dir / "quarantine"
        for directory in (self.code_dir, self.manifests_dir, self.quarantine_dir):
            directory.mkdir(parents=True, exist_ok=True)

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save_code(
        self,
        source: str,
        *,
        creator: str,
        tool_name: str,
        content_hash: str,
    ) -> str:
        timestamp = int(time.time() * 1000)
        filename = f"{creator_namespace(creator)}_{_safe(tool_name)}_{timestamp}_{content_hash}.py"
        path = self.code_dir / filename
        await self._run(_atomic_write, path, source)
        logger.debug("Saved code for '%s' to %s", tool_name, path)
        return str(path)

    async def read_code(self, location: str) -> str:
        return await self._run(Path(location).read_text, "utf-8")

    async def save_manifest(self, manifest: ToolManifest) -> None:
        await self._run(self._save_manifest_sync, manifest)

    async def load_manifest(self, key: str) -> ToolManifest | None:
        path = self._key_path(self.manifests_dir, key)
        if path is None:
            return None
        return await self._run(self._read_manifest, path)

    async def iter_manifests(self) -> list[ToolManifest]:
        return await self._run(self._read_dir, self.manifests_dir)

    async def iter_quarantined(self) -> list[ToolManifest]:
        return await self._run(self._read_dir, self.quarantine_dir)

    async def quarantine(self, manifest: ToolManifest) -> bool:
        return await self._run(self._quarantine_sync, manifest)

    async def is_quarantined(self, key: str) -> bool:
        path = self._key_path(self.quarantine_dir, key)
        return path is not None and path.exists()

    # ------------------------------------------------------------------
    # Sync helpers (executor thread)
    # ------------------------------------------------------------------

    @staticmethod
    def _key_path(directory: Path, key: str) -> Path | None:
        # Keys come from ToolManifest.manifest_key; anything else is unknown.
        if not _KEY_PATTERN.match(key):
            return None
        return directory / f"{key}.json"

    def _manifest_path(self, directory: Path, manifest: ToolManifest) -> Path:
        path = self._key_path(directory, manifest.manifest_key)
        if path is None:
            raise RegistryError(f"Invalid manifest key {manifest.manifest_key!r}")
        return path

    def _save_manifest_sync(self, manifest: ToolManifest) -> None:
        if self._manifest_path(self.quarantine_dir, manifest).exists():
            raise ToolQuarantinedError(
                f"Tool {manifest.tool_name} is quarantined and cannot be updated",
                tool_name=manifest.tool_name,
            )
        path = self._manifest_path(self.manifests_dir, manifest)
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write(path, json.dumps(manifest.to_dict(), indent=2))

    def _read_manifest(self, path: Path) -> ToolManifest | None:
        try:
            data = json.loads(path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise RegistryError(f"Unreadable manifest {path.name}: {e}", cause=e)
        try:
            return ToolManifest.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"Malformed manifest {path.name}: {e}", cause=e)

    def _read_dir(self, directory: Path) -> list[ToolManifest]:
        manifests: list[ToolManifest] = []
        for path in sorted(directory.glob("*/*.json")):
            try:
                manifest = self._read_manifest(path)
            except RegistryError as e:
                # One corrupt file must not hide every other tool.
                logger.error("Skipping manifest: %s", e)
                continue
            if manifest is not None:
                manifests.append(manifest)
        return manifests

    def _quarantine_sync(self, manifest: ToolManifest) -> bool:
        active = self._manifest_path(self.manifests_dir, manifest)
        target = self._manifest_path(self.quarantine_dir, manifest)
        already = target.exists()
        target.parent.mkdir(parents=True, exist_ok=True)

        if active.exists():
            # Keep whichever copy has the most recent counters.
            os.replace(active, target)
        elif not already:
            _atomic_write(target, json.dumps(manifest.to_dict(), indent=2))

        if already:
            return False
        logger.warning(
            "Quarantined tool %s (created by %s, failures %d/%d)",
            manifest.tool_name,
            manifest.created_by,
            manifest.failure_count,
            manifest.usage_count,
        )
        return True


def _safe(value: str) -> str:
    return _UNSAFE_CHARS.sub("_", value) or "unknown"


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise
