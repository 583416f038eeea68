"""Sync engine: materialize skills inside each tool's skills directory."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

from skillsync.central_store import (
    CentralStore,
    copy_skill_tree,
    directory_fingerprint,
    remove_path,
    sanitize_skill_name,
)
from skillsync.exceptions import (
    MalformedSkillError,
    NotFoundError,
    SkillIOError,
    TargetExistsError,
    ToolNotInstalledError,
    ValidationError,
)
from skillsync.logging import get_logger
from skillsync.registry import MODE_COPY, MODE_LINK, SkillRegistry, SyncTarget
from skillsync.tool_adapters import ToolAdapterRegistry, ToolInfo

log = get_logger(__name__)


def links_to(path: Path, central: Path) -> bool:
    """Return True when ``path`` is a symlink resolving to ``central``."""
    if not path.is_symlink():
        return False
    try:
        return path.resolve() == central.resolve()
    except OSError:
        return False


def _is_valid_materialization(path: Path, mode: str, central: Path) -> bool:
    if mode == MODE_LINK:
        return links_to(path, central)
    return path.is_dir() and not path.is_symlink()


def _is_identical_copy(path: Path, central: Path) -> bool:
    if path.is_symlink() or not path.is_dir():
        return False
    return directory_fingerprint(path) == directory_fingerprint(central)


class SyncEngine:
    """Creates and removes materializations and their SyncTarget records.

    ``mode`` is ``auto`` (link, falling back to copy), ``link`` or ``copy``.
    """

    def __init__(
        self,
        registry: SkillRegistry,
        store: CentralStore,
        tools: ToolAdapterRegistry,
        mode: str = "auto",
    ):
        self.registry = registry
        self.store = store
        self.tools = tools
        self.mode = mode

    def _resolve_tool(self, tool_id: str) -> ToolInfo:
        tool = self.tools.get_tool(tool_id)
        if not tool.installed:
            raise ToolNotInstalledError(tool_id, str(tool.skills_root))
        return tool

    def _create(self, central: Path, target: Path, tool: ToolInfo) -> str:
        target.parent.mkdir(parents=True, exist_ok=True)
        if self.mode != MODE_COPY and tool.supports_link:
            try:
                os.symlink(central, target, target_is_directory=True)
                return MODE_LINK
            except OSError as exc:
                if self.mode == MODE_LINK:
                    raise SkillIOError(str(target), f"cannot create link: {exc}") from exc
                log.info("Link failed, copying instead", target=str(target), error=str(exc))
        copy_skill_tree(central, target)
        return MODE_COPY

    def _materialize(
        self,
        central: Path,
        target: Path,
        tool: ToolInfo,
        existing: SyncTarget | None,
        overwrite: bool,
    ) -> str | None:
        """Bring ``target`` in line with ``central``.

        Returns the mode used, or None when an existing record is already
        valid and nothing changed.
        """
        if existing is not None:
            previous = Path(existing.target_path)
            if previous != target:
                self._remove_materialization(previous, existing.mode, central)
            elif _is_valid_materialization(target, existing.mode, central):
                return None

        if target.exists() or target.is_symlink():
            if links_to(target, central):
                return MODE_LINK
            if not overwrite and not _is_identical_copy(target, central):
                raise TargetExistsError(str(target))
            remove_path(target)

        return self._create(central, target, tool)

    def _remove_materialization(self, target: Path, mode: str, central: Path) -> bool:
        if links_to(target, central):
            target.unlink()
            return True
        if mode == MODE_COPY and target.is_dir() and not target.is_symlink():
            remove_path(target)
            return True
        if target.exists() or target.is_symlink():
            log.warning("Leaving foreign content in place", target=str(target), mode=mode)
        return False

    async def sync_skill_to_tool(
        self,
        central_path: str,
        skill_id: str,
        tool_id: str,
        skill_name: str,
        overwrite: bool = False,
    ) -> SyncTarget:
        """Ensure ``tool_id`` holds a materialization of the skill.

        Re-syncing a pair with a valid materialization is a no-op.

        Raises:
            NotFoundError: unknown skill or tool
            ToolNotInstalledError: the tool is not installed
            TargetExistsError: the target path holds unrelated content
        """
        skill = await self.registry.get_skill(skill_id)
        if skill is None:
            raise NotFoundError("skill", skill_id)
        tool = self._resolve_tool(tool_id)

        central = Path(central_path or skill.central_path)
        if not self.store.contains(central):
            raise ValidationError(f"Central path is outside the central store: {central}")
        if not central.is_dir():
            raise MalformedSkillError(str(central), "central copy is missing")
        name = sanitize_skill_name(skill_name or skill.name)
        if not name:
            raise ValidationError(f"Invalid skill name: {skill_name!r}")
        target = tool.skills_root / name

        existing = await self.registry.get_sync_target(skill_id, tool_id)
        try:
            mode = await asyncio.to_thread(
                self._materialize, central, target, tool, existing, overwrite
            )
        except OSError as exc:
            raise SkillIOError(str(target), str(exc)) from exc

        if mode is None and existing is not None:
            log.debug("Skill already synced", skill_id=skill_id, tool=tool_id)
            return existing

        record = await self.registry.upsert_sync_target(
            SyncTarget(skill_id=skill_id, tool_id=tool_id, mode=mode, target_path=str(target))
        )
        log.info("Synced skill", skill_id=skill_id, tool=tool_id, mode=record.mode, target=str(target))
        return record

    async def unsync_skill_from_tool(self, skill_id: str, tool_id: str) -> bool:
        """Remove the materialization and its record; False when none existed."""
        existing = await self.registry.get_sync_target(skill_id, tool_id)
        if existing is None:
            return False
        skill = await self.registry.get_skill(skill_id)
        central = Path(skill.central_path) if skill else Path(existing.target_path)
        try:
            await asyncio.to_thread(
                self._remove_materialization, Path(existing.target_path), existing.mode, central
            )
        except OSError as exc:
            raise SkillIOError(existing.target_path, str(exc)) from exc
        await self.registry.delete_sync_target(skill_id, tool_id)
        log.info("Unsynced skill", skill_id=skill_id, tool=tool_id)
        return True

    async def unsync_all(self, skill_id: str) -> list[str]:
        removed: list[str] = []
        for target in await self.registry.list_sync_targets(skill_id):
            if await self.unsync_skill_from_tool(skill_id, target.tool_id):
                removed.append(target.tool_id)
        return removed

    def _replace_copy(self, central: Path, target: Path) -> None:
        if target.is_symlink() or not target.is_dir():
            return
        remove_path(target)
        copy_skill_tree(central, target)

    async def refresh_copies(self, skill_id: str) -> list[str]:
        """Re-copy central content into every copy-mode target of a skill."""
        skill = await self.registry.get_skill(skill_id)
        if skill is None:
            raise NotFoundError("skill", skill_id)
        refreshed: list[str] = []
        for target in skill.targets:
            if target.mode != MODE_COPY:
                continue
            try:
                await asyncio.to_thread(
                    self._replace_copy, Path(skill.central_path), Path(target.target_path)
                )
            except OSError as exc:
                raise SkillIOError(target.target_path, str(exc)) from exc
            await self.registry.upsert_sync_target(target)
            refreshed.append(target.tool_id)
        return refreshed
