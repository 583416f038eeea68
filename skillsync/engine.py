"""Skill engine: the operations callers (CLI, UI) invoke.

Wires the registry, central store, installer, sync engine and onboarding
scanner together and serializes mutations per skill id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from skillsync.central_store import CentralStore
from skillsync.config import Config, get_config
from skillsync.exceptions import ConflictError, NotFoundError, SkillSyncError
from skillsync.git_source import GitCliSkillSource, GitSkillCandidate, GitSkillSource
from skillsync.installer import InstallResult, SkillInstaller
from skillsync.locks import KeyedLocks
from skillsync.logging import get_logger
from skillsync.onboarding import OnboardingPlan, OnboardingScanner
from skillsync.registry import RepoBookmark, Skill, SkillRegistry, SyncTarget
from skillsync.sync_engine import SyncEngine
from skillsync.tool_adapters import ToolAdapterRegistry, ToolInfo

log = get_logger(__name__)

STATUS_OK = "ok"
STATUS_CONFLICT = "conflict"
STATUS_ERROR = "error"

_DEFAULT_REPOS_SEEDED_KEY = "default_repos_seeded"
_INSTALL_LOCK = "install"


@dataclass
class SyncOutcome:
    """Result of syncing one skill to one tool inside a batch."""

    tool_id: str
    status: str
    detail: str = ""
    target: SyncTarget | None = None
    error: SkillSyncError | None = None


@dataclass
class BatchItem:
    key: str
    status: str
    detail: str = ""
    result: InstallResult | None = None
    error: SkillSyncError | None = None


@dataclass
class BatchReport:
    """Aggregated outcome of a batch; conflicts count as skipped."""

    items: list[BatchItem] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status == STATUS_OK)

    @property
    def skipped(self) -> int:
        return sum(1 for item in self.items if item.status == STATUS_CONFLICT)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == STATUS_ERROR)


class SkillEngine:
    """Async facade over the installation and synchronization engine."""

    def __init__(
        self,
        config: Config | None = None,
        registry: SkillRegistry | None = None,
        git: GitSkillSource | None = None,
        tools: ToolAdapterRegistry | None = None,
    ):
        self.config = config or get_config()
        self.registry = registry or SkillRegistry(self.config.resolved_db_path())
        self.store = CentralStore(self.config.resolved_central_dir())
        self.tools = tools or ToolAdapterRegistry.from_config(self.config)
        self.git = git or GitCliSkillSource(
            timeout_seconds=self.config.git.timeout_seconds,
            use_github_api=self.config.git.use_github_api,
        )
        self._locks = KeyedLocks()
        self.installer = SkillInstaller(self.registry, self.store, self.git, locks=self._locks)
        self.sync = SyncEngine(self.registry, self.store, self.tools, mode=self.config.sync.mode)
        self.scanner = OnboardingScanner(self.tools, self.store, self.registry)

    def _skill_lock(self, skill_id: str):
        return self._locks.hold(f"skill:{skill_id}")

    async def _require_skill(self, skill_id: str) -> Skill:
        skill = await self.registry.get_skill(skill_id)
        if skill is None:
            raise NotFoundError("skill", skill_id)
        return skill

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    async def _refresh_overwritten(self, result: InstallResult, overwrite: bool) -> InstallResult:
        """Push overwritten central content into the skill's copy-mode targets."""
        if overwrite:
            async with self._skill_lock(result.skill_id):
                await self.sync.refresh_copies(result.skill_id)
        return result

    async def install_local_skill(self, path: str | Path, overwrite: bool = False) -> InstallResult:
        async with self._locks.hold(_INSTALL_LOCK):
            result = await self.installer.install_local(path, overwrite=overwrite)
            return await self._refresh_overwritten(result, overwrite)

    async def list_git_skills(self, url: str, branch: str | None = None) -> list[GitSkillCandidate]:
        return await self.installer.list_git_skills(url, branch)

    async def install_git_skill(
        self,
        url: str,
        branch: str | None = None,
        overwrite: bool = False,
    ) -> InstallResult:
        async with self._locks.hold(_INSTALL_LOCK):
            result = await self.installer.install_git_skill(url, branch, overwrite=overwrite)
            return await self._refresh_overwritten(result, overwrite)

    async def install_git_selection(
        self,
        url: str,
        subpath: str,
        branch: str | None = None,
        overwrite: bool = False,
    ) -> InstallResult:
        async with self._locks.hold(_INSTALL_LOCK):
            result = await self.installer.install_git_selection(url, subpath, branch, overwrite=overwrite)
            return await self._refresh_overwritten(result, overwrite)

    async def import_existing_skill(self, path: str | Path, overwrite: bool = False) -> InstallResult:
        """Promote a discovered tool folder into the central store."""
        return await self.install_local_skill(path, overwrite=overwrite)

    async def import_existing_skills(
        self,
        paths: list[str | Path],
        overwrite: bool = False,
    ) -> BatchReport:
        report = BatchReport()
        for path in paths:
            try:
                result = await self.import_existing_skill(path, overwrite=overwrite)
            except ConflictError as exc:
                report.items.append(BatchItem(str(path), STATUS_CONFLICT, str(exc), error=exc))
            except SkillSyncError as exc:
                log.warning("Import failed", path=str(path), error=str(exc))
                report.items.append(BatchItem(str(path), STATUS_ERROR, str(exc), error=exc))
            else:
                report.items.append(BatchItem(str(path), STATUS_OK, result.name, result=result))
        log.info(
            "Imported skills",
            imported=report.succeeded,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    async def update_skill(self, skill_id: str) -> InstallResult:
        """Re-pull a skill from its source and refresh copy-mode targets."""
        async with self._skill_lock(skill_id):
            skill = await self._require_skill(skill_id)
            result = await self.installer.reinstall(skill)
            refreshed = await self.sync.refresh_copies(skill_id)
        log.info("Updated skill", skill_id=skill_id, refreshed_targets=refreshed)
        return result

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    async def sync_skill_to_tool(
        self,
        central_path: str,
        skill_id: str,
        tool_id: str,
        skill_name: str,
        overwrite: bool = False,
    ) -> SyncTarget:
        async with self._skill_lock(skill_id):
            return await self.sync.sync_skill_to_tool(
                central_path, skill_id, tool_id, skill_name, overwrite=overwrite
            )

    async def sync_skill_to_tools(
        self,
        skill_id: str,
        tool_ids: list[str],
        overwrite: bool = False,
    ) -> list[SyncOutcome]:
        """Sync one skill to several tools in order; failures do not undo successes."""
        skill = await self._require_skill(skill_id)
        outcomes: list[SyncOutcome] = []
        for tool_id in tool_ids:
            try:
                target = await self.sync_skill_to_tool(
                    skill.central_path, skill.id, tool_id, skill.name, overwrite=overwrite
                )
            except ConflictError as exc:
                outcomes.append(SyncOutcome(tool_id, STATUS_CONFLICT, str(exc), error=exc))
            except SkillSyncError as exc:
                log.warning("Sync failed", skill_id=skill_id, tool=tool_id, error=str(exc))
                outcomes.append(SyncOutcome(tool_id, STATUS_ERROR, str(exc), error=exc))
            else:
                outcomes.append(SyncOutcome(tool_id, STATUS_OK, target.target_path, target=target))
        return outcomes

    async def unsync_skill_from_tool(self, skill_id: str, tool_id: str) -> bool:
        async with self._skill_lock(skill_id):
            await self._require_skill(skill_id)
            return await self.sync.unsync_skill_from_tool(skill_id, tool_id)

    async def delete_skill(self, skill_id: str) -> None:
        """Unsync every target, remove the central copy and the record."""
        async with self._skill_lock(skill_id):
            skill = await self._require_skill(skill_id)
            removed = await self.sync.unsync_all(skill_id)
            await self.registry.delete_skill(skill_id)
            await asyncio.to_thread(self.store.remove, skill.central_path)
        log.info("Deleted skill", skill_id=skill_id, name=skill.name, unsynced=removed)

    async def reorder_skills(self, ids: list[str]) -> list[str]:
        return await self.registry.reorder_skills(ids)

    async def list_skills(self) -> list[Skill]:
        return await self.registry.list_skills()

    async def get_skill(self, skill_id: str) -> Skill:
        return await self._require_skill(skill_id)

    async def find_skill(self, key: str) -> Skill:
        """Resolve a skill by id or by name."""
        skill = await self.registry.get_skill(key) or await self.registry.get_skill_by_name(key)
        if skill is None:
            raise NotFoundError("skill", key)
        return skill

    # ------------------------------------------------------------------
    # Discovery and tools
    # ------------------------------------------------------------------

    async def get_onboarding_plan(self) -> OnboardingPlan:
        return await self.scanner.scan()

    async def get_tools(self) -> list[ToolInfo]:
        return self.tools.get_tools()

    async def get_preferred_tools(self) -> list[str]:
        return await self.registry.get_preferred_tools()

    async def set_preferred_tools(self, tool_ids: list[str]) -> list[str]:
        for tool_id in tool_ids:
            if not self.tools.has_tool(tool_id):
                raise NotFoundError("tool", tool_id)
        return await self.registry.set_preferred_tools(tool_ids)

    async def default_sync_tools(self) -> list[str]:
        """Preferred tools when set, otherwise every installed tool."""
        preferred = [
            tool_id
            for tool_id in await self.registry.get_preferred_tools()
            if self.tools.has_tool(tool_id)
        ]
        if preferred:
            return preferred
        return [tool.id for tool in self.tools.installed_tools()]

    # ------------------------------------------------------------------
    # Repo bookmarks
    # ------------------------------------------------------------------

    async def add_skill_repo(self, owner: str, name: str, branch: str = "main") -> RepoBookmark:
        return await self.registry.add_skill_repo(owner, name, branch)

    async def get_skill_repos(self) -> list[RepoBookmark]:
        return await self.registry.get_skill_repos()

    async def remove_skill_repo(self, owner: str, name: str) -> bool:
        return await self.registry.remove_skill_repo(owner, name)

    async def init_default_repos(self) -> list[RepoBookmark]:
        """Seed configured default bookmarks once; later removals stick."""
        if not await self.registry.get_setting(_DEFAULT_REPOS_SEEDED_KEY):
            for repo in self.config.git.default_repos:
                await self.registry.add_skill_repo(repo.owner, repo.name, repo.branch)
            await self.registry.set_setting(_DEFAULT_REPOS_SEEDED_KEY, True)
        return await self.registry.get_skill_repos()

    async def close(self) -> None:
        await self.registry.close()
