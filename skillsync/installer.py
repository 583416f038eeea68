"""Installer: populate the central store from local folders or git sources."""

from __future__ import annotations

import asyncio
import tempfile
from contextlib import AbstractAsyncContextManager, nullcontext
from dataclasses import dataclass
from pathlib import Path

from skillsync.central_store import CentralStore, sanitize_skill_name, validate_skill_dir
from skillsync.exceptions import (
    MalformedSkillError,
    MultiSkillsError,
    NoSkillsFoundError,
    SkillExistsError,
    ValidationError,
)
from skillsync.git_source import (
    SKILL_MARKER,
    GitSkillCandidate,
    GitSkillSource,
    find_skill_marker,
    normalize_repo_subpath,
    parse_git_source,
)
from skillsync.locks import KeyedLocks
from skillsync.logging import get_logger
from skillsync.registry import SOURCE_GIT, SOURCE_LOCAL, Skill, SkillRegistry, new_skill_id

log = get_logger(__name__)


@dataclass
class InstallResult:
    skill_id: str
    central_path: str
    name: str


class SkillInstaller:
    """Creates and refreshes registry skills from their sources.

    Git and store I/O run in worker threads so the event loop stays free.
    """

    def __init__(
        self,
        registry: SkillRegistry,
        store: CentralStore,
        git: GitSkillSource,
        locks: KeyedLocks | None = None,
    ):
        self.registry = registry
        self.store = store
        self.git = git
        self.locks = locks

    def _hold(self, existing: Skill | None) -> AbstractAsyncContextManager[None]:
        """Lock an overwritten skill so syncs never read half-swapped content."""
        if existing is None or self.locks is None:
            return nullcontext()
        return self.locks.hold(f"skill:{existing.id}")

    async def _check_conflict(self, name: str, overwrite: bool) -> Skill | None:
        existing = await self.registry.get_skill_by_name(name)
        if existing is not None and not overwrite:
            raise SkillExistsError(name)
        return existing

    async def _register(
        self,
        name: str,
        central_path: Path,
        source_type: str,
        source_ref: str,
        existing: Skill | None,
        source_subpath: str = "",
        source_branch: str | None = None,
    ) -> InstallResult:
        if existing is not None:
            if existing.central_path != str(central_path):
                await asyncio.to_thread(self.store.remove, existing.central_path)
            existing.source_type = source_type
            existing.source_ref = source_ref
            existing.source_subpath = source_subpath
            existing.source_branch = source_branch
            existing.central_path = str(central_path)
            await self.registry.update_skill(existing)
            log.info("Overwrote skill", skill_id=existing.id, name=name, source=source_ref)
            return InstallResult(skill_id=existing.id, central_path=str(central_path), name=name)

        skill = await self.registry.create_skill(
            Skill(
                id=new_skill_id(name),
                name=name,
                source_type=source_type,
                source_ref=source_ref,
                source_subpath=source_subpath,
                source_branch=source_branch,
                central_path=str(central_path),
            )
        )
        return InstallResult(skill_id=skill.id, central_path=skill.central_path, name=name)

    async def install_local(self, path: Path | str, overwrite: bool = False) -> InstallResult:
        """Install a local skill folder; the folder name becomes the skill name."""
        if not str(path or "").strip():
            raise ValidationError("Local skill path is required.")
        source = await asyncio.to_thread(validate_skill_dir, path)
        # A discovered variant may be a link; its visible folder name wins.
        name = sanitize_skill_name(Path(path).expanduser().name) or sanitize_skill_name(source.name)
        if not name:
            raise MalformedSkillError(str(source), "cannot derive a skill name from the folder")

        existing = await self._check_conflict(name, overwrite)
        async with self._hold(existing):
            central_path = await asyncio.to_thread(self.store.write, source, name)
            return await self._register(name, central_path, SOURCE_LOCAL, str(source), existing)

    async def list_git_skills(self, url: str, branch: str | None = None) -> list[GitSkillCandidate]:
        candidates = await asyncio.to_thread(self.git.list_candidates, url, branch)
        if not candidates:
            raise NoSkillsFoundError(url)
        return candidates

    async def install_git_skill(
        self,
        url: str,
        branch: str | None = None,
        overwrite: bool = False,
    ) -> InstallResult:
        """Install the single skill a git source resolves to."""
        candidates = await self.list_git_skills(url, branch)
        if len(candidates) > 1:
            raise MultiSkillsError(url, candidates)
        return await self._install_candidate(url, candidates[0], branch, overwrite)

    async def install_git_selection(
        self,
        url: str,
        subpath: str,
        branch: str | None = None,
        overwrite: bool = False,
    ) -> InstallResult:
        """Install one explicitly chosen candidate of a multi-skill repository."""
        source = parse_git_source(url)
        normalized = normalize_repo_subpath(subpath)
        name = normalized.rsplit("/", 1)[-1] if normalized else source.repo
        candidate = GitSkillCandidate(subpath=normalized, name=name)
        return await self._install_candidate(url, candidate, branch, overwrite)

    def _fetch_into_store(self, url: str, branch: str | None, subpath: str, name: str) -> Path:
        with tempfile.TemporaryDirectory(prefix="skillsync-git-") as temp_dir:
            fetched = self.git.fetch_skill(url, branch, subpath, Path(temp_dir))
            if not fetched.is_dir() or find_skill_marker(fetched) is None:
                raise MalformedSkillError(subpath or url, f"no {SKILL_MARKER} in selected folder")
            return self.store.write(fetched, name)

    async def _install_candidate(
        self,
        url: str,
        candidate: GitSkillCandidate,
        branch: str | None,
        overwrite: bool,
        hold_lock: bool = True,
    ) -> InstallResult:
        source = parse_git_source(url)
        name = sanitize_skill_name(candidate.name) or sanitize_skill_name(source.repo)
        if not name:
            raise MalformedSkillError(url, "cannot derive a skill name from the repository")

        existing = await self._check_conflict(name, overwrite)
        effective_branch = branch or source.ref
        async with self._hold(existing if hold_lock else None):
            central_path = await asyncio.to_thread(
                self._fetch_into_store, url, effective_branch, candidate.subpath, name
            )
            result = await self._register(
                name,
                central_path,
                SOURCE_GIT,
                url,
                existing,
                source_subpath=candidate.subpath,
                source_branch=effective_branch,
            )
        if source.owner:
            await self.registry.add_skill_repo(source.owner, source.repo, effective_branch or "main")
        log.info("Installed git skill", name=name, url=url, subpath=candidate.subpath)
        return result

    async def reinstall(self, skill: Skill) -> InstallResult:
        """Re-pull ``skill`` from its recorded source into its central path.

        The caller must already hold the skill's lock.
        """
        if skill.source_type == SOURCE_GIT:
            candidate = GitSkillCandidate(subpath=skill.source_subpath, name=skill.name)
            return await self._install_candidate(
                skill.source_ref, candidate, skill.source_branch, overwrite=True, hold_lock=False
            )
        source = await asyncio.to_thread(validate_skill_dir, skill.source_ref)
        central_path = await asyncio.to_thread(self.store.write, source, skill.name)
        return await self._register(skill.name, central_path, SOURCE_LOCAL, str(source), skill)
