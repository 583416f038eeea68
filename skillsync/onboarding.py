"""Onboarding scan: discover skills already present in tool directories.

The scan is read-only. It walks each installed tool's skills directory,
groups what it finds by folder name and flags variants whose content
differs so the user is warned before importing them as one skill.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from skillsync.central_store import CentralStore, directory_fingerprint
from skillsync.logging import get_logger
from skillsync.registry import SkillRegistry
from skillsync.tool_adapters import ToolAdapterRegistry

log = get_logger(__name__)


@dataclass
class OnboardingVariant:
    tool: str
    path: str
    is_link: bool = False
    link_target: str | None = None
    conflicting_tools: list[str] = field(default_factory=list)


@dataclass
class OnboardingGroup:
    name: str
    variants: list[OnboardingVariant] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return any(variant.conflicting_tools for variant in self.variants)


@dataclass
class OnboardingPlan:
    total_tools_scanned: int = 0
    total_skills_found: int = 0
    groups: list[OnboardingGroup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _read_link(path: Path) -> str | None:
    try:
        return os.readlink(path)
    except OSError:
        return None


class _VariantIdentity:
    """Lazily computed identity used to compare two variants."""

    def __init__(self, path: Path):
        self.path = path
        self._resolved: Path | None = None
        self._fingerprint: str | None = None

    @property
    def resolved(self) -> Path:
        if self._resolved is None:
            self._resolved = self.path.resolve()
        return self._resolved

    @property
    def fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = directory_fingerprint(self.path)
        return self._fingerprint

    def same_content(self, other: "_VariantIdentity") -> bool:
        if self.resolved == other.resolved:
            return True
        return self.fingerprint == other.fingerprint


def mark_conflicts(variants: list[OnboardingVariant]) -> None:
    """Fill ``conflicting_tools`` for variants with materially different content."""
    identities = [_VariantIdentity(Path(variant.path)) for variant in variants]
    for i, left in enumerate(variants):
        for j in range(i + 1, len(variants)):
            right = variants[j]
            if left.tool == right.tool:
                continue
            if identities[i].same_content(identities[j]):
                continue
            if right.tool not in left.conflicting_tools:
                left.conflicting_tools.append(right.tool)
            if left.tool not in right.conflicting_tools:
                right.conflicting_tools.append(left.tool)
    for variant in variants:
        variant.conflicting_tools.sort()


class OnboardingScanner:
    """Read-only sweep over every installed tool's skills directory."""

    def __init__(self, tools: ToolAdapterRegistry, store: CentralStore, registry: SkillRegistry):
        self.tools = tools
        self.store = store
        self.registry = registry

    async def scan(self) -> OnboardingPlan:
        tracked = {target.target_path for target in await self.registry.list_sync_targets()}
        plan = await asyncio.to_thread(self._scan, tracked)
        log.info(
            "Onboarding scan complete",
            tools=plan.total_tools_scanned,
            skills=plan.total_skills_found,
            groups=len(plan.groups),
        )
        return plan

    def _detect(self, tool_id: str, skills_root: Path, tracked: set[str]) -> list[OnboardingVariant]:
        found: list[OnboardingVariant] = []
        try:
            entries = sorted(skills_root.iterdir(), key=lambda entry: entry.name.lower())
        except OSError as exc:
            log.warning("Cannot read tool skills directory", tool=tool_id, path=str(skills_root), error=str(exc))
            return found
        for entry in entries:
            # Hidden folders hold tool internals such as Codex's ``.system``.
            if entry.name.startswith("."):
                continue
            if not entry.is_dir():
                continue
            if str(entry) in tracked or self.store.contains(entry):
                continue
            is_link = entry.is_symlink()
            found.append(
                OnboardingVariant(
                    tool=tool_id,
                    path=str(entry),
                    is_link=is_link,
                    link_target=_read_link(entry) if is_link else None,
                )
            )
        return found

    def _scan(self, tracked: set[str]) -> OnboardingPlan:
        plan = OnboardingPlan()
        grouped: dict[str, list[OnboardingVariant]] = {}
        for tool in self.tools.installed_tools():
            if not tool.skills_root.is_dir():
                continue
            plan.total_tools_scanned += 1
            for variant in self._detect(tool.id, tool.skills_root, tracked):
                grouped.setdefault(Path(variant.path).name, []).append(variant)
                plan.total_skills_found += 1

        for name in sorted(grouped, key=str.lower):
            variants = grouped[name]
            mark_conflicts(variants)
            plan.groups.append(OnboardingGroup(name=name, variants=variants))
        return plan
