"""Skill registry with SQLite storage."""

from __future__ import annotations

import asyncio
import json
import re
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from skillsync.logging import get_logger

log = get_logger(__name__)

SOURCE_LOCAL = "local"
SOURCE_GIT = "git"

MODE_LINK = "link"
MODE_COPY = "copy"

_PREFERRED_TOOLS_KEY = "preferred_tools"


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def new_skill_id(name: str) -> str:
    """Build a stable id from name, timestamp and a random suffix."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(name or "").lower()).strip("-")[:48] or "skill"
    stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
    return f"{slug}-{stamp}-{secrets.token_hex(3)}"


@dataclass
class SyncTarget:
    """Materialization of a skill inside one tool's skills directory."""

    skill_id: str
    tool_id: str
    mode: str
    target_path: str
    synced_at: str = field(default_factory=_utcnow_iso)


@dataclass
class Skill:
    """A registry-tracked skill."""

    id: str
    name: str
    source_type: str
    source_ref: str
    central_path: str
    source_subpath: str = ""
    source_branch: str | None = None
    sort_order: int = 0
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)
    targets: list[SyncTarget] = field(default_factory=list)


@dataclass
class RepoBookmark:
    """Recently used git source."""

    owner: str
    name: str
    branch: str = "main"
    updated_at: str = field(default_factory=_utcnow_iso)

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"


_SKILL_COLUMNS = (
    "id, name, source_type, source_ref, source_subpath, source_branch, "
    "central_path, sort_order, created_at, updated_at"
)


def _skill_from_row(row: Any) -> Skill:
    return Skill(
        id=row[0],
        name=row[1],
        source_type=row[2],
        source_ref=row[3],
        source_subpath=row[4] or "",
        source_branch=row[5],
        central_path=row[6],
        sort_order=int(row[7]),
        created_at=row[8],
        updated_at=row[9],
    )


def _target_from_row(row: Any) -> SyncTarget:
    return SyncTarget(
        skill_id=row[0],
        tool_id=row[1],
        mode=row[2],
        target_path=row[3],
        synced_at=row[4],
    )


class SkillRegistry:
    """Durable records for skills, sync targets, repo bookmarks and preferences."""

    def __init__(self, db_path: Path | str):
        """Initialize the registry.

        Args:
            db_path: SQLite database path (``:memory:`` is accepted)
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            db_file = Path(self.db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(db_file)

        self._db: aiosqlite.Connection | None = None
        # Guards sort_order: inserts, deletes and reorders renumber densely.
        self._order_lock = asyncio.Lock()

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.execute("PRAGMA foreign_keys = ON")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS skills (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    source_type TEXT NOT NULL,
                    source_ref TEXT NOT NULL,
                    source_subpath TEXT NOT NULL DEFAULT '',
                    source_branch TEXT,
                    central_path TEXT NOT NULL UNIQUE,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS sync_targets (
                    skill_id TEXT NOT NULL REFERENCES skills(id) ON DELETE CASCADE,
                    tool_id TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    target_path TEXT NOT NULL,
                    synced_at TEXT NOT NULL,
                    PRIMARY KEY (skill_id, tool_id)
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS skill_repos (
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    branch TEXT NOT NULL DEFAULT 'main',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (owner, name)
                )
            """)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_skills_sort_order ON skills(sort_order)"
            )
            await self._db.commit()
        return self._db

    # ------------------------------------------------------------------
    # Skills
    # ------------------------------------------------------------------

    async def get_skill(self, skill_id: str) -> Skill | None:
        db = await self._ensure_db()
        async with db.execute(
            f"SELECT {_SKILL_COLUMNS} FROM skills WHERE id = ?",
            (skill_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        skill = _skill_from_row(row)
        skill.targets = await self.list_sync_targets(skill.id)
        return skill

    async def get_skill_by_name(self, name: str) -> Skill | None:
        db = await self._ensure_db()
        async with db.execute(
            f"SELECT {_SKILL_COLUMNS} FROM skills WHERE name = ?",
            (name,),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        skill = _skill_from_row(row)
        skill.targets = await self.list_sync_targets(skill.id)
        return skill

    async def list_skills(self) -> list[Skill]:
        """List skills in display order, each with its sync targets."""
        db = await self._ensure_db()
        async with db.execute(
            f"SELECT {_SKILL_COLUMNS} FROM skills ORDER BY sort_order, created_at"
        ) as cursor:
            rows = await cursor.fetchall()
        skills = [_skill_from_row(row) for row in rows]

        targets_by_skill: dict[str, list[SyncTarget]] = {}
        for target in await self.list_sync_targets():
            targets_by_skill.setdefault(target.skill_id, []).append(target)
        for skill in skills:
            skill.targets = targets_by_skill.get(skill.id, [])
        return skills

    async def count_skills(self) -> int:
        db = await self._ensure_db()
        async with db.execute("SELECT COUNT(*) FROM skills") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def create_skill(self, skill: Skill) -> Skill:
        """Insert a skill at the end of the display order."""
        db = await self._ensure_db()
        async with self._order_lock:
            skill.sort_order = await self.count_skills()
            await db.execute(
                f"INSERT INTO skills ({_SKILL_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    skill.id,
                    skill.name,
                    skill.source_type,
                    skill.source_ref,
                    skill.source_subpath,
                    skill.source_branch,
                    skill.central_path,
                    skill.sort_order,
                    skill.created_at,
                    skill.updated_at,
                ),
            )
            await db.commit()
        log.info("Registered skill", skill_id=skill.id, name=skill.name, sort_order=skill.sort_order)
        return skill

    async def update_skill(self, skill: Skill) -> Skill:
        """Persist source and path changes of an existing skill."""
        db = await self._ensure_db()
        skill.updated_at = _utcnow_iso()
        await db.execute(
            """
            UPDATE skills
            SET name = ?, source_type = ?, source_ref = ?, source_subpath = ?,
                source_branch = ?, central_path = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                skill.name,
                skill.source_type,
                skill.source_ref,
                skill.source_subpath,
                skill.source_branch,
                skill.central_path,
                skill.updated_at,
                skill.id,
            ),
        )
        await db.commit()
        return skill

    async def delete_skill(self, skill_id: str) -> bool:
        """Delete a skill row with its sync targets and close the sort_order gap.

        Returns:
            True if deleted, False if not found
        """
        db = await self._ensure_db()
        async with self._order_lock:
            try:
                await db.execute("DELETE FROM sync_targets WHERE skill_id = ?", (skill_id,))
                cursor = await db.execute("DELETE FROM skills WHERE id = ?", (skill_id,))
                deleted = cursor.rowcount > 0
                if deleted:
                    await self._renumber(await self._ordered_ids())
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return deleted

    async def _ordered_ids(self) -> list[str]:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT id FROM skills ORDER BY sort_order, created_at"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def _renumber(self, ordered_ids: list[str]) -> None:
        db = await self._ensure_db()
        await db.executemany(
            "UPDATE skills SET sort_order = ? WHERE id = ?",
            [(index, skill_id) for index, skill_id in enumerate(ordered_ids)],
        )

    async def reorder_skills(self, ids: list[str]) -> list[str]:
        """Renumber sort_order to follow ``ids`` in a single transaction.

        Unknown and duplicate ids are ignored. Existing ids missing from
        ``ids`` keep their relative order and are appended afterwards.

        Returns:
            The resulting id order
        """
        db = await self._ensure_db()
        async with self._order_lock:
            current = await self._ordered_ids()
            known = set(current)
            ordered: list[str] = []
            seen: set[str] = set()
            for skill_id in ids:
                if skill_id in known and skill_id not in seen:
                    ordered.append(skill_id)
                    seen.add(skill_id)
            ignored = [skill_id for skill_id in ids if skill_id not in known]
            if ignored:
                log.warning("Ignoring unknown skill ids in reorder", ids=ignored)
            ordered.extend(skill_id for skill_id in current if skill_id not in seen)

            try:
                await self._renumber(ordered)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        return ordered

    # ------------------------------------------------------------------
    # Sync targets
    # ------------------------------------------------------------------

    async def get_sync_target(self, skill_id: str, tool_id: str) -> SyncTarget | None:
        db = await self._ensure_db()
        async with db.execute(
            """
            SELECT skill_id, tool_id, mode, target_path, synced_at
            FROM sync_targets WHERE skill_id = ? AND tool_id = ?
            """,
            (skill_id, tool_id),
        ) as cursor:
            row = await cursor.fetchone()
        return _target_from_row(row) if row else None

    async def list_sync_targets(self, skill_id: str | None = None) -> list[SyncTarget]:
        db = await self._ensure_db()
        query = "SELECT skill_id, tool_id, mode, target_path, synced_at FROM sync_targets"
        params: tuple[Any, ...] = ()
        if skill_id is not None:
            query += " WHERE skill_id = ?"
            params = (skill_id,)
        query += " ORDER BY tool_id"
        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [_target_from_row(row) for row in rows]

    async def upsert_sync_target(self, target: SyncTarget) -> SyncTarget:
        db = await self._ensure_db()
        target.synced_at = _utcnow_iso()
        await db.execute(
            """
            INSERT INTO sync_targets (skill_id, tool_id, mode, target_path, synced_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(skill_id, tool_id) DO UPDATE SET
                mode = excluded.mode,
                target_path = excluded.target_path,
                synced_at = excluded.synced_at
            """,
            (target.skill_id, target.tool_id, target.mode, target.target_path, target.synced_at),
        )
        await db.commit()
        return target

    async def delete_sync_target(self, skill_id: str, tool_id: str) -> bool:
        db = await self._ensure_db()
        cursor = await db.execute(
            "DELETE FROM sync_targets WHERE skill_id = ? AND tool_id = ?",
            (skill_id, tool_id),
        )
        await db.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Repo bookmarks
    # ------------------------------------------------------------------

    async def add_skill_repo(self, owner: str, name: str, branch: str = "main") -> RepoBookmark:
        """Insert or refresh a bookmark, deduplicated by owner/name."""
        db = await self._ensure_db()
        bookmark = RepoBookmark(owner=owner, name=name, branch=branch or "main")
        await db.execute(
            """
            INSERT INTO skill_repos (owner, name, branch, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(owner, name) DO UPDATE SET
                branch = excluded.branch,
                updated_at = excluded.updated_at
            """,
            (bookmark.owner, bookmark.name, bookmark.branch, bookmark.updated_at),
        )
        await db.commit()
        return bookmark

    async def get_skill_repos(self) -> list[RepoBookmark]:
        db = await self._ensure_db()
        async with db.execute(
            "SELECT owner, name, branch, updated_at FROM skill_repos ORDER BY updated_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            RepoBookmark(owner=row[0], name=row[1], branch=row[2], updated_at=row[3])
            for row in rows
        ]

    async def remove_skill_repo(self, owner: str, name: str) -> bool:
        db = await self._ensure_db()
        cursor = await db.execute(
            "DELETE FROM skill_repos WHERE owner = ? AND name = ?",
            (owner, name),
        )
        await db.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> Any:
        db = await self._ensure_db()
        async with db.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set_setting(self, key: str, value: Any) -> None:
        db = await self._ensure_db()
        await db.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, json.dumps(value)),
        )
        await db.commit()

    async def get_preferred_tools(self) -> list[str]:
        value = await self.get_setting(_PREFERRED_TOOLS_KEY)
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]

    async def set_preferred_tools(self, tool_ids: list[str]) -> list[str]:
        ordered = list(dict.fromkeys(str(tool_id) for tool_id in tool_ids if str(tool_id).strip()))
        await self.set_setting(_PREFERRED_TOOLS_KEY, ordered)
        return ordered

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
