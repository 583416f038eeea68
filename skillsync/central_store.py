"""Central store: the canonical on-disk copy of every registered skill."""

from __future__ import annotations

import hashlib
import os
import re
import secrets
import shutil
from pathlib import Path

from skillsync.exceptions import MalformedSkillError, SkillIOError, ValidationError
from skillsync.logging import get_logger

log = get_logger(__name__)

_IGNORED_NAMES = (".git",)
_HASH_CHUNK_SIZE = 1024 * 1024


def sanitize_skill_name(raw_name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", str(raw_name or "").strip())
    cleaned = cleaned.strip("-._")
    if not cleaned:
        return ""
    return cleaned[:128]


def validate_skill_dir(path: Path | str) -> Path:
    """Return the resolved skill directory or raise MalformedSkillError."""
    source = Path(path).expanduser()
    if not source.exists():
        raise MalformedSkillError(str(source), "path does not exist")
    if not source.is_dir():
        raise MalformedSkillError(str(source), "not a directory")
    try:
        has_content = any(child.name not in _IGNORED_NAMES for child in source.iterdir())
    except OSError as exc:
        raise SkillIOError(str(source), str(exc)) from exc
    if not has_content:
        raise MalformedSkillError(str(source), "directory is empty")
    return source.resolve()


def directory_fingerprint(path: Path | str) -> str:
    """SHA-256 over sorted relative file paths and their bytes.

    Symlinks are followed, ``.git`` is skipped, and two directories with the
    same files and contents produce the same digest.
    """
    root = Path(path)
    digest = hashlib.sha256()
    files: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        dirnames[:] = sorted(name for name in dirnames if name not in _IGNORED_NAMES)
        for filename in filenames:
            file_path = Path(dirpath) / filename
            files.append((file_path.relative_to(root).as_posix(), file_path))
    for relative, file_path in sorted(files):
        digest.update(relative.encode("utf-8"))
        digest.update(b"\0")
        try:
            with open(file_path, "rb") as handle:
                while chunk := handle.read(_HASH_CHUNK_SIZE):
                    digest.update(chunk)
        except OSError:
            # Dangling links and unreadable files still count by name.
            digest.update(b"<unreadable>")
        digest.update(b"\0")
    return digest.hexdigest()


def remove_path(path: Path) -> None:
    """Remove a link, file or directory tree at ``path``."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def copy_skill_tree(source: Path, destination: Path) -> None:
    shutil.copytree(
        source,
        destination,
        symlinks=False,
        ignore=shutil.ignore_patterns(*_IGNORED_NAMES),
        ignore_dangling_symlinks=True,
    )


class CentralStore:
    """One directory per skill under ``root``; writes swap atomically."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()

    def path_for(self, name: str) -> Path:
        install_name = sanitize_skill_name(name)
        if not install_name:
            raise ValidationError(f"Invalid skill name: {name!r}")
        destination = (self.root / install_name).resolve()
        try:
            destination.relative_to(self.root)
        except ValueError as exc:
            raise ValidationError("Resolved skill path is outside the central store.") from exc
        return destination

    def contains(self, path: Path | str) -> bool:
        """Return True when ``path`` resolves inside the central store."""
        try:
            Path(path).resolve().relative_to(self.root)
        except (OSError, ValueError):
            return False
        return True

    def write(self, source: Path | str, name: str) -> Path:
        """Copy ``source`` into the store as ``name``.

        Content is staged in a hidden sibling directory and renamed into
        place; an existing copy is moved aside first and restored if the
        swap fails.
        """
        source_dir = validate_skill_dir(source)
        destination = self.path_for(name)
        token = secrets.token_hex(4)
        staged = self.root / f".{destination.name}.tmp-{token}"
        backup = self.root / f".{destination.name}.old-{token}"

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            copy_skill_tree(source_dir, staged)
        except (OSError, shutil.Error) as exc:
            shutil.rmtree(staged, ignore_errors=True)
            raise SkillIOError(str(destination), str(exc)) from exc

        moved_aside = False
        try:
            if destination.exists() or destination.is_symlink():
                os.replace(destination, backup)
                moved_aside = True
            os.replace(staged, destination)
        except OSError as exc:
            shutil.rmtree(staged, ignore_errors=True)
            if moved_aside and not destination.exists():
                os.replace(backup, destination)
            raise SkillIOError(str(destination), str(exc)) from exc

        if moved_aside:
            shutil.rmtree(backup, ignore_errors=True)
        log.debug("Wrote skill to central store", name=destination.name, path=str(destination))
        return destination

    def remove(self, path: Path | str) -> bool:
        """Delete a skill directory owned by the store."""
        target = Path(path)
        if not self.contains(target):
            log.warning("Refusing to remove path outside central store", path=str(target))
            return False
        if not target.exists() and not target.is_symlink():
            return False
        try:
            remove_path(target)
        except OSError as exc:
            raise SkillIOError(str(target), str(exc)) from exc
        return True
