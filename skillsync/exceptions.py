"""Custom exceptions for skillsync."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skillsync.git_source import GitSkillCandidate


class SkillSyncError(Exception):
    """Base exception for skillsync."""

    code = "ERROR"


class ConfigurationError(SkillSyncError):
    """Configuration-related errors."""

    code = "CONFIGURATION"


class ValidationError(SkillSyncError):
    """Missing or invalid input."""

    code = "VALIDATION"


class NotFoundError(SkillSyncError):
    """Unknown skill or tool id."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind.capitalize()} not found: {key}")
        self.kind = kind
        self.key = key


class ConflictError(SkillSyncError):
    """Expected, user-resolvable conflict.

    Callers are expected to ask the user and retry with ``overwrite=True``
    or an explicit selection.
    """

    code = "CONFLICT"


class SkillExistsError(ConflictError):
    """A skill with the same name is already registered."""

    code = "SKILL_EXISTS"

    def __init__(self, name: str):
        super().__init__(f"Skill already exists: {name}")
        self.name = name


class TargetExistsError(ConflictError):
    """The tool's target path is occupied by unrelated content."""

    code = "TARGET_EXISTS"

    def __init__(self, path: str):
        super().__init__(f"Target path already exists: {path}")
        self.path = path


class MultiSkillsError(ConflictError):
    """A git source resolves to more than one skill."""

    code = "MULTI_SKILLS"

    def __init__(self, url: str, candidates: list[GitSkillCandidate]):
        names = ", ".join(candidate.name for candidate in candidates[:5])
        if len(candidates) > 5:
            names += ", ..."
        super().__init__(
            f"Repository contains {len(candidates)} skills; choose one: {names}"
        )
        self.url = url
        self.candidates = list(candidates)


class SourceError(SkillSyncError):
    """The skill source cannot be read."""

    code = "SOURCE"


class GitError(SourceError):
    """Git clone/fetch failed.

    ``kind`` is one of ``network``, ``auth``, ``not_found``, ``timeout``,
    ``unavailable`` or ``unknown``.
    """

    code = "GIT"

    def __init__(self, kind: str, url: str, details: str = ""):
        message = f"Git {kind.replace('_', ' ')} error for {url}"
        if details:
            message += f": {details}"
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.details = details


class NoSkillsFoundError(SourceError):
    """A git source contains no skill folders."""

    code = "NO_SKILLS_FOUND"

    def __init__(self, url: str):
        super().__init__(f"No skills found in {url}")
        self.url = url


class MalformedSkillError(SourceError):
    """A skill folder has no usable content or name."""

    code = "MALFORMED_SKILL"

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid skill folder {path}: {reason}")
        self.path = path
        self.reason = reason


class ToolNotInstalledError(SourceError):
    """The target tool is not installed on this machine."""

    code = "TOOL_NOT_INSTALLED"

    def __init__(self, tool: str, skills_root: str):
        super().__init__(f"Tool '{tool}' is not installed (skills path: {skills_root})")
        self.tool = tool
        self.skills_root = skills_root


class SkillIOError(SourceError):
    """Filesystem failure while reading or writing skill content."""

    code = "IO"

    def __init__(self, path: str, details: str):
        super().__init__(f"I/O error at {path}: {details}")
        self.path = path
        self.details = details
