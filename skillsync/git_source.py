"""Git skill sources: candidate discovery and skill fetching."""

from __future__ import annotations

import os
import posixpath
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote, urlparse

import httpx
import yaml

from skillsync.exceptions import GitError, MalformedSkillError, ValidationError
from skillsync.logging import get_logger

log = get_logger(__name__)

SKILL_MARKER = "SKILL.md"

_GITHUB_HOSTS = {"github.com", "www.github.com"}
_GITHUB_API_BASE_URL = "https://api.github.com"
_MAX_DESCRIPTION_CHARS = 200
_MAX_SCAN_DEPTH = 6

_AUTH_PATTERNS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "terminal prompts disabled",
    "returned error: 401",
    "returned error: 403",
)
_NOT_FOUND_PATTERNS = (
    "repository not found",
    "not found",
    "does not exist",
    "does not appear to be a git repository",
    "returned error: 404",
)
_NETWORK_PATTERNS = (
    "could not resolve host",
    "failed to connect",
    "connection timed out",
    "connection refused",
    "network is unreachable",
    "unable to access",
    "early eof",
    "ssl",
)


@dataclass
class GitSkillCandidate:
    """One selectable skill inside a git repository."""

    subpath: str
    name: str
    description: str = ""


@dataclass
class GitSourceRef:
    """Parsed git URL."""

    clone_url: str
    owner: str
    repo: str
    ref: str | None = None
    subpath: str = ""
    url: str = ""
    is_github: bool = False


class GitSkillSource(Protocol):
    """Capability the installer needs from a git backend."""

    def list_candidates(self, url: str, branch: str | None = None) -> list[GitSkillCandidate]:
        ...

    def fetch_skill(self, url: str, branch: str | None, subpath: str, workdir: Path) -> Path:
        """Materialize the skill at ``subpath`` somewhere under ``workdir``."""
        ...


def normalize_repo_subpath(path_text: str) -> str:
    cleaned = str(path_text or "").replace("\\", "/").strip().strip("/")
    if not cleaned:
        return ""
    raw_parts = [part for part in cleaned.split("/") if part]
    if any(part in {".", ".."} for part in raw_parts):
        raise ValidationError("Skill path cannot contain '.' or '..' path segments.")
    normalized = posixpath.normpath(cleaned)
    if normalized in {"", "."}:
        return ""
    return "/".join(part for part in normalized.split("/") if part)


def _strip_skill_md_suffix(path_text: str) -> str:
    normalized = normalize_repo_subpath(path_text)
    if normalized.lower() == "skill.md":
        return ""
    if normalized.lower().endswith("/skill.md"):
        return normalized[: -len("/skill.md")]
    return normalized


def _parse_github_url(raw_url: str, parsed: Any) -> GitSourceRef:
    path_parts = [unquote(part).strip() for part in parsed.path.split("/") if part.strip()]
    if len(path_parts) < 2:
        raise ValidationError("GitHub URL must include owner and repository.")
    owner = path_parts[0]
    repo = path_parts[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo:
        raise ValidationError("GitHub URL must include a valid owner and repository.")

    ref: str | None = None
    subpath = ""
    if len(path_parts) >= 3:
        marker = path_parts[2].lower()
        if marker == "tree":
            if len(path_parts) < 4:
                raise ValidationError("Tree URL must include /tree/<ref>[/<skill-path>].")
            ref = path_parts[3].strip()
            subpath = "/".join(part for part in path_parts[4:] if part)
        elif marker == "blob":
            if len(path_parts) < 5:
                raise ValidationError("Blob URL must include /blob/<ref>/<path-to-SKILL.md>.")
            ref = path_parts[3].strip()
            blob_parts = [part for part in path_parts[4:] if part]
            if not blob_parts or blob_parts[-1].lower() != "skill.md":
                raise ValidationError("Blob URL must point to SKILL.md.")
            subpath = "/".join(blob_parts[:-1])
        else:
            raise ValidationError(
                "Unsupported GitHub URL format. Use repo URL or /tree/<ref>/<skill-path>."
            )
    return GitSourceRef(
        clone_url=f"https://github.com/{owner}/{repo}.git",
        owner=owner,
        repo=repo,
        ref=ref,
        subpath=_strip_skill_md_suffix(subpath),
        url=raw_url,
        is_github=True,
    )


def parse_git_source(url: str) -> GitSourceRef:
    """Parse a GitHub URL (repo, /tree/, /blob/) or any other clone URL."""
    raw_url = str(url or "").strip()
    if not raw_url:
        raise ValidationError("Git URL is required.")

    parsed = urlparse(raw_url)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc.lower() in _GITHUB_HOSTS:
        return _parse_github_url(raw_url, parsed)

    # scp-like syntax: git@host:owner/repo.git
    scp_match = re.match(r"^[\w.-]+@[\w.-]+:(?P<path>.+)$", raw_url)
    path_text = scp_match.group("path") if scp_match else (parsed.path or raw_url)
    parts = [part for part in path_text.replace("\\", "/").split("/") if part]
    if not parts:
        raise ValidationError(f"Cannot derive a repository name from {raw_url!r}.")
    repo = parts[-1][:-4] if parts[-1].endswith(".git") else parts[-1]
    owner = parts[-2] if len(parts) >= 2 else ""
    if not repo:
        raise ValidationError(f"Cannot derive a repository name from {raw_url!r}.")
    return GitSourceRef(clone_url=raw_url, owner=owner, repo=repo, url=raw_url)


def parse_skill_description(skill_md: Path) -> str:
    """Read ``description`` from SKILL.md YAML front matter."""
    try:
        content = skill_md.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    match = re.match(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", content, flags=re.DOTALL)
    if not match:
        return ""
    try:
        frontmatter = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        return ""
    if not isinstance(frontmatter, dict):
        return ""
    description = " ".join(str(frontmatter.get("description") or "").split())
    if len(description) > _MAX_DESCRIPTION_CHARS:
        description = description[: _MAX_DESCRIPTION_CHARS - 3].rstrip() + "..."
    return description


def find_skill_marker(directory: Path) -> Path | None:
    direct = directory / SKILL_MARKER
    if direct.is_file():
        return direct
    for child in directory.iterdir():
        if child.is_file() and child.name.lower() == "skill.md":
            return child
    return None


def find_skill_candidates(search_root: Path, repo_root: Path, repo_name: str) -> list[GitSkillCandidate]:
    """Find directories holding a SKILL.md under ``search_root``.

    Subpaths are relative to ``repo_root``; hidden directories are skipped
    and the search stops descending once a skill directory is found.
    """
    if not search_root.is_dir():
        return []
    candidates: list[GitSkillCandidate] = []

    def visit(directory: Path, depth: int) -> None:
        marker = find_skill_marker(directory)
        if marker is not None:
            subpath = directory.relative_to(repo_root).as_posix()
            subpath = "" if subpath == "." else subpath
            candidates.append(
                GitSkillCandidate(
                    subpath=subpath,
                    name=directory.name if subpath else repo_name,
                    description=parse_skill_description(marker),
                )
            )
            return
        if depth >= _MAX_SCAN_DEPTH:
            return
        for child in sorted(directory.iterdir(), key=lambda entry: entry.name.lower()):
            if child.name.startswith(".") or child.is_symlink() or not child.is_dir():
                continue
            visit(child, depth + 1)

    visit(search_root, 0)
    return sorted(candidates, key=lambda candidate: candidate.subpath.lower())


def classify_git_failure(details: str) -> str:
    text = details.lower()
    if any(pattern in text for pattern in _AUTH_PATTERNS):
        return "auth"
    if any(pattern in text for pattern in _NOT_FOUND_PATTERNS):
        return "not_found"
    if any(pattern in text for pattern in _NETWORK_PATTERNS):
        return "network"
    return "unknown"


def _run_git_clone(repo_url: str, destination: Path, ref: str | None, timeout_seconds: int) -> None:
    cmd = ["git", "clone", "--depth", "1"]
    if ref:
        cmd.extend(["--branch", ref])
    cmd.extend([repo_url, str(destination)])
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            timeout=max(1, int(timeout_seconds)),
            env=env,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitError("timeout", repo_url, f"git clone exceeded {timeout_seconds}s") from exc
    except FileNotFoundError as exc:
        raise GitError("unavailable", repo_url, "git executable not found") from exc
    if completed.returncode == 0:
        return
    details = (completed.stderr or completed.stdout or "").strip()
    raise GitError(classify_git_failure(details), repo_url, details or "git clone failed")


def _build_github_api_headers() -> dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": "skillsync/0.1.0 (Skill Installer)",
    }
    token = (os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN") or "").strip()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _github_contents_api_url(owner: str, repo: str, repo_path: str) -> str:
    base = f"{_GITHUB_API_BASE_URL}/repos/{owner}/{repo}/contents"
    normalized_path = normalize_repo_subpath(repo_path)
    if not normalized_path:
        return base
    return f"{base}/{quote(normalized_path, safe='/')}"


def _fetch_github_contents(
    client: httpx.Client,
    source: GitSourceRef,
    ref: str | None,
    repo_path: str,
) -> list[dict[str, Any]] | dict[str, Any]:
    request_url = _github_contents_api_url(source.owner, source.repo, repo_path)
    response = client.get(request_url, params={"ref": ref} if ref else None)
    if response.status_code == 404:
        raise GitError("not_found", source.url, f"GitHub path not found: {repo_path or '/'}")
    if response.status_code in {401, 403}:
        raise GitError("auth", source.url, (response.text or "").strip()[:500])
    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise GitError("unknown", source.url, (response.text or str(exc)).strip()[:500]) from exc
    payload: Any = response.json()
    if isinstance(payload, (dict, list)):
        return payload
    raise GitError("unknown", source.url, "Unexpected GitHub API response format.")


def _download_file_to_path(client: httpx.Client, download_url: str, destination: Path) -> None:
    response = client.get(download_url)
    response.raise_for_status()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(response.content)


def _download_github_directory(
    client: httpx.Client,
    source: GitSourceRef,
    ref: str | None,
    repo_path: str,
    destination_dir: Path,
) -> None:
    payload = _fetch_github_contents(client, source, ref, repo_path)
    if isinstance(payload, dict):
        raise GitError("not_found", source.url, f"GitHub path is not a directory: {repo_path}")
    destination_dir.mkdir(parents=True, exist_ok=True)
    for item in payload:
        if not isinstance(item, dict):
            continue
        entry_type = str(item.get("type", "")).strip().lower()
        entry_name = str(item.get("name", "")).strip()
        entry_path = str(item.get("path", "")).strip()
        if not entry_name or not entry_path:
            continue
        if entry_type == "file":
            download_url = str(item.get("download_url", "")).strip()
            if download_url:
                _download_file_to_path(client, download_url, destination_dir / entry_name)
        elif entry_type == "dir":
            _download_github_directory(client, source, ref, entry_path, destination_dir / entry_name)


def _download_skill_from_github_api(
    source: GitSourceRef,
    ref: str | None,
    subpath: str,
    repo_root: Path,
    timeout_seconds: int,
) -> Path:
    destination = (repo_root / subpath).resolve()
    with httpx.Client(
        timeout=max(1, int(timeout_seconds)),
        follow_redirects=True,
        headers=_build_github_api_headers(),
    ) as client:
        try:
            _download_github_directory(client, source, ref, subpath, destination)
        except httpx.TransportError as exc:
            raise GitError("network", source.url, str(exc)) from exc
    if find_skill_marker(destination) is None:
        raise MalformedSkillError(subpath, f"no {SKILL_MARKER} in downloaded directory")
    return destination


def _resolve_inside(repo_root: Path, subpath: str) -> Path:
    selected = (repo_root / subpath).resolve()
    try:
        selected.relative_to(repo_root.resolve())
    except ValueError as exc:
        raise ValidationError("Resolved skill path is outside the repository.") from exc
    return selected


class GitCliSkillSource:
    """Git backend using shallow ``git clone`` plus the GitHub contents API."""

    def __init__(self, timeout_seconds: int = 120, use_github_api: bool = True):
        self.timeout_seconds = timeout_seconds
        self.use_github_api = use_github_api

    def list_candidates(self, url: str, branch: str | None = None) -> list[GitSkillCandidate]:
        source = parse_git_source(url)
        ref = branch or source.ref
        with tempfile.TemporaryDirectory(prefix="skillsync-list-") as temp_dir:
            repo_root = Path(temp_dir) / "repo"
            _run_git_clone(source.clone_url, repo_root, ref, self.timeout_seconds)
            search_root = _resolve_inside(repo_root, source.subpath)
            candidates = find_skill_candidates(search_root, repo_root.resolve(), source.repo)
        log.info("Listed git skill candidates", url=url, branch=ref, count=len(candidates))
        return candidates

    def fetch_skill(self, url: str, branch: str | None, subpath: str, workdir: Path) -> Path:
        source = parse_git_source(url)
        ref = branch or source.ref
        normalized = _strip_skill_md_suffix(subpath)
        repo_root = (Path(workdir) / "repo").resolve()

        download_error: Exception | None = None
        if self.use_github_api and source.is_github and normalized:
            try:
                return _download_skill_from_github_api(
                    source, ref, normalized, repo_root, self.timeout_seconds
                )
            except (GitError, MalformedSkillError, httpx.HTTPError, OSError) as exc:
                download_error = exc
                shutil.rmtree(repo_root, ignore_errors=True)
                log.warning(
                    "GitHub API skill download failed; falling back to git clone",
                    repo=f"{source.owner}/{source.repo}",
                    skill_path=normalized,
                    error=str(exc),
                )

        try:
            _run_git_clone(source.clone_url, repo_root, ref, self.timeout_seconds)
        except GitError as exc:
            if download_error is None:
                raise
            raise GitError(
                exc.kind,
                exc.url,
                f"{exc.details} (download attempt failed: {download_error})",
            ) from exc
        selected = _resolve_inside(repo_root, normalized)
        if not selected.is_dir():
            raise MalformedSkillError(normalized or ".", "skill directory does not exist in repository")
        if find_skill_marker(selected) is None:
            raise MalformedSkillError(normalized or ".", f"no {SKILL_MARKER} in selected folder")
        return selected
