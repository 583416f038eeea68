import subprocess
from pathlib import Path

import httpx
import pytest

import skillsync.git_source as git_source_module
from skillsync.exceptions import GitError, MalformedSkillError, ValidationError
from skillsync.git_source import (
    GitCliSkillSource,
    classify_git_failure,
    find_skill_candidates,
    normalize_repo_subpath,
    parse_git_source,
    parse_skill_description,
)


def test_parse_git_source_supports_tree_and_blob_urls():
    tree = parse_git_source("https://github.com/openai/skills/tree/main/skills/.curated/source-brief")
    assert tree.owner == "openai"
    assert tree.repo == "skills"
    assert tree.ref == "main"
    assert tree.subpath == "skills/.curated/source-brief"
    assert tree.clone_url == "https://github.com/openai/skills.git"
    assert tree.is_github

    blob = parse_git_source(
        "https://github.com/openai/skills/blob/main/skills/.curated/source-brief/SKILL.md"
    )
    assert blob.ref == "main"
    assert blob.subpath == "skills/.curated/source-brief"

    tree_root = parse_git_source("https://github.com/openai/skills/tree/main")
    assert tree_root.ref == "main"
    assert tree_root.subpath == ""

    tree_file = parse_git_source(
        "https://github.com/openclaw/skills/tree/main/skills/udiedrichsen/event-planner/SKILL.md"
    )
    assert tree_file.subpath == "skills/udiedrichsen/event-planner"

    plain = parse_git_source("https://github.com/anthropics/skills.git")
    assert (plain.owner, plain.repo, plain.ref, plain.subpath) == ("anthropics", "skills", None, "")


def test_parse_git_source_handles_non_github_urls():
    scp = parse_git_source("git@gitlab.com:team/tools.git")
    assert (scp.owner, scp.repo, scp.is_github) == ("team", "tools", False)
    assert scp.clone_url == "git@gitlab.com:team/tools.git"

    https = parse_git_source("https://git.example.com/group/sub/skills")
    assert (https.owner, https.repo) == ("sub", "skills")


def test_parse_git_source_rejects_bad_input():
    with pytest.raises(ValidationError):
        parse_git_source("")
    with pytest.raises(ValidationError):
        parse_git_source("https://github.com/openai")
    with pytest.raises(ValidationError):
        parse_git_source("https://github.com/openai/skills/blob/main/README.md")
    with pytest.raises(ValidationError):
        parse_git_source("https://github.com/openai/skills/pulls")


def test_normalize_repo_subpath_rejects_dot_segments():
    assert normalize_repo_subpath("/skills//pdf/") == "skills/pdf"
    assert normalize_repo_subpath("skills\\pdf") == "skills/pdf"
    assert normalize_repo_subpath("") == ""
    with pytest.raises(ValidationError):
        normalize_repo_subpath("skills/../secrets")


def test_parse_skill_description_truncates_long_front_matter(tmp_path: Path):
    skill_md = tmp_path / "SKILL.md"
    skill_md.write_text("---\nname: x\ndescription: " + "word " * 80 + "\n---\nbody\n", encoding="utf-8")
    description = parse_skill_description(skill_md)
    assert len(description) == 200
    assert description.endswith("...")

    skill_md.write_text("no front matter", encoding="utf-8")
    assert parse_skill_description(skill_md) == ""


def test_find_skill_candidates_stops_at_skill_directories(tmp_path: Path):
    (tmp_path / "skills" / "pdf" / "nested").mkdir(parents=True)
    (tmp_path / "skills" / "pdf" / "SKILL.md").write_text("x", encoding="utf-8")
    (tmp_path / "skills" / "pdf" / "nested" / "SKILL.md").write_text("x", encoding="utf-8")
    (tmp_path / ".github" / "hidden").mkdir(parents=True)
    (tmp_path / ".github" / "hidden" / "SKILL.md").write_text("x", encoding="utf-8")

    candidates = find_skill_candidates(tmp_path, tmp_path, "repo")
    assert [(candidate.subpath, candidate.name) for candidate in candidates] == [("skills/pdf", "pdf")]

    (tmp_path / "SKILL.md").write_text("x", encoding="utf-8")
    root_only = find_skill_candidates(tmp_path, tmp_path, "repo")
    assert [(candidate.subpath, candidate.name) for candidate in root_only] == [("", "repo")]


@pytest.mark.parametrize(
    ("details", "kind"),
    [
        ("remote: Repository not found.\nfatal: repository 'x' not found", "not_found"),
        ("fatal: Authentication failed for 'https://github.com/a/b.git/'", "auth"),
        ("fatal: could not read Username for 'https://github.com': terminal prompts disabled", "auth"),
        ("fatal: unable to access 'https://github.com/a/b/': Could not resolve host: github.com", "network"),
        ("something odd happened", "unknown"),
    ],
)
def test_classify_git_failure(details: str, kind: str):
    assert classify_git_failure(details) == kind


def test_run_git_clone_maps_timeout_and_missing_git(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def _timeout(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="git", timeout=1)

    monkeypatch.setattr(git_source_module.subprocess, "run", _timeout)
    with pytest.raises(GitError) as exc_info:
        git_source_module._run_git_clone("https://example.com/a/b.git", tmp_path / "repo", None, 1)
    assert exc_info.value.kind == "timeout"

    def _missing(*args, **kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr(git_source_module.subprocess, "run", _missing)
    with pytest.raises(GitError) as exc_info:
        git_source_module._run_git_clone("https://example.com/a/b.git", tmp_path / "repo", None, 1)
    assert exc_info.value.kind == "unavailable"


def test_run_git_clone_disables_prompts_and_classifies_stderr(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    seen: dict = {}

    def _failed(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["env"] = kwargs["env"]
        return subprocess.CompletedProcess(cmd, 128, stdout="", stderr="remote: Repository not found.")

    monkeypatch.setattr(git_source_module.subprocess, "run", _failed)
    with pytest.raises(GitError) as exc_info:
        git_source_module._run_git_clone("https://example.com/a/b.git", tmp_path / "repo", "dev", 30)

    assert exc_info.value.kind == "not_found"
    assert seen["cmd"][:6] == ["git", "clone", "--depth", "1", "--branch", "dev"]
    assert seen["env"]["GIT_TERMINAL_PROMPT"] == "0"


def test_download_github_directory_walks_nested_entries(tmp_path: Path):
    source = parse_git_source("https://github.com/openai/skills")
    listings = {
        "/repos/openai/skills/contents/skills/pdf": [
            {"type": "file", "name": "SKILL.md", "path": "skills/pdf/SKILL.md",
             "download_url": "https://raw.example/SKILL.md"},
            {"type": "dir", "name": "refs", "path": "skills/pdf/refs"},
        ],
        "/repos/openai/skills/contents/skills/pdf/refs": [
            {"type": "file", "name": "a.md", "path": "skills/pdf/refs/a.md",
             "download_url": "https://raw.example/a.md"},
        ],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "raw.example":
            return httpx.Response(200, content=request.url.path.encode())
        assert request.url.params.get("ref") == "main"
        return httpx.Response(200, json=listings[request.url.path])

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        git_source_module._download_github_directory(
            client, source, "main", "skills/pdf", tmp_path / "pdf"
        )

    assert (tmp_path / "pdf" / "SKILL.md").read_text(encoding="utf-8") == "/SKILL.md"
    assert (tmp_path / "pdf" / "refs" / "a.md").read_text(encoding="utf-8") == "/a.md"


def test_fetch_skill_falls_back_to_clone_when_download_fails(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def _fake_download(*args, **kwargs):
        raise GitError("network", "https://github.com/openai/skills", "offline")

    def _fake_clone(repo_url: str, destination: Path, ref: str | None, timeout_seconds: int) -> None:
        assert repo_url == "https://github.com/openai/skills.git"
        assert ref == "main"
        skill_dir = destination / "skills" / "pdf"
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text("# pdf\n", encoding="utf-8")

    monkeypatch.setattr(git_source_module, "_download_skill_from_github_api", _fake_download)
    monkeypatch.setattr(git_source_module, "_run_git_clone", _fake_clone)

    fetched = GitCliSkillSource().fetch_skill(
        "https://github.com/openai/skills/tree/main/skills/pdf", None, "skills/pdf", tmp_path
    )
    assert fetched == (tmp_path / "repo" / "skills" / "pdf").resolve()
    assert (fetched / "SKILL.md").exists()


def test_fetch_skill_reports_both_failures(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def _fake_download(*args, **kwargs):
        raise GitError("network", "https://github.com/openai/skills", "offline")

    def _fake_clone(repo_url: str, destination: Path, ref: str | None, timeout_seconds: int) -> None:
        raise GitError("network", repo_url, "Could not resolve host: github.com")

    monkeypatch.setattr(git_source_module, "_download_skill_from_github_api", _fake_download)
    monkeypatch.setattr(git_source_module, "_run_git_clone", _fake_clone)

    with pytest.raises(GitError) as exc_info:
        GitCliSkillSource().fetch_skill("https://github.com/openai/skills", "main", "skills/pdf", tmp_path)
    assert exc_info.value.kind == "network"
    assert "download attempt failed" in exc_info.value.details


def test_fetch_skill_rejects_cloned_folder_without_skill_marker(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def _fake_clone(repo_url: str, destination: Path, ref: str | None, timeout_seconds: int) -> None:
        (destination / "docs").mkdir(parents=True)
        (destination / "docs" / "README.txt").write_text("not a skill", encoding="utf-8")

    monkeypatch.setattr(git_source_module, "_run_git_clone", _fake_clone)
    source = GitCliSkillSource(use_github_api=False)

    with pytest.raises(MalformedSkillError):
        source.fetch_skill("https://git.example.com/acme/bundle.git", None, "docs", tmp_path / "a")
    with pytest.raises(MalformedSkillError):
        source.fetch_skill("https://git.example.com/acme/bundle.git", None, "", tmp_path / "b")
