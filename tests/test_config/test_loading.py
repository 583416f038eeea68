from pathlib import Path

import pytest

import skillsync.config as config_module
from skillsync.config import Config
from skillsync.exceptions import ConfigurationError
from skillsync.tool_adapters import ToolAdapterRegistry


def test_load_prefers_local_skillsync_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("sync:\n  mode: link\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    local_cfg = tmp_path / "skillsync.yaml"
    local_cfg.write_text(
        (
            "sync:\n"
            "  mode: copy\n"
            "git:\n"
            "  timeout_seconds: 30\n"
            "  default_repos:\n"
            "    - owner: acme\n"
            "      name: team-skills\n"
            "      branch: stable\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.sync.mode == "copy"
    assert cfg.git.timeout_seconds == 30
    assert len(cfg.git.default_repos) == 1
    assert cfg.git.default_repos[0].branch == "stable"


def test_load_falls_back_to_default_path_when_no_local(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("logging:\n  level: DEBUG\n  format: json\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    cfg = Config.load()

    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.format == "json"


def test_missing_config_uses_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.sync.mode == "auto"
    assert [repo.owner for repo in cfg.git.default_repos] == ["anthropics", "openai"]


def test_environment_fills_nested_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("SKILLSYNC_SYNC__MODE", "link")

    cfg = Config.load()

    assert cfg.sync.mode == "link"


def test_save_round_trips_through_yaml(tmp_path: Path):
    cfg = Config()
    cfg.store.central_dir = str(tmp_path / "central")
    cfg.tools.home = str(tmp_path)
    path = tmp_path / "out.yaml"

    cfg.save(path)
    loaded = Config.load(path)

    assert loaded.resolved_central_dir() == (tmp_path / "central").resolve()
    assert loaded.resolved_home() == tmp_path.resolve()


def test_custom_tools_load_and_never_shadow_builtins(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "skillsync.yaml").write_text(
        (
            "tools:\n"
            f"  home: {tmp_path}\n"
            "  custom:\n"
            "    - key: notes\n"
            "      display_name: Notes\n"
            "      relative_skills_dir: .notes/skills\n"
            "    - key: cursor\n"
            "      display_name: Fake Cursor\n"
            "      relative_skills_dir: .fake/skills\n"
        ),
        encoding="utf-8",
    )

    tools = ToolAdapterRegistry.from_config(Config.load())

    assert tools.get_tool("cursor").label == "Cursor"
    notes = tools.get_tool("notes")
    assert notes.is_custom
    assert notes.skills_root == tmp_path.resolve() / ".notes" / "skills"
    assert not notes.installed

    (tmp_path / ".notes" / "skills").mkdir(parents=True)
    assert tools.is_installed("notes")


def test_invalid_config_raises_configuration_error(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("sync:\n  mode: [unclosed\n", encoding="utf-8")
    bad_value = tmp_path / "bad_value.yaml"
    bad_value.write_text("sync:\n  mode: sideways\n", encoding="utf-8")
    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- a\n- b\n", encoding="utf-8")

    for path in (bad_yaml, bad_value, not_mapping):
        with pytest.raises(ConfigurationError) as exc_info:
            Config.load(path)
        assert exc_info.value.code == "CONFIGURATION"
