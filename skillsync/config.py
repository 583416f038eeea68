"""Configuration management for skillsync."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from skillsync.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.skillsync/config.yaml").expanduser()
DEFAULT_CENTRAL_DIR = Path("~/.skillsync/skills").expanduser()
DEFAULT_DB_PATH = Path("~/.skillsync/registry.db").expanduser()
LOCAL_CONFIG_FILENAME = "skillsync.yaml"


class StoreConfig(BaseModel):
    """Central store and registry locations."""

    central_dir: str = str(DEFAULT_CENTRAL_DIR)
    db_path: str = str(DEFAULT_DB_PATH)


class RepoBookmarkConfig(BaseModel):
    """Git repository offered as a default bookmark."""

    owner: str
    name: str
    branch: str = "main"


class GitConfig(BaseModel):
    """Git source configuration."""

    timeout_seconds: int = 120
    use_github_api: bool = True
    default_repos: list[RepoBookmarkConfig] = Field(
        default_factory=lambda: [
            RepoBookmarkConfig(owner="anthropics", name="skills"),
            RepoBookmarkConfig(owner="openai", name="skills"),
        ]
    )


class SyncConfig(BaseModel):
    """Materialization behavior."""

    mode: Literal["auto", "link", "copy"] = "auto"


class CustomToolConfig(BaseModel):
    """User-declared tool with its own skills directory convention."""

    key: str
    display_name: str
    relative_skills_dir: str
    relative_detect_dir: str = ""
    supports_link: bool = True


class ToolsConfig(BaseModel):
    """Tool adapter configuration."""

    home: str = "~"
    custom: list[CustomToolConfig] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for skillsync."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SKILLSYNC_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file must hold a mapping: {config_path}")
            return cls(**data)
        except (yaml.YAMLError, PydanticValidationError) as exc:
            raise ConfigurationError(f"Invalid config file {config_path}: {exc}") from exc

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration; SKILLSYNC_* variables fill values the YAML omits."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_central_dir(self) -> Path:
        return Path(self.store.central_dir).expanduser().resolve()

    def resolved_db_path(self) -> Path:
        return Path(self.store.db_path).expanduser()

    def resolved_home(self) -> Path:
        return Path(self.tools.home).expanduser().resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
