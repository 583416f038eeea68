"""Tool adapters: where each AI coding tool keeps its skills."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from skillsync.config import Config, CustomToolConfig
from skillsync.exceptions import NotFoundError


@dataclass(frozen=True)
class ToolAdapter:
    """Static description of a tool's skills directory convention.

    Both directories are relative to the user's home directory. The detect
    directory decides whether the tool counts as installed.
    """

    key: str
    display_name: str
    relative_skills_dir: str
    relative_detect_dir: str
    supports_link: bool = True
    is_custom: bool = False


@dataclass
class ToolInfo:
    id: str
    label: str
    installed: bool
    skills_root: Path
    supports_link: bool = True
    is_custom: bool = False


DEFAULT_TOOL_ADAPTERS: tuple[ToolAdapter, ...] = (
    ToolAdapter("cursor", "Cursor", ".cursor/skills", ".cursor"),
    ToolAdapter("claude_code", "Claude Code", ".claude/skills", ".claude"),
    ToolAdapter("codex", "Codex", ".codex/skills", ".codex"),
    ToolAdapter("opencode", "OpenCode", ".config/opencode/skill", ".config/opencode"),
    ToolAdapter("antigravity", "Antigravity", ".gemini/antigravity/skills", ".gemini/antigravity"),
    ToolAdapter("amp", "Amp", ".config/agents/skills", ".config/agents"),
    ToolAdapter("kilo_code", "Kilo Code", ".kilocode/skills", ".kilocode"),
    ToolAdapter("roo_code", "Roo Code", ".roo/skills", ".roo"),
    ToolAdapter("goose", "Goose", ".config/goose/skills", ".config/goose"),
    ToolAdapter("gemini_cli", "Gemini CLI", ".gemini/skills", ".gemini"),
    ToolAdapter("github_copilot", "GitHub Copilot", ".copilot/skills", ".copilot"),
    ToolAdapter("clawdbot", "Clawdbot", ".clawdbot/skills", ".clawdbot"),
    ToolAdapter("droid", "Droid", ".factory/skills", ".factory"),
    ToolAdapter("windsurf", "Windsurf", ".codeium/windsurf/skills", ".codeium/windsurf"),
)


def _custom_adapter(tool: CustomToolConfig) -> ToolAdapter:
    return ToolAdapter(
        key=tool.key,
        display_name=tool.display_name,
        relative_skills_dir=tool.relative_skills_dir,
        relative_detect_dir=tool.relative_detect_dir or tool.relative_skills_dir,
        supports_link=tool.supports_link,
        is_custom=True,
    )


class ToolAdapterRegistry:
    """Resolves built-in and custom tools against a home directory."""

    def __init__(
        self,
        home: Path | str,
        custom_tools: list[CustomToolConfig] | None = None,
        adapters: tuple[ToolAdapter, ...] = DEFAULT_TOOL_ADAPTERS,
    ):
        self.home = Path(home).expanduser()
        self._adapters: dict[str, ToolAdapter] = {adapter.key: adapter for adapter in adapters}
        for tool in custom_tools or []:
            # Built-in keys win over custom declarations.
            if tool.key and tool.key not in self._adapters:
                self._adapters[tool.key] = _custom_adapter(tool)

    @classmethod
    def from_config(cls, cfg: Config) -> "ToolAdapterRegistry":
        return cls(cfg.resolved_home(), cfg.tools.custom)

    def _resolve(self, relative: str) -> Path:
        # Forward slashes in adapter definitions map to native separators.
        return self.home.joinpath(*[part for part in relative.split("/") if part])

    def adapter(self, tool_id: str) -> ToolAdapter:
        adapter = self._adapters.get(tool_id)
        if adapter is None:
            raise NotFoundError("tool", tool_id)
        return adapter

    def has_tool(self, tool_id: str) -> bool:
        return tool_id in self._adapters

    def skills_root(self, tool_id: str) -> Path:
        return self._resolve(self.adapter(tool_id).relative_skills_dir)

    def is_installed(self, tool_id: str) -> bool:
        return self._resolve(self.adapter(tool_id).relative_detect_dir).exists()

    def get_tool(self, tool_id: str) -> ToolInfo:
        adapter = self.adapter(tool_id)
        return ToolInfo(
            id=adapter.key,
            label=adapter.display_name,
            installed=self.is_installed(tool_id),
            skills_root=self.skills_root(tool_id),
            supports_link=adapter.supports_link,
            is_custom=adapter.is_custom,
        )

    def get_tools(self) -> list[ToolInfo]:
        return [self.get_tool(key) for key in self._adapters]

    def installed_tools(self) -> list[ToolInfo]:
        return [tool for tool in self.get_tools() if tool.installed]
