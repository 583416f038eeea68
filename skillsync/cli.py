"""Command-line interface for skillsync."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from skillsync.config import Config, get_config, set_config
from skillsync.engine import STATUS_CONFLICT, STATUS_OK, SkillEngine
from skillsync.exceptions import (
    ConfigurationError,
    MultiSkillsError,
    SkillExistsError,
    SkillSyncError,
    TargetExistsError,
)
from skillsync.git_source import GitSkillCandidate
from skillsync.installer import InstallResult
from skillsync.logging import configure_logging

T = TypeVar("T")

console = Console()
app = typer.Typer(help="skillsync - one canonical copy of every skill, synced into each AI tool.")
repos_app = typer.Typer(help="Manage git repository bookmarks.")
tools_app = typer.Typer(help="Inspect tools and preferred sync targets.")
app.add_typer(repos_app, name="repos")
app.add_typer(tools_app, name="tools")


class ConflictResolver:
    """Interactive overwrite / overwrite-all / skip loop around ``overwrite``."""

    def __init__(self, assume: str | None = None):
        self.overwrite_all = assume == "overwrite"
        self.skip_all = assume == "skip"

    def decide(self, message: str, has_more: bool = False) -> bool:
        if self.overwrite_all:
            return True
        if self.skip_all:
            return False
        choices = ["overwrite", "skip"] + (["all"] if has_more else [])
        choice = Prompt.ask(f"[yellow]{message}[/yellow]", choices=choices, default="skip")
        if choice == "all":
            self.overwrite_all = True
            return True
        return choice == "overwrite"


def _run(work: Callable[[SkillEngine], Awaitable[T]]) -> T:
    async def _main() -> T:
        engine = SkillEngine(get_config())
        try:
            return await work(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(_main())
    except SkillSyncError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc}")
        raise typer.Exit(1) from exc


def _resolver(yes: bool, no: bool) -> ConflictResolver:
    if yes:
        return ConflictResolver("overwrite")
    if no:
        return ConflictResolver("skip")
    return ConflictResolver()


async def _install_with_retry(
    install: Callable[[bool], Awaitable[InstallResult]],
    resolver: ConflictResolver,
    overwrite: bool,
    has_more: bool = False,
) -> InstallResult | None:
    try:
        return await install(overwrite)
    except SkillExistsError as exc:
        if overwrite or not resolver.decide(f"Skill '{exc.name}' already exists.", has_more):
            console.print(f"[dim]Skipped {exc.name}[/dim]")
            return None
        return await install(True)


async def _sync_to_tools(
    engine: SkillEngine,
    result: InstallResult,
    tool_ids: list[str],
    resolver: ConflictResolver,
) -> None:
    for index, tool_id in enumerate(tool_ids):
        outcome = (await engine.sync_skill_to_tools(result.skill_id, [tool_id]))[0]
        if outcome.status == STATUS_CONFLICT and isinstance(outcome.error, TargetExistsError):
            has_more = index < len(tool_ids) - 1
            if resolver.decide(f"{outcome.error.path} already exists.", has_more):
                outcome = (
                    await engine.sync_skill_to_tools(result.skill_id, [tool_id], overwrite=True)
                )[0]
        if outcome.status == STATUS_OK:
            console.print(f"  [green]✓[/green] {tool_id}: {outcome.detail}")
        elif outcome.status == STATUS_CONFLICT:
            console.print(f"  [yellow]-[/yellow] {tool_id}: skipped")
        else:
            console.print(f"  [red]✗[/red] {tool_id}: {outcome.detail}")


def _print_candidates(candidates: list[GitSkillCandidate]) -> None:
    table = Table(title="Skills in repository", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Path")
    table.add_column("Description")
    for index, candidate in enumerate(candidates, start=1):
        table.add_row(str(index), candidate.name, candidate.subpath or ".", candidate.description)
    console.print(table)


def _pick_candidates(candidates: list[GitSkillCandidate]) -> list[GitSkillCandidate]:
    _print_candidates(candidates)
    raw = Prompt.ask("Install which skills? (numbers separated by commas, or 'all')", default="all")
    if raw.strip().lower() == "all":
        return list(candidates)
    picked: list[GitSkillCandidate] = []
    for part in raw.split(","):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= len(candidates):
            picked.append(candidates[int(part) - 1])
    return picked


@app.callback()
def main(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Load configuration and logging before any command runs."""
    try:
        cfg = Config.load(config or None)
    except ConfigurationError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc}")
        raise typer.Exit(1) from exc
    set_config(cfg)
    configure_logging(cfg, verbose=verbose)


@app.command()
def install(
    path: str = typer.Argument("", help="Local skill folder"),
    git: str = typer.Option("", "--git", "-g", help="Git repository URL"),
    branch: str = typer.Option("", "--branch", "-b", help="Git branch"),
    subpath: str = typer.Option("", "--subpath", "-s", help="Skill folder inside the repository"),
    tool: list[str] = typer.Option([], "--tool", "-t", help="Tool to sync to (repeatable)"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing skills and targets"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Only install into the central store"),
) -> None:
    """Install a skill from a local folder or a git repository."""
    if not path and not git:
        console.print("[red]Provide a local PATH or --git URL.[/red]")
        raise typer.Exit(2)
    resolver = _resolver(overwrite, False)

    async def _work(engine: SkillEngine) -> None:
        results: list[InstallResult] = []
        if path:
            result = await _install_with_retry(
                lambda force: engine.install_local_skill(path, overwrite=force), resolver, overwrite
            )
            results.extend([result] if result else [])
        else:
            selection = [GitSkillCandidate(subpath=subpath, name="")] if subpath else []
            if not selection:
                try:
                    result = await _install_with_retry(
                        lambda force: engine.install_git_skill(git, branch or None, overwrite=force),
                        resolver,
                        overwrite,
                    )
                    results.extend([result] if result else [])
                except MultiSkillsError as exc:
                    selection = _pick_candidates(exc.candidates)
            for index, candidate in enumerate(selection):
                result = await _install_with_retry(
                    lambda force, sub=candidate.subpath: engine.install_git_selection(
                        git, sub, branch or None, overwrite=force
                    ),
                    resolver,
                    overwrite,
                    has_more=index < len(selection) - 1,
                )
                results.extend([result] if result else [])

        tool_ids = list(tool) or await engine.default_sync_tools()
        for result in results:
            console.print(f"[green]Installed[/green] {result.name} → {result.central_path}")
            if not no_sync and tool_ids:
                await _sync_to_tools(engine, result, tool_ids, resolver)

    _run(_work)


@app.command()
def candidates(
    url: str = typer.Argument(..., help="Git repository URL"),
    branch: str = typer.Option("", "--branch", "-b", help="Git branch"),
) -> None:
    """List the skills a git repository offers without installing."""
    found = _run(lambda engine: engine.list_git_skills(url, branch or None))
    _print_candidates(found)


@app.command("list")
def list_skills() -> None:
    """List registered skills and where they are synced."""
    skills = _run(lambda engine: engine.list_skills())
    table = Table(title="Skills", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Tools")
    table.add_column("Id", style="dim")
    for skill in skills:
        tools = ", ".join(f"{target.tool_id} ({target.mode})" for target in skill.targets) or "-"
        table.add_row(str(skill.sort_order), skill.name, skill.source_ref, tools, skill.id)
    console.print(table)


@app.command()
def sync(
    skill: str = typer.Argument(..., help="Skill id or name"),
    tool: list[str] = typer.Argument(None, help="Tool ids (default: preferred or installed tools)"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace occupied targets"),
) -> None:
    """Materialize a skill inside one or more tools."""
    resolver = _resolver(overwrite, False)

    async def _work(engine: SkillEngine) -> None:
        found = await engine.find_skill(skill)
        tool_ids = list(tool or []) or await engine.default_sync_tools()
        result = InstallResult(skill_id=found.id, central_path=found.central_path, name=found.name)
        await _sync_to_tools(engine, result, tool_ids, resolver)

    _run(_work)


@app.command()
def unsync(
    skill: str = typer.Argument(..., help="Skill id or name"),
    tool: str = typer.Argument(..., help="Tool id"),
) -> None:
    """Remove a skill's materialization from one tool."""

    async def _work(engine: SkillEngine) -> bool:
        found = await engine.find_skill(skill)
        return await engine.unsync_skill_from_tool(found.id, tool)

    removed = _run(_work)
    console.print("[green]Unsynced[/green]" if removed else "[dim]Nothing to unsync[/dim]")


@app.command()
def delete(
    skill: str = typer.Argument(..., help="Skill id or name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a skill, its central copy and every tool materialization."""
    if not yes and not Confirm.ask(f"Delete skill '{skill}' from every tool?", default=False):
        raise typer.Exit(0)

    async def _work(engine: SkillEngine) -> None:
        found = await engine.find_skill(skill)
        await engine.delete_skill(found.id)

    _run(_work)
    console.print(f"[green]Deleted[/green] {skill}")


@app.command()
def reorder(ids: list[str] = typer.Argument(..., help="Skill ids in the desired order")) -> None:
    """Reorder skills; unlisted skills keep their order after the listed ones."""
    ordered = _run(lambda engine: engine.reorder_skills(list(ids)))
    console.print(f"[green]Order:[/green] {', '.join(ordered)}")


@app.command()
def update(skill: str = typer.Argument(..., help="Skill id or name")) -> None:
    """Re-pull a skill from its original source."""

    async def _work(engine: SkillEngine) -> InstallResult:
        found = await engine.find_skill(skill)
        return await engine.update_skill(found.id)

    result = _run(_work)
    console.print(f"[green]Updated[/green] {result.name}")


@app.command()
def scan() -> None:
    """Discover skills already present in tool directories."""
    plan = _run(lambda engine: engine.get_onboarding_plan())
    console.print(
        f"Scanned {plan.total_tools_scanned} tools, found {plan.total_skills_found} skills "
        f"in {len(plan.groups)} groups."
    )
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Tool")
    table.add_column("Path")
    table.add_column("Conflicts with", style="yellow")
    for group in plan.groups:
        for variant in group.variants:
            path = variant.path + (f" → {variant.link_target}" if variant.is_link else "")
            table.add_row(group.name, variant.tool, path, ", ".join(variant.conflicting_tools))
    console.print(table)


@app.command("import")
def import_skills(
    paths: list[str] = typer.Argument(..., help="Discovered skill folders to import"),
    tool: list[str] = typer.Option([], "--tool", "-t", help="Also sync to these tools"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Overwrite existing skills"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="Never overwrite"),
) -> None:
    """Import discovered skills into the central store."""
    resolver = _resolver(overwrite, skip_existing)

    async def _work(engine: SkillEngine) -> None:
        imported = skipped = 0
        for index, path in enumerate(paths):
            result = await _install_with_retry(
                lambda force, p=path: engine.import_existing_skill(p, overwrite=force),
                resolver,
                overwrite,
                has_more=index < len(paths) - 1,
            )
            if result is None:
                skipped += 1
                continue
            imported += 1
            console.print(f"[green]Imported[/green] {result.name}")
            if tool:
                await _sync_to_tools(engine, result, list(tool), resolver)
        console.print(f"imported: {imported}, skipped: {skipped}")

    _run(_work)


@repos_app.command("list")
def repos_list() -> None:
    """Show bookmarked repositories."""
    repos = _run(lambda engine: engine.init_default_repos())
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("URL", style="dim")
    for repo in repos:
        table.add_row(repo.key, repo.branch, repo.url)
    console.print(table)


@repos_app.command("add")
def repos_add(
    owner: str = typer.Argument(...),
    name: str = typer.Argument(...),
    branch: str = typer.Option("main", "--branch", "-b"),
) -> None:
    """Bookmark a repository."""
    repo = _run(lambda engine: engine.add_skill_repo(owner, name, branch))
    console.print(f"[green]Saved[/green] {repo.key}@{repo.branch}")


@repos_app.command("remove")
def repos_remove(owner: str = typer.Argument(...), name: str = typer.Argument(...)) -> None:
    """Remove a repository bookmark."""
    removed = _run(lambda engine: engine.remove_skill_repo(owner, name))
    console.print("[green]Removed[/green]" if removed else "[dim]Not bookmarked[/dim]")


@tools_app.command("list")
def tools_list() -> None:
    """Show known tools, whether they are installed and their skills path."""

    async def _work(engine: SkillEngine):
        return await engine.get_tools(), await engine.default_sync_tools()

    tools, defaults = _run(_work)
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Installed")
    table.add_column("Default")
    table.add_column("Skills path", style="dim")
    for info in tools:
        table.add_row(
            info.id,
            info.label + (" (custom)" if info.is_custom else ""),
            "yes" if info.installed else "no",
            "✓" if info.id in defaults else "",
            str(info.skills_root),
        )
    console.print(table)


@tools_app.command("prefer")
def tools_prefer(ids: list[str] = typer.Argument(None, help="Tool ids; empty resets to installed tools")) -> None:
    """Set the tools new skills sync to by default."""
    saved = _run(lambda engine: engine.set_preferred_tools(list(ids or [])))
    console.print(f"[green]Preferred tools:[/green] {', '.join(saved) or '(all installed)'}")


@app.command()
def version() -> None:
    """Show version information."""
    from skillsync import __version__

    console.print(f"skillsync v{__version__}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
