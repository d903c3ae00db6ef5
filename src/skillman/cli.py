"""
Main CLI for skillman using Click.

Every command loads configuration (defaults < YAML < env < flags), sets up
logging, then calls into SkillManager or MarketplaceClient. Progress for
people goes to stderr through the HUMAN log level; command output goes to
stdout.
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from . import __version__
from .config import AppConfig, load_config
from .errors import GitCloneError, InstallCancelledError, SkillmanError, UnknownAgentError
from .logging import configure_logging
from .marketplace import MarketplaceClient
from .skills import (
    InstallSourceMetadata,
    RemoteSkillSource,
    Skill,
    SkillManager,
    detect_installed_agents,
    get_supported_agents,
)
from .sources import build_skill_id, parse_source

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 3
EXIT_AUTH_ERROR = 4
EXIT_TIMEOUT = 5
EXIT_INTERRUPTED = 130

_VERSION = __version__


class ClickChooser:
    """Numbered prompt on the terminal. 0 cancels."""

    def choose(self, title: str, options: list[str]) -> int | None:
        click.echo(title, err=True)
        for i, option in enumerate(options, 1):
            click.echo(f"  {i}) {option}", err=True)
        index = click.prompt(
            "Skill number (0 to cancel)",
            type=click.IntRange(0, len(options)),
            default=0,
            err=True,
        )
        return index - 1 if index else None


_COMMON_OPTIONS = [
    click.option(
        "-c",
        "--config",
        type=click.Path(exists=True, path_type=Path),
        help="Path to the YAML configuration file",
    ),
    click.option("-w", "--workspace", help="Project root (default: current directory)"),
    click.option("-v", "--verbose", count=True, help="More technical output (-v, -vv)"),
    click.option("--quiet", is_flag=True, help="Only command output, no progress"),
    click.option("--log-file", help="Write a JSON log to this file"),
    click.option(
        "--log-level",
        type=click.Choice(["debug", "info", "human", "warn", "error"]),
        help="Console log level",
    ),
]


def common_options(fn):
    """Options shared by every command that loads configuration."""
    for option in reversed(_COMMON_OPTIONS):
        fn = option(fn)
    return fn


def _setup(kwargs: dict[str, Any], json_output: bool = False) -> AppConfig:
    """Load configuration and configure logging from the common options."""
    cli_args = {
        "workspace": kwargs.get("workspace"),
        "log_level": kwargs.get("log_level"),
        "log_file": kwargs.get("log_file"),
        "verbose": kwargs.get("verbose") or None,
    }
    app_config = load_config(config_path=kwargs.get("config"), cli_args=cli_args)
    configure_logging(app_config.logging, json_output=json_output, quiet=kwargs.get("quiet", False))
    return app_config


def _manager(app_config: AppConfig, interactive: bool = True) -> SkillManager:
    return SkillManager(
        app_config.workspace.root,
        home=app_config.workspace.home,
        chooser=ClickChooser() if interactive and sys.stdin.isatty() else None,
        clone_timeout=app_config.install.clone_timeout,
        fallback_branches=app_config.install.fallback_branches,
    )


def _target_agents(app_config: AppConfig, agents: tuple[str, ...]) -> list[str]:
    if agents:
        return list(agents)
    if app_config.install.default_agents:
        return list(app_config.install.default_agents)
    return detect_installed_agents(app_config.workspace.home, Path(app_config.workspace.root))


def _scope(app_config: AppConfig, global_flag: bool | None) -> str:
    if global_flag is None:
        return app_config.install.default_scope
    return "global" if global_flag else "project"


@contextmanager
def _handle_errors(verbose: int = 0) -> Iterator[None]:
    """Map exceptions to the documented exit codes."""
    try:
        yield
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except InstallCancelledError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_INTERRUPTED)
    except GitCloneError as e:
        click.echo(f"Error: {e}", err=True)
        if e.is_timeout:
            sys.exit(EXIT_TIMEOUT)
        if e.is_auth_error:
            sys.exit(EXIT_AUTH_ERROR)
        sys.exit(EXIT_FAILED)
    except (FileNotFoundError, ValidationError, UnknownAgentError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except SkillmanError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)
    except OSError as e:
        click.echo(f"Unexpected error: {e}", err=True)
        if verbose > 1:
            traceback.print_exc()
        sys.exit(EXIT_FAILED)


def _skill_to_dict(skill: Skill) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": skill.id,
        "name": skill.name,
        "description": skill.description,
        "hasUpdate": skill.has_update,
        "installedVersions": [
            {
                "agent": v.agent,
                "scope": v.scope,
                "path": str(v.path),
                "installMethod": v.install_method,
            }
            for v in skill.installed_versions
        ],
        "source": {"type": skill.source.type, "localPath": str(skill.source.local_path)},
    }
    if isinstance(skill.source, RemoteSkillSource):
        data["source"].update(skill.source.tracking.model_dump(mode="json", by_alias=True, exclude_none=True))
    if skill.latest_version:
        data["latestVersion"] = skill.latest_version
    return data


def _echo_skills(skills: list[Skill]) -> None:
    if not skills:
        click.echo("  No skills installed.")
        return
    for skill in sorted(skills, key=lambda s: (s.scope, s.name)):
        agents = ", ".join(v.agent for v in skill.installed_versions)
        origin = "remote" if isinstance(skill.source, RemoteSkillSource) else "local"
        marker = "  (update available)" if skill.has_update else ""
        click.echo(f"  {skill.name:<24} [{skill.scope}, {origin}] {agents}{marker}")


@click.group()
@click.version_option(version=_VERSION, prog_name="skillman")
def main() -> None:
    """skillman - install and keep agent skills up to date.

    Skills are SKILL.md packages from local folders, GitHub, GitLab or any
    git host. One canonical copy per scope, linked into each agent.
    """
    pass


@main.command()
@click.argument("source")
@click.option("-a", "--agent", "agents", multiple=True, help="Agent to link (repeatable)")
@click.option("-g/-p", "--global/--project", "global_flag", default=None, help="Install scope")
@click.option("-s", "--skill", "sub_skill", help="Skill to pick in a multi-skill repository")
@click.option("--ref", help="Branch or tag to clone")
@common_options
def install(source: str, agents: tuple[str, ...], global_flag: bool | None, sub_skill: str | None,
            ref: str | None, **kwargs) -> None:
    """Install a skill from SOURCE (owner/repo, URL or local path)."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs)
        manager = _manager(app_config)
        result = manager.install_skill(
            source,
            _target_agents(app_config, agents),
            _scope(app_config, global_flag),
            InstallSourceMetadata(sub_skill=sub_skill, ref=ref),
        )
        click.echo(f"Installed {result.skill_name} -> {result.canonical_dir}")
        if result.linked_agents:
            click.echo(f"  Linked: {', '.join(result.linked_agents)}")
        for warning in result.warnings:
            click.echo(f"  Warning: {warning}", err=True)


@main.command("list")
@click.option("-g/-p", "--global/--project", "global_flag", default=None, help="Only one scope")
@click.option("-a", "--agent", "agents", multiple=True, help="Agent directories to scan")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@common_options
def list_cmd(global_flag: bool | None, agents: tuple[str, ...], json_output: bool, **kwargs) -> None:
    """List installed skills."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs, json_output=json_output)
        skills = _manager(app_config, interactive=False).list_installed_skills(
            global_scope=global_flag,
            agent_filter=list(agents) or None,
        )
        if json_output:
            click.echo(json.dumps([_skill_to_dict(s) for s in skills], indent=2))
        else:
            _echo_skills(skills)


@main.command()
@click.option("-g/-p", "--global/--project", "global_flag", default=None, help="Only one scope")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@common_options
def check(global_flag: bool | None, json_output: bool, **kwargs) -> None:
    """Check installed remote skills for updates."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs, json_output=json_output)
        manager = _manager(app_config, interactive=False)
        skills = manager.check_updates(manager.list_installed_skills(global_scope=global_flag))
        if json_output:
            click.echo(json.dumps([_skill_to_dict(s) for s in skills], indent=2))
            return
        outdated = [s for s in skills if s.has_update]
        if not outdated:
            click.echo("All skills are up to date.")
            return
        for skill in outdated:
            click.echo(f"  {skill.name} ({skill.scope})")


@main.command()
@click.argument("names", nargs=-1)
@click.option("-a", "--agent", "agents", multiple=True, help="Also link these agents")
@click.option("-g/-p", "--global/--project", "global_flag", default=None, help="Only one scope")
@common_options
def update(names: tuple[str, ...], agents: tuple[str, ...], global_flag: bool | None, **kwargs) -> None:
    """Update NAMES (default: every skill installed from a repository)."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs)
        manager = _manager(app_config, interactive=False)
        skills = [
            s for s in manager.list_installed_skills(global_scope=global_flag)
            if isinstance(s.source, RemoteSkillSource) and (not names or s.name in names or s.id in names)
        ]
        if not skills:
            click.echo("No matching skills installed from a repository.")
            return

        updated = 0
        for skill in skills:
            result = manager.update_skill(skill, list(agents))
            if result.updated:
                updated += 1
                click.echo(f"Updated {skill.name}")
            else:
                click.echo(f"{skill.name} is up to date")
        click.echo(f"{updated} of {len(skills)} skills updated.")


@main.command()
@click.argument("name")
@click.option("-a", "--agent", "agents", multiple=True, help="Only unlink these agents")
@click.option("-g/-p", "--global/--project", "global_flag", default=None, help="Install scope")
@common_options
def remove(name: str, agents: tuple[str, ...], global_flag: bool | None, **kwargs) -> None:
    """Remove skill NAME from some agents, or from all of them."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs)
        result = _manager(app_config, interactive=False).remove_skill(
            name, list(agents), _scope(app_config, global_flag),
        )
        if result.canonical_removed:
            click.echo(f"Removed {result.skill_name}")
        elif result.removed_agents:
            click.echo(f"Unlinked {result.skill_name} from {', '.join(result.removed_agents)}")
        else:
            click.echo(f"Skill '{result.skill_name}' not found", err=True)


@main.command()
@click.argument("query")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@common_options
def search(query: str, json_output: bool, **kwargs) -> None:
    """Search the configured marketplaces."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs, json_output=json_output)
        with MarketplaceClient.from_config(app_config) as client:
            results = client.search(query)

        if json_output:
            click.echo(json.dumps([
                {k: v for k, v in vars(r).items() if v is not None} for r in results
            ], indent=2))
            return
        if not results:
            click.echo("No skills found.")
            return
        for r in results:
            market = f" [{r.market_name}]" if r.market_name else ""
            click.echo(f"  {r.name:<24} {r.id}{market}")
            if r.description:
                click.echo(f"    {r.description}")


@main.command()
@click.argument("repository")
@click.option("-s", "--skill", "sub_skill", help="Skill in a multi-skill repository")
@common_options
def show(repository: str, sub_skill: str | None, **kwargs) -> None:
    """Print the SKILL.md of a remote skill."""
    with _handle_errors(kwargs.get("verbose", 0)):
        app_config = _setup(kwargs)
        skill_id = build_skill_id(parse_source(repository))
        with MarketplaceClient.from_config(app_config) as client:
            content = client.fetch_remote_manifest(repository, skill_id, sub_skill)
        click.echo(content)


@main.command()
@click.option("--detected", is_flag=True, help="Only agents found on this machine")
@click.option("-w", "--workspace", help="Project root (default: current directory)")
def agents(detected: bool, workspace: str | None) -> None:
    """List supported agents and where they read skills from."""
    found = set(detect_installed_agents(cwd=Path(workspace or ".")))
    click.echo("Supported agents:\n")
    for agent in get_supported_agents():
        if detected and agent.id not in found:
            continue
        marker = "*" if agent.id in found else " "
        location = ".agents/skills (universal)" if agent.universal else agent.project_path
        click.echo(f"  {marker} {agent.id:<16} {agent.display_name:<18} {location}")
    click.echo("\n  * detected on this machine")


@main.command()
@click.argument("source")
def parse(source: str) -> None:
    """Show how SOURCE is interpreted."""
    parsed = parse_source(source)
    click.echo(json.dumps({k: v for k, v in vars(parsed).items() if v is not None}, indent=2))


@main.command("validate-config")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to the configuration file to validate",
)
def validate_config(config: Path | None) -> None:
    """Validate a YAML configuration file."""
    try:
        app_config = load_config(config_path=config)
        click.echo("Valid configuration")
        click.echo(f"  Workspace: {app_config.workspace.root}")
        click.echo(f"  Default scope: {app_config.install.default_scope}")
        click.echo(f"  Marketplaces: {len([a for a in app_config.marketplace.apis if a.enabled])}")
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except (ValidationError, ValueError) as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
