"""
Agent Registry -- the coding agents skills can be installed for.

Universal agents read the canonical `.agents/skills` directory directly.
Every other agent gets a per-agent directory holding a symlink to the
canonical copy.

Global paths are templates resolved against a home directory:
    {home}    the home directory
    {config}  $XDG_CONFIG_HOME or {home}/.config
    {codex}   $CODEX_HOME or {home}/.codex
    {claude}  $CLAUDE_CONFIG_DIR or {home}/.claude
    {cwd}     the workspace root (detection only)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ..errors import UnknownAgentError

Scope = Literal["project", "global"]

AGENTS_DIR = ".agents"
SKILLS_SUBDIR = "skills"
CANONICAL_PROJECT_PATH = f"{AGENTS_DIR}/{SKILLS_SUBDIR}"


@dataclass(frozen=True)
class AgentInfo:
    """One supported agent.

    Attributes:
        id: Stable identifier used on the CLI and in InstalledVersion.agent
        display_name: Human-readable name
        project_path: Skills directory relative to the workspace root
        global_paths: Candidate global directories; the first existing one
            wins, otherwise the first is used
        universal: Reads the canonical directory, needs no link
        detect_paths: Any existing path marks the agent as installed
    """

    id: str
    display_name: str
    project_path: str
    global_paths: tuple[str, ...]
    universal: bool = False
    detect_paths: tuple[str, ...] = ()

    @property
    def global_path(self) -> str:
        return self.global_paths[0]


def _agent(id, display_name, project_path, global_path, detect, universal=False) -> AgentInfo:
    global_paths = (global_path,) if isinstance(global_path, str) else tuple(global_path)
    detect_paths = (detect,) if isinstance(detect, str) else tuple(detect)
    return AgentInfo(id, display_name, project_path, global_paths, universal, detect_paths)


SUPPORTED_AGENTS: tuple[AgentInfo, ...] = (
    _agent("amp", "Amp", CANONICAL_PROJECT_PATH, "{config}/agents/skills", "{config}/amp", universal=True),
    _agent("antigravity", "Antigravity", ".agent/skills", "{home}/.gemini/antigravity/skills", "{home}/.gemini/antigravity"),
    _agent("augment", "Augment", ".augment/skills", "{home}/.augment/skills", "{home}/.augment"),
    _agent("claude-code", "Claude Code", ".claude/skills", "{claude}/skills", "{claude}"),
    _agent(
        "openclaw", "OpenClaw", "skills",
        ("{home}/.openclaw/skills", "{home}/.clawdbot/skills", "{home}/.moltbot/skills"),
        ("{home}/.openclaw", "{home}/.clawdbot", "{home}/.moltbot"),
    ),
    _agent("cline", "Cline", CANONICAL_PROJECT_PATH, "{home}/.agents/skills", "{home}/.cline", universal=True),
    _agent("codebuddy", "CodeBuddy", ".codebuddy/skills", "{home}/.codebuddy/skills", ("{cwd}/.codebuddy", "{home}/.codebuddy")),
    _agent("codex", "Codex", CANONICAL_PROJECT_PATH, "{codex}/skills", ("{codex}", "/etc/codex"), universal=True),
    _agent("command-code", "Command Code", ".commandcode/skills", "{home}/.commandcode/skills", "{home}/.commandcode"),
    _agent("continue", "Continue", ".continue/skills", "{home}/.continue/skills", ("{cwd}/.continue", "{home}/.continue")),
    _agent("cortex", "Cortex Code", ".cortex/skills", "{home}/.snowflake/cortex/skills", "{home}/.snowflake/cortex"),
    _agent("crush", "Crush", ".crush/skills", "{home}/.config/crush/skills", "{home}/.config/crush"),
    _agent("cursor", "Cursor", CANONICAL_PROJECT_PATH, "{home}/.cursor/skills", "{home}/.cursor", universal=True),
    _agent("droid", "Droid", ".factory/skills", "{home}/.factory/skills", "{home}/.factory"),
    _agent("gemini-cli", "Gemini CLI", CANONICAL_PROJECT_PATH, "{home}/.gemini/skills", "{home}/.gemini", universal=True),
    _agent("github-copilot", "GitHub Copilot", CANONICAL_PROJECT_PATH, "{home}/.copilot/skills", "{home}/.copilot", universal=True),
    _agent("goose", "Goose", ".goose/skills", "{config}/goose/skills", "{config}/goose"),
    _agent("junie", "Junie", ".junie/skills", "{home}/.junie/skills", "{home}/.junie"),
    _agent("iflow-cli", "iFlow CLI", ".iflow/skills", "{home}/.iflow/skills", "{home}/.iflow"),
    _agent("kilo", "Kilo Code", ".kilocode/skills", "{home}/.kilocode/skills", "{home}/.kilocode"),
    _agent("kimi-cli", "Kimi Code CLI", CANONICAL_PROJECT_PATH, "{home}/.config/agents/skills", "{home}/.kimi", universal=True),
    _agent("kiro-cli", "Kiro CLI", ".kiro/skills", "{home}/.kiro/skills", "{home}/.kiro"),
    _agent("kode", "Kode", ".kode/skills", "{home}/.kode/skills", "{home}/.kode"),
    _agent("mcpjam", "MCPJam", ".mcpjam/skills", "{home}/.mcpjam/skills", "{home}/.mcpjam"),
    _agent("mistral-vibe", "Mistral Vibe", ".vibe/skills", "{home}/.vibe/skills", "{home}/.vibe"),
    _agent("mux", "Mux", ".mux/skills", "{home}/.mux/skills", "{home}/.mux"),
    _agent("opencode", "OpenCode", CANONICAL_PROJECT_PATH, "{config}/opencode/skills", "{config}/opencode", universal=True),
    _agent("openhands", "OpenHands", ".openhands/skills", "{home}/.openhands/skills", "{home}/.openhands"),
    _agent("pi", "Pi", ".pi/skills", "{home}/.pi/agent/skills", "{home}/.pi/agent"),
    _agent("qoder", "Qoder", ".qoder/skills", "{home}/.qoder/skills", "{home}/.qoder"),
    _agent("qwen-code", "Qwen Code", ".qwen/skills", "{home}/.qwen/skills", "{home}/.qwen"),
    _agent("replit", "Replit", CANONICAL_PROJECT_PATH, "{config}/agents/skills", "{cwd}/.replit", universal=True),
    _agent("roo", "Roo Code", ".roo/skills", "{home}/.roo/skills", "{home}/.roo"),
    _agent("trae", "Trae", ".trae/skills", "{home}/.trae/skills", "{home}/.trae"),
    _agent("trae-cn", "Trae CN", ".trae/skills", "{home}/.trae-cn/skills", "{home}/.trae-cn"),
    _agent("windsurf", "Windsurf", ".windsurf/skills", "{home}/.codeium/windsurf/skills", "{home}/.codeium/windsurf"),
    _agent("zencoder", "Zencoder", ".zencoder/skills", "{home}/.zencoder/skills", "{home}/.zencoder"),
    _agent("neovate", "Neovate", ".neovate/skills", "{home}/.neovate/skills", "{home}/.neovate"),
    _agent("pochi", "Pochi", ".pochi/skills", "{home}/.pochi/skills", "{home}/.pochi"),
    _agent("adal", "AdaL", ".adal/skills", "{home}/.adal/skills", "{home}/.adal"),
)

_AGENTS_BY_ID = {agent.id: agent for agent in SUPPORTED_AGENTS}


def _expand(template: str, home: Path, cwd: Path | None = None) -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(home / ".config")
    codex_home = (os.environ.get("CODEX_HOME") or "").strip() or str(home / ".codex")
    claude_home = (os.environ.get("CLAUDE_CONFIG_DIR") or "").strip() or str(home / ".claude")
    return Path(template.format(
        home=home,
        config=config_home,
        codex=codex_home,
        claude=claude_home,
        cwd=cwd if cwd is not None else Path.cwd(),
    ))


def _home(home: Path | None) -> Path:
    return Path(home) if home is not None else Path.home()


def get_supported_agents() -> list[AgentInfo]:
    return list(SUPPORTED_AGENTS)


def get_agent(agent_id: str) -> AgentInfo:
    """Look up an agent by id.

    Raises:
        UnknownAgentError: The id is not in the registry.
    """
    agent = _AGENTS_BY_ID.get(agent_id)
    if agent is None:
        raise UnknownAgentError(agent_id)
    return agent


def find_agent(agent_id: str) -> AgentInfo | None:
    return _AGENTS_BY_ID.get(agent_id)


def get_universal_agents() -> list[str]:
    return [agent.id for agent in SUPPORTED_AGENTS if agent.universal]


def get_non_universal_agents() -> list[str]:
    return [agent.id for agent in SUPPORTED_AGENTS if not agent.universal]


def detect_installed_agents(home: Path | None = None, cwd: Path | None = None) -> list[str]:
    """Return the ids of agents whose marker paths exist on this machine."""
    base = _home(home)
    detected = []
    for agent in SUPPORTED_AGENTS:
        if any(_expand(marker, base, cwd).exists() for marker in agent.detect_paths):
            detected.append(agent.id)
    return detected


def get_canonical_skills_dir(scope: Scope, cwd: Path, home: Path | None = None) -> Path:
    """`<cwd>/.agents/skills` for project scope, `<home>/.agents/skills` for global."""
    base = _home(home) if scope == "global" else Path(cwd)
    return base / AGENTS_DIR / SKILLS_SUBDIR


def get_agent_skills_dir(agent_id: str, scope: Scope, cwd: Path, home: Path | None = None) -> Path:
    """Directory where an agent looks for skills in the given scope.

    Universal agents always resolve to the canonical directory.

    Raises:
        UnknownAgentError: The id is not in the registry.
    """
    agent = get_agent(agent_id)
    if agent.universal:
        return get_canonical_skills_dir(scope, cwd, home)

    if scope == "project":
        return Path(cwd) / agent.project_path

    base = _home(home)
    candidates = [_expand(template, base, cwd) for template in agent.global_paths]
    for candidate in candidates:
        if candidate.parent.exists():
            return candidate
    return candidates[0]
