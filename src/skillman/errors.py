"""
Exception hierarchy for skillman.

Parser and discovery code never raises these for malformed input; they are
for orchestration failures the caller has to present to the user.
"""


class SkillmanError(Exception):
    """Base error for skillman operations."""


class GitCloneError(SkillmanError):
    """A repository could not be cloned.

    Attributes:
        url: Repository URL that was attempted.
        is_timeout: The clone exceeded its wall-clock limit.
        is_auth_error: The remote rejected the credentials or does not exist.
    """

    def __init__(self, message: str, url: str, is_timeout: bool = False, is_auth_error: bool = False):
        super().__init__(message)
        self.url = url
        self.is_timeout = is_timeout
        self.is_auth_error = is_auth_error


class UnsafeCleanupError(SkillmanError):
    """Cleanup was asked to delete a path outside the system temp directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Refusing to clean up directory outside of temp directory: {path}")


class ManifestNotFoundError(SkillmanError):
    """No SKILL.md exists at a resolved skill path or any conventional subfolder."""

    def __init__(self, path: str, checked: list[str]):
        self.path = path
        self.checked = checked
        locations = ", ".join(checked)
        super().__init__(f"SKILL.md not found in {path} (checked locations: {locations})")


class InstallCancelledError(SkillmanError):
    """The user cancelled the sub-skill selection."""

    def __init__(self) -> None:
        super().__init__("Installation cancelled")


class UnknownAgentError(SkillmanError):
    """An agent id is not in the agent registry."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Unknown agent: {agent_id}")


class MarketplaceError(SkillmanError):
    """A marketplace operation (search or remote manifest fetch) failed."""
