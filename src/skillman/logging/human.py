"""
Human Log -- the HUMAN level, its formatter and a helper for the
user-facing progress of skill operations.

HUMAN (25) sits between INFO and WARNING. It marks the steps a user wants
to follow (cloning, discovering, installing, linking), not a severity:

    debug  (10) -> git arguments, hashes, resolved paths
    info   (20) -> component operations (config loaded, metadata written)
    human  (25) -> what skillman is doing for the user
    warn   (30) -> non-fatal problems (a symlink that could not be created)

Example output:
    Cloning https://github.com/anthropics/skills.git ...
      found 3 skills
    ✓ Installed pdf → .agents/skills/pdf
      linked claude-code
      ⚠ could not link windsurf: [Errno 13] Permission denied
"""

import logging
import sys

import structlog

HUMAN = 25


def _register_human_level() -> None:
    """Teach stdlib logging and structlog about the "human" method name."""
    logging.addLevelName(HUMAN, "HUMAN")

    def human(self, message, *args, **kwargs):
        if self.isEnabledFor(HUMAN):
            self._log(HUMAN, message, args, **kwargs)

    logging.Logger.human = human
    structlog.stdlib.LEVEL_TO_NAME[HUMAN] = "human"
    structlog.stdlib.NAME_TO_LEVEL["human"] = HUMAN


_register_human_level()


class HumanFormatter:
    """Turns structured skill events into readable lines.

    Each event type has its own format. Unknown events render as None and
    are dropped by the handler.
    """

    def format_event(self, event: str, **kw) -> str | None:
        """Format one event.

        Args:
            event: Event name (e.g. "git.clone.start", "skill.install.done")
            **kw: Event parameters

        Returns:
            Formatted text, or None if the event has no human format
        """
        match event:

            # ── GIT ──────────────────────────────────────────────────────
            case "git.clone.start":
                url = kw.get("url", "?")
                ref = kw.get("ref")
                ref_label = f" @ {ref}" if ref else ""
                return f"Cloning {url}{ref_label} ..."

            case "git.clone.fallback":
                return f"  retrying with branch {kw.get('branch', '?')}"

            # ── DISCOVERY ────────────────────────────────────────────────
            case "skill.discovered":
                count = kw.get("count", 0)
                plural = "" if count == 1 else "s"
                return f"  found {count} skill{plural}"

            # ── INSTALL ──────────────────────────────────────────────────
            case "skill.install.done":
                name = kw.get("name", "?")
                path = kw.get("path", "?")
                return f"✓ Installed {name} → {path}"

            case "skill.install.linked":
                return f"  linked {kw.get('agent', '?')}"

            case "skill.install.link_failed":
                agent = kw.get("agent", "?")
                error = kw.get("error", "unknown error")
                return f"  ⚠ could not link {agent}: {error}"

            # ── UPDATES ──────────────────────────────────────────────────
            case "skill.update.available":
                return f"  update available for {kw.get('name', '?')}"

            case "skill.update.none":
                return f"  {kw.get('name', '?')} is up to date"

            case "skill.update.done":
                return f"✓ Updated {kw.get('name', '?')}"

            case "skill.update.undeterminable":
                name = kw.get("name", "?")
                reason = kw.get("reason", "unknown")
                return f"  ⚠ could not check {name}: {reason}"

            # ── REMOVE ───────────────────────────────────────────────────
            case "skill.remove.done":
                name = kw.get("name", "?")
                if kw.get("canonical_removed"):
                    return f"✓ Removed {name}"
                return f"✓ Unlinked {name} (still used by other agents)"

            case _:
                return None


class HumanLogHandler(logging.Handler):
    """Logging handler that formats HUMAN-level records.

    Only HUMAN (25) records are processed. Writes to stderr so stdout stays
    clean for command output.
    """

    def __init__(self, stream=None) -> None:
        super().__init__(level=HUMAN)
        self.stream = stream or sys.stderr
        self.formatter_inst = HumanFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if record.levelno != HUMAN:
                return

            # structlog passes the event dict as the record message
            payload = record.msg if isinstance(record.msg, dict) else {}
            event = payload.get("event") or getattr(record, "event", None) or record.getMessage()
            kw = {k: v for k, v in payload.items() if k != "event"}

            formatted = self.formatter_inst.format_event(event, **kw)
            if formatted is not None:
                self.stream.write(formatted + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


class HumanLog:
    """Typed helper to emit HUMAN-level events.

    Works with any structlog logger. When the underlying logger has no
    ``human`` method (structlog's default PrintLogger, before
    configure_logging() ran) the event goes out at INFO tagged human=True.

    Usage:
        hlog = HumanLog(structlog.get_logger())
        hlog.clone_start("https://github.com/o/r.git", ref=None)
        hlog.installed("pdf", "/work/.agents/skills/pdf")
    """

    def __init__(self, logger) -> None:
        self._log = logger

    def _emit(self, event: str, **kw) -> None:
        # lazy proxies resolve _logger against the current structlog config
        if hasattr(getattr(self._log, "_logger", None), "human"):
            self._log.log(HUMAN, event, **kw)
        else:
            self._log.info(event, human=True, **kw)

    def clone_start(self, url: str, ref: str | None) -> None:
        self._emit("git.clone.start", url=url, ref=ref)

    def clone_fallback(self, branch: str) -> None:
        self._emit("git.clone.fallback", branch=branch)

    def discovered(self, count: int) -> None:
        self._emit("skill.discovered", count=count)

    def installed(self, name: str, path: str) -> None:
        self._emit("skill.install.done", name=name, path=path)

    def linked(self, agent: str) -> None:
        self._emit("skill.install.linked", agent=agent)

    def link_failed(self, agent: str, error: str) -> None:
        self._emit("skill.install.link_failed", agent=agent, error=error)

    def update_available(self, name: str) -> None:
        self._emit("skill.update.available", name=name)

    def up_to_date(self, name: str) -> None:
        self._emit("skill.update.none", name=name)

    def updated(self, name: str) -> None:
        self._emit("skill.update.done", name=name)

    def update_undeterminable(self, name: str, reason: str) -> None:
        self._emit("skill.update.undeterminable", name=name, reason=reason)

    def removed(self, name: str, canonical_removed: bool) -> None:
        self._emit("skill.remove.done", name=name, canonical_removed=canonical_removed)
