"""Exception types for git smash."""

from typing import Optional


class SmashError(Exception):
    """Base exception for git smash operations.

    Carries an optional remediation hint, the underlying tool's error text and
    the process exit code the CLI should terminate with.
    """

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        detail: Optional[str] = None,
        exit_code: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.detail = detail
        self.exit_code = exit_code


class ConfigError(SmashError):
    """Raised when a configuration value cannot be read or is invalid."""
    pass


class NoStagedChangesError(SmashError):
    """Raised when the index holds no staged changes."""

    def __init__(self):
        super().__init__(
            "No staged changes found",
            hint="Use git add -p to stage changed files",
        )


class NoLocalCommitsError(SmashError):
    """Raised when the upstream already contains HEAD."""

    def __init__(self):
        super().__init__(
            "No local commits found",
            hint="Try --all or set smash.range=all to list published commits",
        )


class UnknownRevisionError(SmashError):
    """Raised when a revision expression does not resolve."""
    pass


class DiscoveryError(SmashError):
    """Raised when a diff, blame or log query fails."""
    pass


class MenuNotFoundError(SmashError):
    """Raised when no interactive selection program is available."""
    pass


class PickerError(SmashError):
    """Raised when the selection program fails without a selection."""
    pass


class InvalidTargetError(SmashError):
    """Raised when the picked text is not a real commit."""
    pass


class ActionError(SmashError):
    """Raised when the fixup commit or the rebase fails."""
    pass


def command_stderr(error) -> str:
    """Return the bare stderr text of a GitPython ``GitCommandError``."""
    text = str(getattr(error, "stderr", "") or "").strip()
    prefix = "stderr: '"
    if text.startswith(prefix) and text.endswith("'"):
        text = text[len(prefix):-1]
    return text.strip()
