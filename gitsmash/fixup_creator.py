"""Fixup commit creation and autosquash rebasing for a picked target."""

import logging
import os
import subprocess
from typing import Dict, List, Optional

import click

from .config import DisplayMode, SmashConfig
from .errors import ActionError, InvalidTargetError
from .git_analyzer import GitAnalyzer

logger = logging.getLogger(__name__)

ROOT_REBASE = "--root"


# Color constants for terminal output
class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    YELLOW = '\033[33m'
    WHITE = '\033[37m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_CYAN = '\033[96m'

    @staticmethod
    def colorize(text: str, color: str, bold: bool = False) -> str:
        """Apply color and formatting to text."""
        prefix = Colors.BOLD if bold else ""
        return f"{prefix}{color}{text}{Colors.RESET}"


class FixupCreator:
    """Turns a picked target into a fixup commit and an optional rebase."""

    def __init__(self, analyzer: GitAnalyzer, config: SmashConfig):
        self.analyzer = analyzer
        self.config = config

    def resolve_target(self, picked: str) -> str:
        """Make sure the picked text names a real commit."""
        if not self.analyzer.is_valid_rev(picked):
            raise InvalidTargetError(
                f"Selected commit '{picked}' not found",
                hint="Possibly --format or smash.format doesn't return a hash",
            )
        return picked

    def apply(self, picked: str) -> None:
        """Validate the target, then print it or smash the staged changes into it."""
        target = self.resolve_target(picked)

        if self.config.mode is DisplayMode.SELECT:
            click.echo(target)
        elif self.config.mode is DisplayMode.SMASH:
            self.create_fixup_commit(target)
            if self.config.auto_rebase:
                self.rebase_into(target)
        elif self.config.mode is DisplayMode.LIST:
            raise ValueError("List mode has no target action")
        else:
            raise ValueError(f"Unknown display mode: {self.config.mode}")

    def fixup_command(self, target: str) -> List[str]:
        """Arguments of the ``git commit`` creating the fixup."""
        args = ["git", "commit", "--verbose", self.config.fixup_mode.to_cli_option(target)]
        if not self.config.fixup_mode.edits_message:
            args.append("--no-edit")
        for option in (self.config.gpg_sign_option, self.config.verify_option):
            if option:
                args.append(option)
        return args

    def create_fixup_commit(self, target: str) -> None:
        """Commit the staged changes as a fixup of ``target``."""
        logger.info("Creating %s commit for %s", self.config.fixup_mode.value, target)
        self._run(self.fixup_command(target), "git commit")
        new_hash = Colors.colorize(self.analyzer.rev_parse("HEAD")[:8], Colors.BRIGHT_GREEN, bold=True)
        target_hash = Colors.colorize(target[:8], Colors.BRIGHT_CYAN, bold=True)
        click.echo(f"✅ Created {self.config.fixup_mode.value} commit {new_hash} for {target_hash}", err=True)

    def rebase_base(self, target: str) -> str:
        """Parent of ``target`` to rebase onto, or ``--root`` for a root commit."""
        commit = self.analyzer.rev_parse(target)
        if commit in self.analyzer.root_commits():
            return ROOT_REBASE
        return f"{commit}^"

    def rebase_command(self, target: str) -> List[str]:
        return ["git", "rebase", "--interactive", "--autosquash", "--autostash", self.rebase_base(target)]

    def rebase_environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        if not self.config.interactive:
            env.update({
                'GIT_EDITOR': 'true',
                'GIT_SEQUENCE_EDITOR': 'true',
            })
        return env

    def rebase_into(self, target: str) -> None:
        """Autosquash the fixup into ``target``."""
        command = self.rebase_command(target)
        logger.info("Rebasing onto %s", command[-1])
        self._run(command, "git rebase", env=self.rebase_environment())
        click.echo(Colors.colorize(f"✅ Rebased onto {command[-1]}", Colors.WHITE, bold=True), err=True)

    def _run(self, command: List[str], action: str, env: Optional[Dict[str, str]] = None) -> None:
        """Run an action with the terminal attached and surface its errors."""
        logger.debug("Running: %s", " ".join(command))
        result = subprocess.run(
            command,
            cwd=self.analyzer.toplevel,
            env=env,
            stderr=subprocess.PIPE,
            text=True,
        )
        if result.returncode != 0:
            raise ActionError(
                f"{action} failed",
                detail=result.stderr.rstrip(),
                exit_code=result.returncode,
            )
        if result.stderr:
            logger.debug("%s: %s", action, result.stderr.rstrip())
