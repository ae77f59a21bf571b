"""Streaming candidates to stdout or to an interactive selection program.

The selection program is started before discovery begins and reads
candidates from a pipe while they are still being produced, so the user can
pick from early results. A closed pipe on the consumer side only stops the
stream; it is never reported as an error.
"""

import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, TextIO, Tuple

import click

from .candidates import Candidate
from .errors import MenuNotFoundError, PickerError

logger = logging.getLogger(__name__)

SUPPORTED_MENUS = ("sk", "fzf")
PREVIEW_COMMAND = "git show --stat --patch --color"

# Exit statuses of sk/fzf that mean "nothing selected" rather than failure
ABORT_STATUSES = (0, 1, 130)


@dataclass(frozen=True)
class MenuCommand:
    """An executable plus its arguments."""
    command: str
    args: Tuple[str, ...] = ()

    @property
    def argv(self) -> list:
        return [self.command, *self.args]


def resolve_menu_command(configured: Optional[str] = None, ext_diff_option: Optional[str] = None) -> MenuCommand:
    """Find the selection program.

    A configured ``smash.menu`` command wins; otherwise skim and then fzf are
    looked up on the PATH and given a commit preview.
    """
    if configured:
        words = shlex.split(configured)
        binary = shutil.which(words[0]) if words else None
        if not binary:
            raise MenuNotFoundError(f"Can't find the configured menu command '{configured}'",
                                    hint="Check smash.menu or install the program")
        return MenuCommand(binary, tuple(words[1:]))

    preview = PREVIEW_COMMAND
    if ext_diff_option:
        preview = f"{preview} {ext_diff_option}"
    fuzzy_args = ("--ansi", "--preview", f"{preview} {{+1}}")
    for name in SUPPORTED_MENUS:
        binary = shutil.which(name)
        if binary:
            logger.debug("Using menu command %s", binary)
            return MenuCommand(binary, fuzzy_args)

    raise MenuNotFoundError("Can't find any supported fuzzy matcher or menu command",
                            hint="Please install skim, fzf or configure one with smash.menu")


class StdoutSink:
    """Writes candidate lines to stdout until the reader goes away."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdout
        self.closed = False

    @property
    def is_terminal(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    def write(self, line: str) -> bool:
        if self.closed:
            return False
        try:
            click.echo(line, file=self.stream, color=True)
            self.stream.flush()
        except BrokenPipeError:
            logger.debug("stdout closed, stopping the candidate stream")
            self.closed = True
            self._silence()
            return False
        return True

    def _silence(self) -> None:
        """Point stdout at the null device so the final flush does not fail."""
        try:
            fd = self.stream.fileno()
        except (AttributeError, OSError, ValueError):
            return
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, fd)
        os.close(devnull)


class PickerProcess:
    """The selection program, fed line by line through its stdin."""

    def __init__(self, menu: MenuCommand, cwd: Optional[Path] = None):
        self.menu = menu
        self.cwd = cwd
        self.closed = False
        self._proc: Optional[subprocess.Popen] = None

    def __enter__(self) -> "PickerProcess":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    def start(self) -> None:
        logger.debug("Starting menu command: %s", " ".join(self.menu.argv))
        try:
            self._proc = subprocess.Popen(
                self.menu.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                cwd=self.cwd,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise MenuNotFoundError(f"Failed to start menu command '{self.menu.command}': {e}",
                                    hint="Check smash.menu or install skim or fzf") from e

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def write(self, line: str) -> bool:
        """Send one candidate line; False once the picker stopped reading."""
        if self.closed or self._proc is None:
            return False
        try:
            self._proc.stdin.write(line + "\n")
            self._proc.stdin.flush()
        except BrokenPipeError:
            logger.debug("Menu command closed its input, stopping the candidate stream")
            self.closed = True
            return False
        return True

    def finish(self) -> str:
        """Close the input, wait for the picker to exit and return its output."""
        if self._proc is None:
            raise PickerError("The menu command was never started")
        self.closed = True
        stdout, _ = self._proc.communicate()
        status = self._proc.returncode
        logger.debug("Menu command exited with status %s", status)
        if not stdout.strip() and status not in ABORT_STATUSES:
            raise PickerError(f"Menu command '{self.menu.command}' exited with status {status}",
                              exit_code=status if status > 0 else 1)
        return stdout

    def terminate(self) -> None:
        """Stop the picker if it is still running."""
        if self.running:
            logger.debug("Terminating menu command")
            self._proc.terminate()
            self._proc.wait()


def stream_candidates(candidates: Iterable[Candidate], sink) -> int:
    """Feed rendered candidates to ``sink`` until exhausted or the sink closes.

    Returns the number of lines written. The candidate generator is closed
    either way, which stops any discovery process still running.
    """
    written = 0
    try:
        for candidate in candidates:
            if not sink.write(candidate.rendered):
                break
            written += 1
    finally:
        close = getattr(candidates, "close", None)
        if close is not None:
            close()
    logger.debug("Streamed %d candidates", written)
    return written


def select_target(output: str) -> str:
    """The first whitespace-delimited token of the picker's output.

    Menus other than sk and fzf echo the line back with its colour codes.
    """
    words = click.unstyle(output).split(None, 1)
    return words[0] if words else ""
