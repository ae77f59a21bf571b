"""Configuration management for git smash.

Run parameters are resolved once at startup: explicit command line flags win
over ``smash.*`` git config keys, which win over the hard defaults below. The
resulting :class:`SmashConfig` is immutable for the rest of the run.
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import List, Optional, Tuple

import git

from .errors import ConfigError, command_stderr

logger = logging.getLogger(__name__)

SOURCE_PLACEHOLDER = "%(smash:source)"

DEFAULT_LIST_FORMAT = (
    "%C(yellow)%h%C(reset) [" + SOURCE_PLACEHOLDER + "] %s "
    "%C(cyan)<%an>%C(reset) %C(green)(%cr)%C(reset)%C(auto)%d%C(reset)"
)
DEFAULT_FORMAT_SOURCE_FILES = "%C(green)F%C(reset)"
DEFAULT_FORMAT_SOURCE_BLAME = "%C(red)B%C(reset)"
DEFAULT_FORMAT_SOURCE_RECENT = "%C(magenta)R%C(reset)"

# git >= 2.33 understands --fixup=amend:<rev> and --fixup=reword:<rev>
FIXUP_MODES_MIN_GIT = (2, 33)


class DisplayMode(Enum):
    """What happens with the candidate stream."""
    SMASH = "smash"     # pick a target, commit the fixup and optionally rebase
    LIST = "list"       # print every candidate to stdout
    SELECT = "select"   # pick a target and print it


class RangePolicy(Enum):
    """Which part of history is searched for targets."""
    ALL = "all"
    LOCAL = "local"
    EXPLICIT = "range"


class FixupMode(Enum):
    """Kind of fixup directive passed to git commit."""
    FIXUP = "fixup"
    AMEND = "amend"
    REWORD = "reword"

    def to_cli_option(self, target: str) -> str:
        if self is FixupMode.AMEND:
            return f"--fixup=amend:{target}"
        if self is FixupMode.REWORD:
            return f"--fixup=reword:{target}"
        return f"--fixup={target}"

    @property
    def edits_message(self) -> bool:
        """Whether git opens the editor for the commit message."""
        return self is not FixupMode.FIXUP


@dataclass(frozen=True)
class SmashOptions:
    """Explicit command line values; ``None`` means the flag was not given."""
    mode: Optional[DisplayMode] = None
    range_policy: Optional[RangePolicy] = None
    range_expression: Optional[str] = None
    format: Optional[str] = None
    max_count: Optional[int] = None
    auto_rebase: Optional[bool] = None
    interactive: Optional[bool] = None
    blame: Optional[bool] = None
    files: Optional[bool] = None
    recent: Optional[int] = None
    fixup_mode: Optional[FixupMode] = None
    gpg_sign: Optional[str] = None      # "" for the default key
    no_gpg_sign: bool = False
    verify: Optional[bool] = None
    ext_diff: Optional[bool] = None


class GitConfigReader:
    """Reads ``smash.*`` settings through ``git config``."""

    def __init__(self, repo: git.Repo):
        self.repo = repo

    def get(self, key: str, value_type: Optional[str] = None) -> Optional[str]:
        """Return the value of ``key`` or ``None`` when it is not set."""
        args = ["--get"]
        if value_type:
            args.append(f"--type={value_type}")
        args.append(key)
        try:
            value = self.repo.git.config(*args)
        except git.exc.GitCommandError as e:
            if e.status == 1:
                return None
            raise ConfigError(f"Failed to read git config key '{key}'", detail=command_stderr(e)) from e
        logger.debug("git config %s = %r", key, value)
        return value

    def get_bool(self, key: str) -> Optional[bool]:
        value = self.get(key, "bool")
        if value is None:
            return None
        return value.strip() == "true"

    def get_int(self, key: str) -> Optional[int]:
        value = self.get(key, "int")
        if value is None:
            return None
        try:
            number = int(value.strip())
        except ValueError as e:
            raise ConfigError(f"Failed to parse key '{key}' as integer: {value!r}") from e
        if number < 0:
            raise ConfigError(f"Key '{key}' must not be negative, got {number}")
        return number


@dataclass(frozen=True)
class SmashConfig:
    """Resolved run parameters."""

    mode: DisplayMode = DisplayMode.SMASH
    range_policy: RangePolicy = RangePolicy.ALL
    range_expression: Optional[str] = None
    format: str = DEFAULT_LIST_FORMAT
    max_count: int = 0
    auto_rebase: bool = True
    interactive: bool = False
    blame: bool = True
    files: bool = True
    recent: int = 0
    source_label_files: str = DEFAULT_FORMAT_SOURCE_FILES
    source_label_blame: str = DEFAULT_FORMAT_SOURCE_BLAME
    source_label_recent: str = DEFAULT_FORMAT_SOURCE_RECENT
    menu: Optional[str] = None
    fixup_mode: FixupMode = FixupMode.FIXUP
    gpg_sign_option: Optional[str] = None
    verify_option: Optional[str] = None
    ext_diff_option: Optional[str] = None

    def __post_init__(self):
        """Validate configuration parameters after initialization."""
        if self.max_count < 0:
            raise ConfigError(f"max_count must not be negative, got {self.max_count}")
        if self.recent < 0:
            raise ConfigError(f"recent must not be negative, got {self.recent}")
        if self.range_policy is RangePolicy.EXPLICIT and not self.range_expression:
            raise ConfigError("An explicit range policy needs a range expression")
        if not self.format:
            raise ConfigError("The candidate format must not be empty")

    @classmethod
    def load(cls, repo: git.Repo, options: Optional[SmashOptions] = None) -> "SmashConfig":
        """Merge explicit options over git config over defaults."""
        options = options or SmashOptions()
        reader = GitConfigReader(repo)

        mode = options.mode
        if mode is None:
            configured = reader.get("smash.mode")
            if configured is None:
                mode = DisplayMode.SMASH
            else:
                try:
                    mode = DisplayMode(configured.strip())
                except ValueError as e:
                    raise ConfigError(f"Failed to parse smash.mode '{configured}'",
                                      hint="Use one of: smash, list, select") from e

        range_policy, range_expression = options.range_policy, options.range_expression
        if range_policy is None:
            range_policy, range_expression = _parse_range_setting(reader.get("smash.range"))

        fixup_mode = options.fixup_mode or FixupMode.FIXUP
        if fixup_mode is not FixupMode.FIXUP:
            _check_git_version(repo, f"--{fixup_mode.value}")

        return cls(
            mode=mode,
            range_policy=range_policy,
            range_expression=range_expression,
            format=_first(options.format, reader.get("smash.format"), DEFAULT_LIST_FORMAT),
            max_count=_first(options.max_count, reader.get_int("smash.maxCommitCount"), 0),
            auto_rebase=_first(options.auto_rebase, reader.get_bool("smash.autorebase"), True),
            interactive=_first(options.interactive, reader.get_bool("smash.interactive"), False),
            blame=_first(options.blame, reader.get_bool("smash.blame"), True),
            files=_first(options.files, reader.get_bool("smash.files"), True),
            recent=_first(options.recent, reader.get_int("smash.recent"), 0),
            source_label_files=_first(reader.get("smash.filesSourceFormat"), DEFAULT_FORMAT_SOURCE_FILES),
            source_label_blame=_first(reader.get("smash.blameSourceFormat"), DEFAULT_FORMAT_SOURCE_BLAME),
            source_label_recent=_first(reader.get("smash.recentSourceFormat"), DEFAULT_FORMAT_SOURCE_RECENT),
            menu=reader.get("smash.menu"),
            fixup_mode=fixup_mode,
            gpg_sign_option=_gpg_sign_option(options),
            verify_option=_switch_option(options.verify, "--verify", "--no-verify"),
            ext_diff_option=_switch_option(options.ext_diff, "--ext-diff", "--no-ext-diff"),
        )

    def describe(self) -> List[Tuple[str, str, str]]:
        """Rows of (setting, git config key, value) for display."""
        keys = {
            "mode": "smash.mode",
            "range_policy": "smash.range",
            "range_expression": "smash.range",
            "format": "smash.format",
            "max_count": "smash.maxCommitCount",
            "auto_rebase": "smash.autorebase",
            "interactive": "smash.interactive",
            "blame": "smash.blame",
            "files": "smash.files",
            "recent": "smash.recent",
            "source_label_files": "smash.filesSourceFormat",
            "source_label_blame": "smash.blameSourceFormat",
            "source_label_recent": "smash.recentSourceFormat",
            "menu": "smash.menu",
        }
        rows = []
        for field in fields(self):
            value = getattr(self, field.name)
            if isinstance(value, Enum):
                value = value.value
            rows.append((field.name, keys.get(field.name, "-"), "-" if value is None else str(value)))
        return rows


def _first(*values):
    """Return the first value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


def _parse_range_setting(value: Optional[str]) -> Tuple[RangePolicy, Optional[str]]:
    if value is None or value.strip() == "all":
        return RangePolicy.ALL, None
    value = value.strip()
    if value == "local":
        return RangePolicy.LOCAL, None
    return RangePolicy.EXPLICIT, value


def _gpg_sign_option(options: SmashOptions) -> Optional[str]:
    if options.gpg_sign is not None:
        if options.gpg_sign == "":
            return "--gpg-sign"
        return f"--gpg-sign={options.gpg_sign}"
    if options.no_gpg_sign:
        return "--no-gpg-sign"
    return None


def _switch_option(value: Optional[bool], on: str, off: str) -> Optional[str]:
    if value is None:
        return None
    return on if value else off


def _check_git_version(repo: git.Repo, feature: str) -> None:
    version = repo.git.version_info
    if tuple(version[:2]) < FIXUP_MODES_MIN_GIT:
        required = ".".join(str(part) for part in FIXUP_MODES_MIN_GIT)
        found = ".".join(str(part) for part in version)
        raise ConfigError(f"git version {found} does not match >={required} required for {feature}")
