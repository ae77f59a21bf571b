"""Git queries used to discover fixup targets for staged changes."""

import codecs
import itertools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

import git

from .config import RangePolicy, SmashConfig
from .errors import DiscoveryError, SmashError, UnknownRevisionError, command_stderr

logger = logging.getLogger(__name__)

HEAD = "HEAD"
UPSTREAM = "@{upstream}"
NULL_DEVICE = "/dev/null"
BOUNDARY_MARKER = "^"
FIXUP_SUBJECT_PATTERN = "^(fixup|squash)! .*$"

_HUNK_HEADER = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+\d+(?:,\d+)? @@')


@dataclass(frozen=True)
class Hunk:
    """One contiguous changed region of the staged diff's pre-image."""
    file_path: str
    start_line: int
    length: int


@dataclass(frozen=True)
class RevisionRange:
    """A revision expression plus the bounds blame needs.

    ``expression`` is what rev-list and log receive. Blame runs as of ``upper``
    and excludes history reachable from ``lower`` when one is set.
    """
    expression: str
    upper: str = HEAD
    lower: Optional[str] = None

    @classmethod
    def parse(cls, expression: str) -> "RevisionRange":
        """Split a user supplied range into its bounds."""
        if "..." in expression:
            # symmetric difference: blame can only follow one side
            _, right = expression.split("...", 1)
            return cls(expression, upper=right or HEAD)
        if ".." in expression:
            left, right = expression.split("..", 1)
            return cls(expression, upper=right or HEAD, lower=left or HEAD)
        return cls(expression, upper=expression)

    def blame_revisions(self) -> List[str]:
        revisions = [self.upper]
        if self.lower:
            revisions.append(f"^{self.lower}")
        return revisions


def parse_staged_diff(diff_output: str) -> List[Hunk]:
    """Extract the pre-image hunks of a ``--no-prefix`` unified diff.

    Sections whose pre-image is the null device (added files) are skipped,
    as are sections without a ``---`` header (binary or mode-only changes)
    and hunks of a file that was empty before (``@@ -0,0``).
    A hunk header without a length means a length of 1; a literal 0 is kept.
    """
    hunks = []
    current_file = None
    in_header = False

    for line in diff_output.split('\n'):
        if line.startswith('diff --git '):
            current_file = None
            in_header = True
        elif in_header and line.startswith('--- '):
            path = _unquote_path(line[4:])
            current_file = None if path == NULL_DEVICE else path
        elif line.startswith('@@'):
            in_header = False
            match = _HUNK_HEADER.match(line)
            if match and current_file:
                start = int(match.group(1))
                length = int(match.group(2)) if match.group(2) is not None else 1
                if start == 0 and length == 0:
                    # empty pre-image, nothing to blame
                    continue
                hunks.append(Hunk(current_file, start, length))

    return hunks


def _unquote_path(raw: str) -> str:
    """Undo git's C-style quoting of diff header paths."""
    path = raw.rstrip('\t')
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        unescaped = codecs.escape_decode(path[1:-1].encode('utf-8'))[0]
        return unescaped.decode('utf-8', errors='surrogateescape')
    return path


def blame_selectors(hunks: Iterable[Hunk]) -> List[str]:
    """Build ``-L start,+width`` arguments for a file's hunks.

    Zero-length hunks (pure insertions) are widened to one line and a start of
    0 becomes line 1, since blame cannot attribute an empty selection.
    """
    selectors = []
    for hunk in hunks:
        start = max(1, hunk.start_line)
        width = max(1, hunk.length)
        selectors.extend(['-L', f'{start},+{width}'])
    return selectors


def parse_blame_output(blame_output: str) -> List[str]:
    """Return the owning commit of each blamed line, minus boundary commits."""
    commits = []
    for line in blame_output.split('\n'):
        token = line.split(' ', 1)[0]
        if not token or token.startswith(BOUNDARY_MARKER):
            continue
        commits.append(token)
    return commits


class GitAnalyzer:
    """Runs the git queries behind target discovery."""

    def __init__(self, repo_path: str = "."):
        """Initialize with repository path."""
        try:
            self.repo = git.Repo(repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise SmashError(f"Not a git repository: {repo_path}",
                             hint="Run git smash from within a git work tree") from e
        if self.repo.bare:
            raise SmashError("git smash needs a work tree, the repository is bare")
        self.repo_path = Path(self.repo.working_tree_dir)

    @property
    def toplevel(self) -> Path:
        return self.repo_path

    def _run(self, command: str, *args, error: type = DiscoveryError) -> str:
        """Run ``git <command>`` and translate failures into ``error``."""
        logger.debug("Running git %s %s", command, " ".join(args))
        try:
            return getattr(self.repo.git, command.replace('-', '_'))(*args)
        except git.exc.GitCommandError as e:
            raise error(f"git {command} failed", detail=command_stderr(e)) from e

    def rev_parse(self, rev: str) -> str:
        """Resolve a revision to its full commit hash."""
        return self._run('rev-parse', '--verify', '--quiet', f'{rev}^{{commit}}',
                         error=UnknownRevisionError).strip()

    def is_valid_rev(self, rev: str) -> bool:
        """Check whether ``rev`` names an existing commit."""
        try:
            self.rev_parse(rev)
        except UnknownRevisionError:
            return False
        return True

    def path_exists(self, rev: str, path: str) -> bool:
        """Check whether ``path`` is part of the tree of ``rev``."""
        try:
            self.repo.git.cat_file('-e', f'{rev}:{path}')
        except git.exc.GitCommandError:
            return False
        return True

    def upstream(self) -> Optional[str]:
        """Return the upstream tracking commit, or None without an upstream."""
        try:
            return self.rev_parse(UPSTREAM)
        except UnknownRevisionError:
            logger.debug("No upstream configured for the current branch")
            return None

    def resolve_range(self, config: SmashConfig) -> Optional[RevisionRange]:
        """Turn the configured range policy into a validated revision range.

        Returns None when the upstream equals HEAD, i.e. there are no local
        commits to search. Without an upstream every commit counts as local.
        """
        if config.range_policy is RangePolicy.ALL:
            revision_range = RevisionRange(HEAD)
        elif config.range_policy is RangePolicy.LOCAL:
            upstream = self.upstream()
            if upstream is None:
                revision_range = RevisionRange(HEAD)
            elif upstream == self.rev_parse(HEAD):
                return None
            else:
                revision_range = RevisionRange(f"{UPSTREAM}..{HEAD}", upper=HEAD, lower=UPSTREAM)
        elif config.range_policy is RangePolicy.EXPLICIT:
            revision_range = RevisionRange.parse(config.range_expression)
        else:
            raise ValueError(f"Unknown range policy: {config.range_policy}")

        self.validate_range(revision_range)
        logger.debug("Searching revision range %s", revision_range.expression)
        return revision_range

    def validate_range(self, revision_range: RevisionRange) -> None:
        """Fail early when the range expression does not resolve."""
        try:
            self.repo.git.rev_parse(revision_range.expression, '--')
        except git.exc.GitCommandError as e:
            raise UnknownRevisionError(
                f"Unknown revision '{revision_range.expression}'",
                detail=command_stderr(e),
            ) from e

    def root_commits(self) -> List[str]:
        """Full hashes of the commits without parents reachable from HEAD."""
        output = self._run('rev-list', '--max-parents=0', '--no-abbrev-commit', HEAD)
        return [line for line in output.splitlines() if line]

    def get_staged_files(self) -> List[str]:
        """Paths with staged changes, relative to the top level."""
        output = self._run('diff', '--cached', '--name-only', '-z', '--no-color', '--no-ext-diff')
        return [path for path in output.split('\0') if path]

    def get_staged_diff(self) -> str:
        """Unified diff of the index against HEAD with one line of context."""
        return self._run('diff', '--cached', '--no-color', '--no-ext-diff', '--no-prefix', '--unified=1')

    def get_staged_hunks(self) -> List[Hunk]:
        return parse_staged_diff(self.get_staged_diff())

    def recent_commits(self, revision_range: RevisionRange, count: int) -> List[str]:
        """The ``count`` most recent commits of the range, newest first."""
        output = self._run('rev-list', '-n', str(count), '--no-abbrev-commit', revision_range.expression)
        return [line for line in output.splitlines() if line]

    def blame_commits(self, hunks: Sequence[Hunk], revision_range: RevisionRange) -> Iterator[str]:
        """Yield the commit owning each line of each hunk.

        One blame query runs per file covering all of its hunks. Results are
        yielded lazily, file by file, in diff order. Files that do not exist
        at the range's upper bound have no history there and are skipped.
        """
        for file_path, file_hunks in itertools.groupby(hunks, key=lambda hunk: hunk.file_path):
            if not self.path_exists(revision_range.upper, file_path):
                logger.debug("Skipping blame of %s, not present at %s", file_path, revision_range.upper)
                continue
            args = ['-l', '-s', '--root', *blame_selectors(file_hunks),
                    *revision_range.blame_revisions(), '--', file_path]
            output = self._run('blame', *args)
            commits = parse_blame_output(output)
            logger.debug("Blame attributed %d lines of %s", len(commits), file_path)
            yield from commits

    def file_history(self, revision_range: RevisionRange, paths: Sequence[str],
                     max_count: int = 0) -> Iterator[str]:
        """Stream commits of the range touching ``paths``, newest first.

        Commits whose message has a ``fixup!``/``squash!`` line are left out.
        The log process is killed if the consumer stops early.
        """
        args = ['--invert-grep', '--extended-regexp', '--grep', FIXUP_SUBJECT_PATTERN, '--format=%H']
        if max_count > 0:
            args.append(f'--max-count={max_count}')
        args.extend([revision_range.expression, '--', *paths])

        logger.debug("Streaming git log %s", " ".join(args))
        process = self.repo.git.log(*args, as_process=True)
        finished = False
        try:
            for raw_line in process.stdout:
                commit = raw_line.decode('utf-8', errors='replace').strip()
                if commit:
                    yield commit
            process.wait()
            finished = True
        except git.exc.GitCommandError as e:
            finished = True
            raise DiscoveryError("git log failed", detail=command_stderr(e)) from e
        finally:
            if not finished:
                logger.debug("Terminating file history query")
                process.proc.kill()
                process.proc.wait()

    def describe_commits(self, commits: Sequence[str], log_format: str, color: str = "never") -> List[str]:
        """Render each commit with ``log_format``, preserving input order."""
        if not commits:
            return []
        output = self._run('log', '--no-walk=unsorted', '-z', f'--color={color}',
                           f'--format={log_format}', *commits)
        rendered = output.split('\0')
        if rendered and rendered[-1] == '':
            rendered.pop()
        if len(rendered) != len(commits):
            raise DiscoveryError(
                f"Expected {len(commits)} rendered commits, git log returned {len(rendered)}",
                hint="Check that --format or smash.format renders each commit on its own",
            )
        return [line.strip('\n') for line in rendered]
