"""Command-line interface for git smash."""

import logging
import os
import re
import sys
from pathlib import Path
from typing import List, Optional

import click
from tabulate import tabulate

from .candidates import CandidateMerger
from .config import DisplayMode, FixupMode, RangePolicy, SmashConfig, SmashOptions
from .errors import NoLocalCommitsError, NoStagedChangesError, PickerError, SmashError
from .fixup_creator import Colors, FixupCreator
from .git_analyzer import GitAnalyzer, RevisionRange
from .picker import PickerProcess, StdoutSink, resolve_menu_command, select_target, stream_candidates

logger = logging.getLogger(__name__)


def get_version() -> str:
    """Get version from package metadata or pyproject.toml."""
    from importlib.metadata import PackageNotFoundError, version
    try:
        return version("gitsmash")
    except PackageNotFoundError:
        pass

    # Fallback to reading pyproject.toml for development installs
    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    try:
        content = pyproject_path.read_text()
    except OSError:
        return "unknown"
    match = re.search(r'version\s*=\s*"([^"]+)"', content)
    return match.group(1) if match else "unknown"


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    # Reduce noise from GitPython's command tracing
    logging.getLogger('git').setLevel(logging.WARNING)


def report_error(error: SmashError) -> None:
    click.echo(Colors.colorize(f"❌ Error: {error.message}", Colors.BRIGHT_RED), err=True)
    if error.detail:
        click.echo(error.detail, err=True)
    if error.hint:
        click.echo(Colors.colorize(f"   {error.hint}", Colors.DIM), err=True)


def show_config_table(config: SmashConfig) -> None:
    headers = [
        Colors.colorize("Setting", Colors.BRIGHT_CYAN, bold=True),
        Colors.colorize("Git config key", Colors.WHITE, bold=True),
        Colors.colorize("Value", Colors.YELLOW, bold=True),
    ]
    click.echo(tabulate(config.describe(), headers=headers, tablefmt="simple", stralign="left"))


def candidate_color(config: SmashConfig, sink: Optional[StdoutSink] = None) -> str:
    """Colour mode for rendering: always for the picker, stdout only on a terminal."""
    if config.mode is DisplayMode.LIST:
        return "always" if sink is not None and sink.is_terminal else "never"
    return "always"


def discover_target(analyzer: GitAnalyzer, config: SmashConfig,
                    revision_range: RevisionRange, staged_files: List[str]) -> Optional[str]:
    """Stream candidates to the configured sink; return the picked commit, if any."""
    if config.mode is DisplayMode.LIST:
        sink = StdoutSink()
        merger = CandidateMerger(analyzer, config, revision_range, staged_files,
                                 color=candidate_color(config, sink))
        stream_candidates(merger.candidates(), sink)
        return None
    elif config.mode in (DisplayMode.SELECT, DisplayMode.SMASH):
        menu = resolve_menu_command(config.menu, config.ext_diff_option)
        merger = CandidateMerger(analyzer, config, revision_range, staged_files,
                                 color=candidate_color(config))
        with PickerProcess(menu, cwd=analyzer.toplevel) as picker:
            try:
                stream_candidates(merger.candidates(), picker)
            except SmashError:
                # keep what was already listed visible until the user leaves the picker
                try:
                    picker.finish()
                except PickerError:
                    logger.debug("Menu command failed after a discovery error", exc_info=True)
                raise
            output = picker.finish()
        return select_target(output)
    else:
        raise ValueError(f"Unknown display mode: {config.mode}")


def run(repo_path: str, options: SmashOptions, commit: Optional[str] = None,
        show_config: bool = False) -> None:
    """Smash the staged changes into a picked (or given) commit."""
    analyzer = GitAnalyzer(repo_path)
    config = SmashConfig.load(analyzer.repo, options)
    logger.debug("Configuration: %s", config)

    if show_config:
        show_config_table(config)
        return

    staged_files = analyzer.get_staged_files()
    if not staged_files:
        raise NoStagedChangesError()
    logger.debug("Staged files: %s", staged_files)

    if commit:
        target = commit
    else:
        revision_range = analyzer.resolve_range(config)
        if revision_range is None:
            raise NoLocalCommitsError()
        target = discover_target(analyzer, config, revision_range, staged_files)
        if not target:
            logger.debug("Nothing selected")
            return

    FixupCreator(analyzer, config).apply(target)


def _exclusive(**flags) -> None:
    given = [name for name, value in flags.items() if value]
    if len(given) > 1:
        names = ", ".join("--" + name.replace("_", "-") for name in given)
        raise click.UsageError(f"Options {names} cannot be used together")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=get_version())
@click.argument('commit', required=False)
@click.option('--repo', type=click.Path(exists=True, file_okay=False, dir_okay=True), default='.', help='Path to git repository (default: current directory)')
@click.option('--list', 'list_mode', is_flag=True, help='List mode to print all potential targets to stdout')
@click.option('--select', 'select_mode', is_flag=True, help='Select mode to print final target to stdout')
@click.option('--format', 'log_format', type=str, help='Git log format to pretty print the targets')
@click.option('-n', '--max-count', type=click.IntRange(min=0), help='Limit number of listed commits (0 for unlimited stream)')
@click.option('-a', '--all', 'all_revs', is_flag=True, help='List all revs including already published commits')
@click.option('-l', '--local', is_flag=True, help='Limit the listed revs to local commits')
@click.option('--range', 'revision_range', type=str, help='Limit the listed commits to the given range')
@click.option('--rebase/--no-rebase', default=None, help='Rebase the fixup commit into the target')
@click.option('--interactive', is_flag=True, help='Let the user edit the list of commits before rebasing')
@click.option('--blame/--no-blame', default=None, help='List commits acquired from blame chunks')
@click.option('--files/--no-files', default=None, help='List commits acquired from history of changed files')
@click.option('--recent', type=click.IntRange(min=0), help='List the given number of most recent commits')
@click.option('--amend', is_flag=True, help='Amend the target with the staged changes and a new message')
@click.option('--reword', is_flag=True, help='Reword the target message without changing its content')
@click.option('-S', '--gpg-sign', 'gpg_sign', is_flag=False, flag_value='', default=None, metavar='[KEYID]', help='GPG-sign the fixup commit')
@click.option('--no-gpg-sign', is_flag=True, help='Do not GPG-sign the fixup commit')
@click.option('--verify/--no-verify', default=None, help='Run or bypass the pre-commit and commit-msg hooks')
@click.option('--ext-diff/--no-ext-diff', default=None, help='Allow an external diff helper in the commit preview')
@click.option('--show-config', is_flag=True, help='Show the resolved settings and exit')
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
def main(commit, repo, list_mode, select_mode, log_format, max_count, all_revs, local,
         revision_range, rebase, interactive, blame, files, recent, amend, reword,
         gpg_sign, no_gpg_sign, verify, ext_diff, show_config, verbose):
    """Smash staged changes into previous commits.

    Candidate targets are gathered from recent history, from blame of the
    staged hunks and from the history of the staged files, then handed to a
    fuzzy finder. The picked commit receives a fixup commit which is
    autosquashed right away unless rebasing is disabled.

    \b
    Examples:
      git smash                      pick a target and smash into it
      git smash --list -n 10         print the first ten candidates
      git smash --select --local     print the picked local commit
      git smash --no-rebase HEAD~2   create the fixup commit only
      git smash --amend              amend! a target, editing its message

    \b
    Git config keys (overridden by the flags above):
      smash.mode, smash.range, smash.format, smash.maxCommitCount,
      smash.autorebase, smash.interactive, smash.blame, smash.files,
      smash.recent, smash.menu, smash.filesSourceFormat,
      smash.blameSourceFormat, smash.recentSourceFormat
    """
    env_verbose = bool(os.environ.get('GIT_SMASH_VERBOSE', ""))
    setup_logging(verbose or env_verbose)

    _exclusive(list=list_mode, select=select_mode)
    _exclusive(all=all_revs, local=local, range=revision_range)
    _exclusive(amend=amend, reword=reword)
    _exclusive(gpg_sign=gpg_sign is not None, no_gpg_sign=no_gpg_sign)
    if commit and list_mode:
        raise click.UsageError("A target commit cannot be combined with --list")

    mode = None
    if list_mode:
        mode = DisplayMode.LIST
    elif select_mode:
        mode = DisplayMode.SELECT

    range_policy = None
    if all_revs:
        range_policy = RangePolicy.ALL
    elif local:
        range_policy = RangePolicy.LOCAL
    elif revision_range:
        range_policy = RangePolicy.EXPLICIT

    fixup_mode = None
    if amend:
        fixup_mode = FixupMode.AMEND
    elif reword:
        fixup_mode = FixupMode.REWORD

    options = SmashOptions(
        mode=mode,
        range_policy=range_policy,
        range_expression=revision_range,
        format=log_format,
        max_count=max_count,
        auto_rebase=rebase,
        interactive=interactive or None,
        blame=blame,
        files=files,
        recent=recent,
        fixup_mode=fixup_mode,
        gpg_sign=gpg_sign,
        no_gpg_sign=no_gpg_sign,
        verify=verify,
        ext_diff=ext_diff,
    )

    try:
        run(repo, options, commit=commit, show_config=show_config)
    except SmashError as e:
        logger.debug("Run failed", exc_info=True)
        report_error(e)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user.", err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
