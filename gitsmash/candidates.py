"""Merging of the discovery sources into one deduplicated candidate stream."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from .config import SOURCE_PLACEHOLDER, SmashConfig
from .git_analyzer import GitAnalyzer, RevisionRange

logger = logging.getLogger(__name__)

# Commits rendered per git log invocation while streaming a source
RENDER_BATCH_SIZE = 32


class CandidateSource(Enum):
    """Discovery strategy that produced a candidate, in priority order."""
    RECENT = "recent"
    BLAME = "blame"
    FILE = "file"


@dataclass(frozen=True)
class Candidate:
    """A target commit with the source that found it and its display line."""
    commit: str
    source: CandidateSource
    rendered: str


class CandidateMerger:
    """Runs the enabled sources in priority order and deduplicates commits.

    The first source to produce a commit owns it; later occurrences are
    dropped. Sources run lazily, so a consumer sees early candidates while
    later sources are still being queried.
    """

    def __init__(
        self,
        analyzer: GitAnalyzer,
        config: SmashConfig,
        revision_range: RevisionRange,
        staged_files: Sequence[str],
        color: str = "never",
        batch_size: int = RENDER_BATCH_SIZE,
    ):
        self.analyzer = analyzer
        self.config = config
        self.revision_range = revision_range
        self.staged_files = tuple(staged_files)
        self.color = color
        self.batch_size = batch_size
        self._seen: Dict[str, CandidateSource] = {}

    @property
    def seen(self) -> List[str]:
        """Commits emitted so far, in emission order."""
        return list(self._seen)

    def candidates(self) -> Iterator[Candidate]:
        for source, commits in self._sources():
            logger.debug("Collecting candidates from %s source", source.value)
            yield from self._emit(source, commits)

    def _sources(self) -> Iterator[Tuple[CandidateSource, Iterable[str]]]:
        if self.config.recent > 0:
            yield CandidateSource.RECENT, self.analyzer.recent_commits(self.revision_range, self.config.recent)
        if self.config.blame:
            hunks = self.analyzer.get_staged_hunks()
            yield CandidateSource.BLAME, self.analyzer.blame_commits(hunks, self.revision_range)
        if self.config.files:
            yield CandidateSource.FILE, self.analyzer.file_history(
                self.revision_range, self.staged_files, self.config.max_count)

    def _emit(self, source: CandidateSource, commits: Iterable[str]) -> Iterator[Candidate]:
        log_format = self.render_format(source)
        batch: List[str] = []
        try:
            for commit in commits:
                if not self._claim(commit, source):
                    continue
                batch.append(commit)
                if len(batch) >= self.batch_size:
                    yield from self._render(source, log_format, batch)
                    batch = []
            if batch:
                yield from self._render(source, log_format, batch)
        finally:
            close = getattr(commits, "close", None)
            if close is not None:
                close()

    def _claim(self, commit: str, source: CandidateSource) -> bool:
        owner = self._seen.get(commit)
        if owner is not None:
            logger.debug("Dropping %s from %s source, already listed by %s",
                         commit[:8], source.value, owner.value)
            return False
        self._seen[commit] = source
        return True

    def _render(self, source: CandidateSource, log_format: str, commits: List[str]) -> Iterator[Candidate]:
        rendered = self.analyzer.describe_commits(commits, log_format, self.color)
        for commit, line in zip(commits, rendered):
            yield Candidate(commit, source, line)

    def render_format(self, source: CandidateSource) -> str:
        """The configured format with the source placeholder filled in."""
        labels = {
            CandidateSource.RECENT: self.config.source_label_recent,
            CandidateSource.BLAME: self.config.source_label_blame,
            CandidateSource.FILE: self.config.source_label_files,
        }
        return self.config.format.replace(SOURCE_PLACEHOLDER, labels[source])
