"""Shared fixtures: throwaway git repositories driven through the git binary."""

import os
import subprocess
from pathlib import Path
from typing import List

import pytest


class GitTestRepository:
    """Helper for managing test git repositories."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path
        self.repo_path.mkdir(exist_ok=True)

    def run_git(self, *args, env=None, check=True):
        """Execute a git command."""
        cmd = ["git"] + list(args)
        result = subprocess.run(
            cmd,
            cwd=self.repo_path,
            capture_output=True,
            text=True,
            check=check,
            env=env or os.environ
        )
        return result

    def init_repo(self, initial_branch="main"):
        """Initialize repository."""
        self.run_git("init")
        self.run_git("config", "user.name", "Test User")
        self.run_git("config", "user.email", "test@example.com")
        self.run_git("config", "commit.gpgsign", "false")
        self.run_git("config", "core.hooksPath", os.devnull)
        self.run_git("checkout", "-q", "-b", initial_branch)

    def write(self, path: str, content: str) -> None:
        file_path = self.repo_path / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)

    def commit_file(self, path: str, content: str, message: str) -> str:
        """Write, stage and commit a file; return the new commit hash."""
        self.write(path, content)
        self.run_git("add", path)
        self.run_git("commit", "-q", "-m", message)
        return self.rev_parse("HEAD")

    def stage(self, path: str, content: str) -> None:
        self.write(path, content)
        self.run_git("add", path)

    def rev_parse(self, rev: str) -> str:
        return self.run_git("rev-parse", rev).stdout.strip()

    def subjects(self) -> List[str]:
        """Commit subjects, newest first."""
        output = self.run_git("log", "--format=%s").stdout
        return [line for line in output.splitlines() if line]

    def set_config(self, key: str, value: str) -> None:
        self.run_git("config", key, value)


def numbered_lines(count: int, prefix: str = "line") -> str:
    return "".join(f"{prefix} {i}\n" for i in range(1, count + 1))


@pytest.fixture
def git_repo(tmp_path) -> GitTestRepository:
    """An initialised repository with no commits."""
    repo = GitTestRepository(tmp_path / "repo")
    repo.init_repo()
    return repo
