"""Shared fixtures: real git repositories built with GitPython."""

import tempfile
from pathlib import Path

import pytest
from git import Repo


def make_repo(path: Path) -> Repo:
    repo = Repo.init(path)
    with repo.config_writer() as config:
        config.set_value("user", "name", "Test User")
        config.set_value("user", "email", "test@example.com")
    return repo


@pytest.fixture
def temp_git_repo():
    """Create a repository with one commit and a couple of tracked files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        repo_path = Path(temp_dir).resolve()
        repo = make_repo(repo_path)

        (repo_path / "a.txt").write_text("alpha\n")
        (repo_path / "b.txt").write_text("beta\n")
        (repo_path / "src").mkdir()
        (repo_path / "src" / "core.py").write_text("class Core:\n    pass\n")
        repo.index.add(["a.txt", "b.txt", "src/core.py"])
        repo.index.commit("Initial commit")

        yield repo_path
