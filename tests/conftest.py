"""
Shared fixtures for depgrok tests: small repository trees on disk and an
isolated configuration environment.
"""

import os

import pytest

from depgrok.cli_config import reset_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user config files and DEPGROK_* variables out of every test."""
    for key in list(os.environ):
        if key.startswith("DEPGROK_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def repos_dir(tmp_path):
    """
    A directory of repositories referencing ``dependency1``:

    repo1/fileA.txt   references dependency1
    repo1/readme.md   references dependency1 (docs, usually excluded)
    repo2/consumer.py references fileA
    repo3/other.txt   references nothing
    """
    root = tmp_path / "repos"
    (root / "repo1").mkdir(parents=True)
    (root / "repo2" / "src").mkdir(parents=True)
    (root / "repo3").mkdir(parents=True)

    (root / "repo1" / "fileA.txt").write_text("This file uses dependency1 heavily.\n")
    (root / "repo1" / "readme.md").write_text("See dependency1 for details.\n")
    (root / "repo2" / "src" / "consumer.py").write_text("import fileA\n\nfileA.run()\n")
    (root / "repo3" / "other.txt").write_text("nothing to see here\n")
    return root


@pytest.fixture
def wide_repos_dir(tmp_path):
    """Many repos with two-hop chains, for comparing parallel and serial walks."""
    root = tmp_path / "wide"
    for i in range(12):
        repo = root / f"repo{i:02d}"
        (repo / "lib").mkdir(parents=True)
        (repo / "lib" / f"Service{i:02d}.cs").write_text(
            f"public class Service{i:02d} {{ UserStore store; }}\n"
        )
        (repo / f"app{i:02d}.cfg").write_text(f"service = Service{(i + 1) % 12:02d}\n")
        (repo / "notes.txt").write_text("unrelated\n")
    return root
