"""Tests for the git adapter: error mapping plus a real two-clone round trip."""
import os
import shutil
import subprocess

import pytest

from daylog.errors import MergeConflict, NetworkError, RejectedNonFastForward, VcsError
from daylog.utils import FileUtils
from daylog.vcs import GitRepo, classify_git_error

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

REL = "2024/05/01.md"


class TestErrorMapping:
    @pytest.mark.parametrize("output, expected", [
        ("CONFLICT (content): Merge conflict in 2024/05/01.md", MergeConflict),
        ("Automatic merge failed; fix conflicts and then commit the result.", MergeConflict),
        ("fatal: not possible to fast-forward, aborting.", MergeConflict),
        (" ! [rejected]        main -> main (fetch first)", RejectedNonFastForward),
        ("error: failed to push some refs (non-fast-forward)", RejectedNonFastForward),
        ("fatal: unable to access 'https://example.com/x.git/': Could not resolve host", NetworkError),
        ("ssh: connect to host example.com port 22: Connection refused", NetworkError),
        ("fatal: not a git repository", VcsError),
    ])
    def test_classify(self, output, expected):
        assert classify_git_error(output) is expected

    def test_missing_git_binary(self, tmp_path, monkeypatch):
        def no_git(*args, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr(subprocess, "run", no_git)
        with pytest.raises(VcsError, match="not found"):
            GitRepo(tmp_path).has_remote()

    def test_timeout_is_network_error(self, tmp_path, monkeypatch):
        def slow(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd="git pull", timeout=1)

        monkeypatch.setattr(subprocess, "run", slow)
        with pytest.raises(NetworkError):
            GitRepo(tmp_path, timeout=1).pull()


def git(*args, cwd=None):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def remote(tmp_path):
    path = tmp_path / "remote.git"
    git("init", "--bare", str(path))
    return str(path)


def make_clone(tmp_path, remote, name):
    path = tmp_path / name
    repo = GitRepo(path)
    repo.init(name, f"{name}@example.com", remote)
    return repo


def write(repo, rel, content):
    assert FileUtils.write_file(os.path.join(repo.root, rel), content)


@needs_git
class TestGitRepo:
    def test_init_creates_readme_and_remote(self, tmp_path, remote):
        repo = make_clone(tmp_path, remote, "a")
        assert os.path.exists(os.path.join(repo.root, "README.md"))
        assert repo.has_remote()
        # idempotent
        repo.init("a", "a@example.com", remote)

    def test_commit_reports_empty(self, tmp_path, remote):
        repo = make_clone(tmp_path, remote, "a")
        write(repo, REL, "one\n")
        assert repo.commit([REL], f"Update {REL}") is True
        assert repo.commit([REL], f"Update {REL}") is False

    def test_pull_from_empty_remote_is_fine(self, tmp_path, remote):
        make_clone(tmp_path, remote, "a").pull()

    def test_conflict_round_trip(self, tmp_path, remote):
        a = make_clone(tmp_path, remote, "a")
        a.push()

        b_path = tmp_path / "b"
        git("clone", "-b", "main", remote, str(b_path))
        b = GitRepo(b_path)
        b.init("b", "b@example.com", remote)

        write(a, REL, "- [ ] from a\n")
        a.commit([REL], "a")
        a.push()

        write(b, REL, "- [ ] from b\n")
        b.commit([REL], "b")
        with pytest.raises(RejectedNonFastForward):
            b.push()
        with pytest.raises(MergeConflict):
            b.pull()

        assert b.has_conflicts()
        assert b.list_conflict_files() == [REL]
        versions = b.read_conflict_versions(REL)
        assert versions['local'] == "- [ ] from b\n"
        assert versions['remote'] == "- [ ] from a\n"
        assert "<<<<<<<" in versions['working']

        b.write_resolved_conflict(REL, "- [ ] from a\n- [ ] from b\n")
        assert not b.has_conflicts()
        b.complete_merge("Resolve merge conflicts")
        b.push()

        a.pull()
        assert FileUtils.read_content(os.path.join(a.root, REL)) == "- [ ] from a\n- [ ] from b\n"
