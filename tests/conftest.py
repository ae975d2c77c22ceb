"""Shared fixtures: tmp vault, config, store and an in-memory git stand-in."""
import datetime

import pytest

from daylog.config import Config
from daylog.errors import MergeConflict
from daylog.manager import SyncCoordinator
from daylog.state_manager import StateManager
from daylog.store import DocumentStore
from daylog.utils import Logger

DAY = datetime.date(2024, 5, 1)


class FakeVcs:
    """Records every call; conflicts and failures are scripted by the test."""

    def __init__(self):
        self.calls = []
        self.conflicts = []
        self.conflicts_on_pull = []
        self.pull_error = None
        self.push_error = None
        self.on_pull = None
        self.remote = True
        self.versions = {}
        self.resolved = {}

    def names(self):
        return [call[0] for call in self.calls]

    def commit(self, paths, message):
        self.calls.append(('commit', tuple(paths), message))
        return True

    def pull(self):
        self.calls.append(('pull',))
        if self.on_pull:
            self.on_pull()
        if self.conflicts_on_pull:
            self.conflicts = list(self.conflicts_on_pull)
            self.conflicts_on_pull = []
            raise MergeConflict("CONFLICT (content): Merge conflict")
        if self.pull_error:
            raise self.pull_error

    def push(self):
        self.calls.append(('push',))
        if self.push_error:
            raise self.push_error

    def has_remote(self):
        return self.remote

    def list_conflict_files(self):
        return list(self.conflicts)

    def has_conflicts(self):
        return bool(self.conflicts)

    def read_conflict_versions(self, path):
        return self.versions.get(path, {
            'local': f"local {path}\n",
            'remote': f"remote {path}\n",
            'working': f"<<<<<<< HEAD\nlocal {path}\n=======\nremote {path}\n>>>>>>> origin\n",
        })

    def write_resolved_conflict(self, path, content):
        self.calls.append(('write_resolved', path))
        self.resolved[path] = content
        self.conflicts.remove(path)

    def complete_merge(self, message):
        self.calls.append(('complete_merge', message))


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def quiet_logger():
    Logger.reset_errors()
    Logger.debug_enabled = False
    yield
    Logger.reset_errors()


@pytest.fixture
def config(tmp_path):
    # no debounce timers: tests drive saves explicitly
    return Config(tmp_path / 'vault', DEBOUNCE_SECONDS=0, STARTUP_PULL_DELAY=0)


@pytest.fixture
def store(config):
    return DocumentStore(config.VAULT_ROOT, config.ATTACHMENT_DIR)


@pytest.fixture
def fake_vcs():
    return FakeVcs()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(config, store, fake_vcs, clock):
    sm = StateManager(config.STATE_FILE)
    return SyncCoordinator(config, store, fake_vcs, sm, clock=clock)
