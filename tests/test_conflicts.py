"""Tests for the step-by-step merge conflict session."""
import pytest

from daylog.conflicts import ConflictSession

FILES = ["2024/05/01.md", "2024/05/02.md"]


@pytest.fixture
def conflicted(fake_vcs):
    fake_vcs.conflicts = list(FILES)
    return fake_vcs


class TestConflictSession:
    def test_requires_files(self, fake_vcs):
        with pytest.raises(ValueError):
            ConflictSession(fake_vcs, [])

    def test_buffer_starts_as_local(self, conflicted):
        session = ConflictSession(conflicted, FILES)
        assert session.current_file == FILES[0]
        assert session.merged_content == "local 2024/05/01.md\n"
        assert session.versions['remote'] == "remote 2024/05/01.md\n"

    def test_select_and_edit(self, conflicted):
        session = ConflictSession(conflicted, FILES)
        session.select_remote_version()
        assert session.merged_content == "remote 2024/05/01.md\n"
        session.edit_buffer("hand merged\n")
        assert session.merged_content == "hand merged\n"
        session.select_local_version()
        assert session.merged_content == "local 2024/05/01.md\n"

    def test_walks_files_then_completes_merge(self, conflicted):
        resolved = []
        session = ConflictSession(conflicted, FILES, on_resolved=lambda: resolved.append(True))

        assert session.resolve_current() is False
        assert session.current_file == FILES[1]
        assert session.remaining == [FILES[1]]
        assert 'complete_merge' not in conflicted.names()

        session.select_remote_version()
        assert session.resolve_current() is True
        assert conflicted.resolved == {
            FILES[0]: "local 2024/05/01.md\n",
            FILES[1]: "remote 2024/05/02.md\n",
        }
        assert conflicted.names() == ['write_resolved', 'write_resolved', 'complete_merge']
        assert resolved == [True]
        assert session.state == ConflictSession.RESOLVED
        assert session.current_file is None

    def test_empty_buffer_refused(self, conflicted):
        session = ConflictSession(conflicted, FILES)
        session.edit_buffer("")
        assert session.resolve_current() is False
        assert session.current_file == FILES[0]
        assert conflicted.resolved == {}

    def test_cancel_reports_unresolved(self, conflicted):
        cancelled = []
        session = ConflictSession(conflicted, FILES, on_cancelled=cancelled.append)
        session.resolve_current()
        session.cancel()
        assert cancelled == [[FILES[1]]]
        assert session.state == ConflictSession.CANCELLED
        assert not session.is_open
        # nothing left to do after cancel
        session.select_remote_version()
        assert session.resolve_current() is False
        assert 'complete_merge' not in conflicted.names()
