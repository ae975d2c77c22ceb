from typing import Callable, List, Optional

from .utils import Logger

DEFAULT_MERGE_MESSAGE = "Resolve merge conflicts"


class ConflictSession:
    """
    Walks the conflicting files one at a time.

    For each file the local, remote and working versions are loaded and the
    merge buffer starts as the local version. ``resolve_current`` stores the
    buffer for the file and moves on; after the last file the merge is
    completed and ``on_resolved`` lets the coordinator push. ``cancel`` leaves
    the repository conflicted, already resolved files stay resolved.
    """

    OPEN = 'open'
    RESOLVED = 'resolved'
    CANCELLED = 'cancelled'

    def __init__(self, vcs, files: List[str],
                 on_resolved: Optional[Callable[[], None]] = None,
                 on_cancelled: Optional[Callable[[List[str]], None]] = None,
                 merge_message=DEFAULT_MERGE_MESSAGE):
        if not files:
            raise ValueError("ConflictSession needs at least one file")
        self.vcs = vcs
        self.files = list(files)
        self.on_resolved = on_resolved
        self.on_cancelled = on_cancelled
        self.merge_message = merge_message
        self.current_index = 0
        self.versions = None
        self.merged_content = ""
        self.state = self.OPEN
        self._load_current()

    @property
    def current_file(self):
        if self.state != self.OPEN or self.current_index >= len(self.files):
            return None
        return self.files[self.current_index]

    @property
    def remaining(self):
        return self.files[self.current_index:] if self.state == self.OPEN else []

    @property
    def is_open(self):
        return self.state == self.OPEN

    def _load_current(self):
        self.versions = self.vcs.read_conflict_versions(self.current_file)
        self.merged_content = self.versions.get('local', "")

    def select_local_version(self):
        if self.is_open:
            self.merged_content = self.versions.get('local', "")

    def select_remote_version(self):
        if self.is_open:
            self.merged_content = self.versions.get('remote', "")

    def edit_buffer(self, text):
        if self.is_open:
            self.merged_content = text or ""

    def resolve_current(self):
        """Resolve the current file; returns True once the whole merge is complete."""
        if not self.is_open:
            Logger.warning(f"Conflict session is {self.state}, nothing to resolve")
            return self.state == self.RESOLVED
        if not self.merged_content:
            Logger.warning(f"Merged content for {self.current_file} is empty, not resolving")
            return False

        path = self.current_file
        self.vcs.write_resolved_conflict(path, self.merged_content)
        self.current_index += 1

        if self.current_index < len(self.files):
            Logger.info(f"Resolved {path}, {len(self.files) - self.current_index} file(s) left")
            self._load_current()
            return False

        self.vcs.complete_merge(self.merge_message)
        self.state = self.RESOLVED
        self.versions = None
        Logger.info("All conflicts resolved, merge committed")
        if self.on_resolved:
            self.on_resolved()
        return True

    def cancel(self):
        if not self.is_open:
            return
        self.state = self.CANCELLED
        unresolved = self.files[self.current_index:]
        Logger.warning(f"Merge cancelled, {len(unresolved)} conflict(s) still unresolved: {', '.join(unresolved)}")
        if self.on_cancelled:
            self.on_cancelled(unresolved)
