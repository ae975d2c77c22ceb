"""
Sync Coordinator - one writer, one remote.

Owns the dirty/clean state of every open document and drives saving and
replica sync:

- Mutation -> Dirty, debounce timer re-armed.
- Debounce / idle poll / explicit save -> Saving -> Clean (write, commit, best-effort push).
- sync_now -> Syncing: flush dirty documents (bounded wait), pull, conflict check,
  then either ConflictPending (push suspended until the ConflictSession
  completes the merge) or push + "sync_complete".

Background failures are logged and published on ``events``; only explicit,
non-silent calls raise.
"""
import time
import queue
import threading
from collections import namedtuple

from .conflicts import ConflictSession
from .errors import IoFailure, SyncNetworkFailure, VcsError, MergeConflict, ConflictedDocument
from .models import SyncPhase, SyncState, TodoDocument, PENDING
from .sync.discovery import scan_past_uncompleted, load_documents
from .sync.engine import TaskEngine
from .sync.parsing import parse_document, coerce_date
from .sync.rendering import render_document
from .utils import Logger, FileUtils

SyncEvent = namedtuple('SyncEvent', 'kind date files error', defaults=(None, None, None))


class DocumentSession:
    """An open document: its engine, its SyncState and its debounce timer."""

    def __init__(self, date, engine, flushed_hash=None):
        self.date = date
        self.engine = engine
        self.state = SyncState()
        self.flushed_hash = flushed_hash
        self.debounce_timer = None

    def cancel_debounce(self):
        if self.debounce_timer is not None:
            self.debounce_timer.cancel()
            self.debounce_timer = None


class SyncCoordinator:
    def __init__(self, config, store, vcs=None, state_manager=None, clock=time.monotonic):
        self.config = config
        self.store = store
        self.vcs = vcs
        self.sm = state_manager
        self.clock = clock
        self.events = queue.Queue()

        self._lock = threading.RLock()
        self._saved = threading.Condition(self._lock)
        # no concurrent pull/push/commit
        self._repo_lock = threading.Lock()
        self._repo_phase = None
        self._sessions = {}
        self._uncommitted = set()
        self.active_date = None
        self.conflict_session = None

        self._stop = threading.Event()
        self._loop_thread = None
        self._startup_timer = None
        self._last_sync = None

        Logger.debug_enabled = bool(config.DEBUG_MODE)

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------

    def _parse(self, date, text):
        return parse_document(date, text, self.config.section_titles, self.config.INDENT_WIDTH)

    def _render(self, doc):
        return render_document(doc, self.config.section_titles, self.config.INDENT_WIDTH)

    def _load_session(self, date):
        rel_path = self.store.relative_path(date)
        # the working copy holds conflict markers; parsing them would turn them into notes
        if rel_path in self._unmerged_paths():
            raise ConflictedDocument(f"{rel_path} has an unfinished merge, run `daylog resolve` first")
        text = self.store.read_document(date)
        if text is None:
            doc = TodoDocument(date=date)
            flushed_hash = None
        else:
            doc = self._parse(date, text)
            flushed_hash = FileUtils.calculate_hash(text)

        engine = TaskEngine(
            doc,
            titles=self.config.section_titles,
            indent_width=self.config.INDENT_WIDTH,
            on_change=lambda _text, d=date: self._on_change(d),
            on_attachments_removed=lambda paths, d=date: self.store.delete_attachments(d, paths),
        )
        return DocumentSession(date, engine, flushed_hash)

    def _session(self, date):
        with self._lock:
            session = self._sessions.get(date)
            if session is None:
                session = self._load_session(date)
                self._sessions[date] = session
            return session

    def open(self, date, activate=True) -> TaskEngine:
        """
        Engine for the date's document, read from storage on first use.
        Switching the active date cancels the previous document's debounce
        timer without saving it; the idle poll still flushes it later.
        """
        date = coerce_date(date)
        with self._lock:
            if activate and self.active_date is not None and self.active_date != date:
                previous = self._sessions.get(self.active_date)
                if previous is not None:
                    previous.cancel_debounce()
            session = self._session(date)
            if activate:
                self.active_date = date
            return session.engine

    def engine(self, date=None) -> TaskEngine:
        return self.open(date or self.active_date, activate=False)

    def state(self, date=None) -> SyncState:
        date = coerce_date(date) if date else self.active_date
        with self._lock:
            return self._session(date).state

    @property
    def phase(self) -> SyncPhase:
        with self._lock:
            if self._repo_phase is not None:
                return self._repo_phase
            session = self._sessions.get(self.active_date)
            return session.state.phase if session else SyncPhase.CLEAN

    # ------------------------------------------------------------------
    # dirty tracking
    # ------------------------------------------------------------------

    def _on_change(self, date):
        with self._lock:
            session = self._sessions.get(date)
            if session is None:
                return
            st = session.state
            now = self.clock()
            if not st.dirty:
                st.dirty_since = now
            st.dirty = True
            st.revision += 1
            st.last_activity = now
            if st.phase == SyncPhase.CLEAN:
                st.phase = SyncPhase.DIRTY
            # Saving stays Saving; the save notices the new revision afterwards
            self._arm_debounce(session)

    def _arm_debounce(self, session):
        session.cancel_debounce()
        delay = self.config.DEBOUNCE_SECONDS
        if not delay or delay <= 0:
            return
        timer = threading.Timer(delay, self._debounce_fired, args=(session.date,))
        timer.daemon = True
        session.debounce_timer = timer
        timer.start()

    def _debounce_fired(self, date):
        with self._lock:
            session = self._sessions.get(date)
            if session is not None:
                session.debounce_timer = None
        self.save(date, silent=True)

    # ------------------------------------------------------------------
    # saving
    # ------------------------------------------------------------------

    def save(self, date=None, silent=False, push=True):
        """
        Dirty -> Saving -> Clean. Returns True when a write happened.
        The Dirty -> Saving transition is the only guard: a second trigger
        arriving while a save runs (or after it) finds nothing to do.
        """
        date = coerce_date(date) if date else self.active_date
        with self._lock:
            session = self._sessions.get(date)
            if session is None or session.state.phase != SyncPhase.DIRTY:
                return False
            st = session.state
            st.phase = SyncPhase.SAVING
            session.cancel_debounce()
            revision = st.revision
            # engine documents are copy-on-write: this snapshot never changes
            doc = session.engine.document

        text = self._render(doc)
        rel_path = self.store.relative_path(date)
        Logger.debug_block(f"{rel_path} rev {revision}", text.splitlines())
        try:
            self.store.write_document(date, text)
        except IoFailure as e:
            with self._lock:
                st.phase = SyncPhase.DIRTY
                self._saved.notify_all()
            self.events.put(SyncEvent('save_failed', date, error=e))
            if not silent:
                raise
            Logger.error_once(f"save_{date}", f"Save failed [{date}]: {e}")
            return False

        with self._lock:
            session.flushed_hash = FileUtils.calculate_hash(text)
            self._uncommitted.add(rel_path)
            if st.revision == revision:
                st.dirty = False
                st.phase = SyncPhase.CLEAN
            else:
                # edits made during the write go out with the next cycle
                st.phase = SyncPhase.DIRTY
                st.dirty_since = self.clock()
                self._arm_debounce(session)
            self._saved.notify_all()

        Logger.info(f"💾 [WRITE] {rel_path}", date.isoformat())
        self.events.put(SyncEvent('saved', date))
        self._record_stats(date, doc)

        if push:
            self._commit_and_push(silent)
        return True

    def _record_stats(self, date, doc):
        if self.sm is None:
            return
        total, completed, uncompleted = doc.counts()
        # debounce and idle saves run on their own threads; the state dict is shared
        with self._lock:
            self.sm.update_daily_stats(date, total, completed, uncompleted)

    def _commit_pending(self):
        """Commit written documents. Caller holds the repo lock."""
        with self._lock:
            paths = sorted(self._uncommitted)
        if not paths:
            return False
        message = f"Update {paths[0]}" if len(paths) == 1 else f"Update {len(paths)} documents"
        committed = self.vcs.commit(paths, message)
        with self._lock:
            self._uncommitted.difference_update(paths)
        return committed

    def _commit_and_push(self, silent):
        if self.vcs is None:
            return
        with self._repo_lock:
            with self._lock:
                busy = self._repo_phase
            if busy is not None:
                # the running sync (or the conflict resolution) takes care of it
                Logger.debug(f"Commit/push deferred while {busy.value}")
                return
            try:
                if self._suspend_if_conflicted():
                    return
                self._commit_pending()
                if self.vcs.has_remote():
                    self.vcs.push()
            except VcsError as e:
                if not silent:
                    raise SyncNetworkFailure(f"Push after save failed: {e}") from e
                Logger.error_once("push_after_save", f"Push after save failed: {e}")

    def flush(self, timeout=None):
        """
        Save every dirty document now. A save already running in another
        thread is waited for at most ``timeout`` seconds; after that the
        flush moves on so a stuck write never blocks sync forever.
        """
        timeout = self.config.FLUSH_TIMEOUT_SECONDS if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._lock:
            dates = list(self._sessions)

        for date in dates:
            with self._lock:
                st = self._sessions[date].state
                while st.phase == SyncPhase.SAVING:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._saved.wait(remaining)
                if st.phase == SyncPhase.SAVING:
                    Logger.warning(f"Flush of {date} timed out, syncing anyway")
                    continue
                needs_save = st.phase == SyncPhase.DIRTY
            if needs_save:
                self.save(date, silent=True, push=False)

    # ------------------------------------------------------------------
    # idle autosave + background loop
    # ------------------------------------------------------------------

    def check_idle(self, now=None):
        """Save documents idle long enough, or unsaved for too long."""
        now = self.clock() if now is None else now
        due = []
        with self._lock:
            for date, session in self._sessions.items():
                st = session.state
                if st.phase != SyncPhase.DIRTY:
                    continue
                idle = now - st.last_activity >= self.config.IDLE_SAVE_SECONDS
                stale = now - st.dirty_since >= self.config.MAX_UNSAVED_SECONDS
                if idle or stale:
                    due.append(date)
        saved = []
        for date in due:
            if self.save(date, silent=True):
                saved.append(date)
        return saved

    def _run_loop(self):
        while not self._stop.wait(self.config.IDLE_POLL_SECONDS):
            try:
                self.check_idle()
                interval = self.config.SYNC_INTERVAL_SECONDS
                if self.vcs is not None and interval and \
                        time.monotonic() - (self._last_sync or 0) >= interval:
                    self.sync_now(silent=True)
            except Exception as e:
                Logger.error_once(f"loop_{type(e).__name__}", f"Background cycle failed: {e}")

    def start(self):
        """Background idle poll, periodic silent sync and the delayed startup pull."""
        self._stop.clear()
        self._last_sync = time.monotonic()
        if self.vcs is not None:
            self._startup_timer = threading.Timer(self.config.STARTUP_PULL_DELAY, self.startup_pull)
            self._startup_timer.daemon = True
            self._startup_timer.start()
        self._loop_thread = threading.Thread(target=self._run_loop, name='daylog-sync', daemon=True)
        self._loop_thread.start()
        Logger.info(f"🚀 Sync coordinator started: idle save {self.config.IDLE_SAVE_SECONDS}s, "
                    f"sync every {self.config.SYNC_INTERVAL_SECONDS}s")

    def stop(self, flush=True):
        self._stop.set()
        if self._startup_timer is not None:
            self._startup_timer.cancel()
            self._startup_timer = None
        with self._lock:
            for session in self._sessions.values():
                session.cancel_debounce()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=self.config.FLUSH_TIMEOUT_SECONDS)
            self._loop_thread = None
        if flush:
            self.flush()
            with self._repo_lock:
                try:
                    if self.vcs is not None and self._repo_phase is None \
                            and not self._suspend_if_conflicted():
                        self._commit_pending()
                except VcsError as e:
                    Logger.error_once("commit_on_stop", f"Commit on shutdown failed: {e}")
        if self.sm is not None:
            with self._lock:
                self.sm.save()

    # ------------------------------------------------------------------
    # replica sync
    # ------------------------------------------------------------------

    def _begin_repo_phase(self, phase):
        with self._lock:
            if self._repo_phase is not None:
                return self._repo_phase
            self._repo_phase = phase
            return None

    def _end_repo_phase(self):
        with self._lock:
            self._repo_phase = None
            for session in self._sessions.values():
                session.state.pending_conflict = None

    def startup_pull(self):
        """One-shot pull + conflict check at startup. Never pushes."""
        if self.vcs is None:
            return 'offline'
        if self._begin_repo_phase(SyncPhase.SYNCING) is not None:
            return 'busy'
        try:
            with self._repo_lock:
                conflict_error = None
                try:
                    self.vcs.pull()
                except MergeConflict as e:
                    conflict_error = e
                files = self._conflict_files()
                if files:
                    self._enter_conflict(files)
                    return 'conflict'
                if conflict_error is not None:
                    raise conflict_error
        except VcsError as e:
            self._end_repo_phase()
            Logger.error_once("startup_pull", f"Startup pull failed: {e}")
            self.events.put(SyncEvent('sync_failed', error=e))
            return 'failed'
        self._end_repo_phase()
        self._reload_clean_documents()
        return 'pulled'

    def sync_now(self, silent=False):
        """
        Flush, pull, check conflicts, push.
        Returns 'synced', 'conflict', 'busy', 'failed' or 'offline'.
        """
        if self.vcs is None:
            return 'offline'
        busy = self._begin_repo_phase(SyncPhase.SYNCING)
        if busy is not None:
            Logger.info(f"Sync skipped, repository is {busy.value}")
            return 'conflict' if busy == SyncPhase.CONFLICT_PENDING else 'busy'

        self._last_sync = time.monotonic()
        self.events.put(SyncEvent('sync_started'))
        try:
            self.flush()
            with self._repo_lock:
                # a merge left unfinished by an earlier run
                if self._suspend_if_conflicted():
                    return 'conflict'
                self._commit_pending()
                conflict_error = None
                try:
                    self.vcs.pull()
                except MergeConflict as e:
                    conflict_error = e
                files = self._conflict_files()
                if files:
                    self._enter_conflict(files)
                    return 'conflict'
                if conflict_error is not None:
                    raise conflict_error
                self.vcs.push()
        except VcsError as e:
            self._end_repo_phase()
            self.events.put(SyncEvent('sync_failed', error=e))
            if not silent:
                raise SyncNetworkFailure(str(e)) from e
            Logger.error_once("sync_silent", f"Background sync failed: {e}")
            return 'failed'

        self._end_repo_phase()
        Logger.reset_errors("sync_")
        self._sync_complete()
        return 'synced'

    def _conflict_files(self):
        if not self.vcs.has_conflicts():
            return []
        return self.vcs.list_conflict_files()

    def _unmerged_paths(self):
        return set(self._conflict_files()) if self.vcs is not None else set()

    def _suspend_if_conflicted(self):
        """
        Enter ConflictPending when the working copy still has unmerged files.
        Staging one of them would mark it resolved with its markers inside,
        so nothing is committed until the ConflictSession completes the merge.
        Caller holds the repo lock.
        """
        files = self._conflict_files()
        if not files:
            return False
        self._enter_conflict(files)
        return True

    def _enter_conflict(self, files):
        with self._lock:
            self._repo_phase = SyncPhase.CONFLICT_PENDING
            for session in self._sessions.values():
                session.state.pending_conflict = list(files)
        Logger.warning(f"⚠️ Merge conflict in {len(files)} file(s), push suspended: {', '.join(files)}")
        self.conflict_session = ConflictSession(
            self.vcs, files,
            on_resolved=self._on_conflicts_resolved,
            on_cancelled=self._on_conflicts_cancelled,
        )
        self.events.put(SyncEvent('conflict', files=list(files)))

    def resume_conflicts(self):
        """Open a ConflictSession for conflicts left in the working copy by an earlier run."""
        if self.conflict_session is not None:
            return self.conflict_session
        if self.vcs is None or self._begin_repo_phase(SyncPhase.CONFLICT_PENDING) is not None:
            return None
        try:
            files = self._conflict_files()
            if not files:
                self._end_repo_phase()
                return None
            self._enter_conflict(files)
        except VcsError:
            self._end_repo_phase()
            raise
        return self.conflict_session

    def refresh_conflict_state(self):
        """Leave ConflictPending when the conflicts were resolved outside this coordinator."""
        with self._lock:
            if self._repo_phase != SyncPhase.CONFLICT_PENDING:
                return False
        try:
            if self.vcs.has_conflicts():
                return False
        except VcsError as e:
            Logger.error_once("conflict_refresh", f"Conflict check failed: {e}")
            return False
        Logger.info("Conflicts resolved elsewhere, resuming sync")
        self.conflict_session = None
        self._end_repo_phase()
        return True

    def _on_conflicts_resolved(self):
        try:
            with self._repo_lock:
                # documents saved while the merge was pending
                self._commit_pending()
                self.vcs.push()
        except VcsError as e:
            self.events.put(SyncEvent('sync_failed', error=e))
            raise SyncNetworkFailure(f"Push after merge failed: {e}") from e
        finally:
            self.conflict_session = None
            self._end_repo_phase()
        self._sync_complete()

    def _on_conflicts_cancelled(self, unresolved):
        self.conflict_session = None
        self._end_repo_phase()
        self.events.put(SyncEvent('conflict_cancelled', files=list(unresolved)))

    def _reload_clean_documents(self):
        """Re-read documents the remote may have changed. Dirty ones are never re-parsed."""
        with self._lock:
            candidates = [(d, s.state.revision) for d, s in self._sessions.items()
                          if s.state.phase == SyncPhase.CLEAN]
        reloaded = []
        for date, revision in candidates:
            try:
                text = self.store.read_document(date)
            except IoFailure as e:
                Logger.error_once(f"reload_{date}", f"Reload failed [{date}]: {e}")
                continue
            if text is None:
                continue
            content_hash = FileUtils.calculate_hash(text)
            with self._lock:
                session = self._sessions.get(date)
                if session is None or session.flushed_hash == content_hash:
                    continue
                st = session.state
                if st.phase != SyncPhase.CLEAN or st.revision != revision:
                    continue
                session.engine.load(self._parse(date, text))
                session.flushed_hash = content_hash
            reloaded.append(date)
            Logger.info(f"🔄 Reloaded {self.store.relative_path(date)} from remote", date.isoformat())
            self.events.put(SyncEvent('reloaded', date))
        return reloaded

    def _sync_complete(self):
        self._reload_clean_documents()
        Logger.info("✅ Sync complete")
        self.events.put(SyncEvent('sync_complete'))

    # ------------------------------------------------------------------
    # carry-forward + statistics
    # ------------------------------------------------------------------

    def past_uncompleted(self, today):
        dismissed = self.sm.dismissed if self.sm else ()
        return scan_past_uncompleted(self.store, coerce_date(today), dismissed,
                                     self.config.section_titles, self.config.INDENT_WIDTH,
                                     skip=self._unmerged_paths())

    def dismiss(self, key):
        if self.sm is not None:
            with self._lock:
                self.sm.dismiss(key)

    def carry_forward(self, item, target_date):
        """Copy a past pending task into the target date and stop offering it."""
        engine = self.open(target_date, activate=False)
        engine.add_task(PENDING, item.text)
        self.dismiss(item.key)
        return engine.last_created_id

    def delete_past_task(self, source_date, text):
        source_date = coerce_date(source_date)
        engine = self.open(source_date, activate=False)
        match = next((t for t in engine.document.pending if t.text == text.strip()), None)
        if match is None:
            return False
        engine.delete(match.id)
        self.save(source_date, silent=False)
        return True

    def recalculate_stats(self, today=None):
        if self.sm is None:
            return None
        docs = load_documents(self.store, self.config.section_titles, self.config.INDENT_WIDTH,
                              skip=self._unmerged_paths())
        return self.sm.recalculate_stats(docs, today)
