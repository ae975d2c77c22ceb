import copy
import re
from typing import Callable, List, Optional

from ..errors import AttachmentCleanupFailure
from ..format_core import FormatCore
from ..models import Task, TodoDocument, PENDING, COMPLETED, SECTIONS
from ..utils import Logger
from .parsing import DEFAULT_TITLES
from .rendering import render_document

# ![alt](assets/a.png) / [file](assets/b.pdf "title")
LINK_RE = re.compile(r'!?\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+"[^"]*")?\s*\)')


def extract_attachment_paths(task) -> List[str]:
    """Relative link targets in a task's note and its steps' notes."""
    paths = []
    for node in task.walk():
        for line in node.note:
            for target in LINK_RE.findall(line):
                if '://' in target or target.startswith(('/', '#', 'mailto:')):
                    continue
                if target not in paths:
                    paths.append(target)
    return paths


class TaskEngine:
    """
    Task lifecycle operations over one TodoDocument.

    Every operation works on a copy and swaps it in, so a document handed out
    earlier (e.g. to a save in progress) is never modified underneath its
    reader. Unknown ids are silent no-ops. A real change re-renders the
    document and reports the new text through ``on_change``; the engine keeps
    no save state of its own.
    """

    def __init__(self, document: TodoDocument, titles=None, indent_width=2,
                 on_change: Optional[Callable[[str], None]] = None,
                 on_attachments_removed: Optional[Callable[[List[str]], None]] = None):
        self._document = document
        self.titles = titles or DEFAULT_TITLES
        self.indent_width = indent_width
        self.on_change = on_change
        self.on_attachments_removed = on_attachments_removed
        self.last_created_id = None

    @property
    def document(self) -> TodoDocument:
        return self._document

    @property
    def text(self) -> str:
        return render_document(self._document, self.titles, self.indent_width)

    def load(self, document: TodoDocument):
        """Replace the document without reporting a change (reload from storage)."""
        self._document = document

    def _commit(self, doc: TodoDocument) -> TodoDocument:
        self._document = doc
        text = render_document(doc, self.titles, self.indent_width)
        if self.on_change:
            self.on_change(text)
        return doc

    def _noop(self, reason) -> TodoDocument:
        Logger.debug(f"[TaskEngine] no-op: {reason}")
        return self._document

    # --- creation ---

    def add_task(self, section, text) -> TodoDocument:
        if section not in SECTIONS:
            return self._noop(f"unknown section {section!r}")
        doc = copy.deepcopy(self._document)
        task = Task(text=FormatCore.clean_title(text))
        doc.section(section).append(task)
        self.last_created_id = task.id
        return self._commit(doc)

    def add_step(self, parent_id, text) -> TodoDocument:
        doc = copy.deepcopy(self._document)
        section, idx = doc.locate(parent_id)
        if section is None:
            return self._noop(f"add_step: parent {parent_id} not found")
        parent = doc.section(section)[idx]
        # a completed task keeps "all steps checked"
        step = Task(text=FormatCore.clean_title(text), checked=(section == COMPLETED))
        parent.children.append(step)
        self.last_created_id = step.id
        return self._commit(doc)

    # --- edits ---

    def set_text(self, task_id, text, is_child=False) -> TodoDocument:
        doc = copy.deepcopy(self._document)
        if is_child:
            parent = doc.find_parent(task_id)
            target = next((c for c in parent.children if c.id == task_id), None) if parent else None
        else:
            section, idx = doc.locate(task_id)
            target = doc.section(section)[idx] if section else None
        if target is None:
            return self._noop(f"set_text: {task_id} not found")
        clean = FormatCore.clean_title(text)
        if clean == target.text:
            return self._document
        target.text = clean
        return self._commit(doc)

    def set_note(self, task_id, text) -> TodoDocument:
        doc = copy.deepcopy(self._document)
        target = doc.find(task_id)
        if target is None:
            return self._noop(f"set_note: {task_id} not found")
        note = FormatCore.strip_note_headings(text)
        if note == target.note:
            return self._document
        target.note = note
        return self._commit(doc)

    def set_notes(self, text) -> TodoDocument:
        """Replace the free-form notes section."""
        lines = FormatCore.trim_blank_edges((text or "").replace('\r\n', '\n').split('\n'))
        notes = "\n".join(FormatCore.coerce_notes_headings(lines))
        if notes == self._document.notes:
            return self._document
        doc = copy.deepcopy(self._document)
        doc.notes = notes
        return self._commit(doc)

    # --- state machine ---

    @staticmethod
    def _move(doc, task, source, target, checked, force_children):
        tasks = doc.section(source)
        # by identity: equality ignores ids, twin tasks must not be confused
        tasks.pop(next(i for i, t in enumerate(tasks) if t is task))
        task.checked = checked
        if force_children:
            for child in task.children:
                child.checked = checked
        doc.section(target).append(task)

    def toggle(self, task_id, parent_id=None) -> TodoDocument:
        """
        Top-level: pending <-> completed, steps forced to the new state.
        Step of a pending task: completing the last open step completes the task.
        Step of a completed task: un-checking it sends the task back to pending
        (other steps untouched); re-checking never re-completes the parent.
        """
        doc = copy.deepcopy(self._document)

        if parent_id is None:
            section, idx = doc.locate(task_id)
            if section is not None:
                task = doc.section(section)[idx]
                if section == PENDING:
                    self._move(doc, task, PENDING, COMPLETED, True, True)
                else:
                    self._move(doc, task, COMPLETED, PENDING, False, True)
                return self._commit(doc)
            parent = doc.find_parent(task_id)
            if parent is None:
                return self._noop(f"toggle: {task_id} not found")
            parent_id = parent.id

        section, idx = doc.locate(parent_id)
        if section is None:
            return self._noop(f"toggle: parent {parent_id} not found")
        parent = doc.section(section)[idx]
        child = next((c for c in parent.children if c.id == task_id), None)
        if child is None:
            return self._noop(f"toggle: step {task_id} not under {parent_id}")

        child.checked = not child.checked
        if section == PENDING and child.checked and all(c.checked for c in parent.children):
            self._move(doc, parent, PENDING, COMPLETED, True, True)
        elif section == COMPLETED and not child.checked:
            self._move(doc, parent, COMPLETED, PENDING, False, False)
        return self._commit(doc)

    # --- removal / ordering ---

    def delete(self, task_id, parent_id=None) -> TodoDocument:
        doc = copy.deepcopy(self._document)

        if parent_id is None:
            section, idx = doc.locate(task_id)
            if section is not None:
                task = doc.section(section)[idx]
                self._queue_attachment_cleanup(extract_attachment_paths(task))
                del doc.section(section)[idx]
                return self._commit(doc)
            parent = doc.find_parent(task_id)
        else:
            section, idx = doc.locate(parent_id)
            parent = doc.section(section)[idx] if section else None

        if parent is None:
            return self._noop(f"delete: {task_id} not found")
        before = len(parent.children)
        parent.children = [c for c in parent.children if c.id != task_id]
        if len(parent.children) == before:
            return self._noop(f"delete: step {task_id} not under {parent.id}")
        return self._commit(doc)

    def _queue_attachment_cleanup(self, paths):
        if not paths or not self.on_attachments_removed:
            return
        try:
            self.on_attachments_removed(paths)
        except (AttachmentCleanupFailure, OSError) as e:
            Logger.error_once(f"attachments_{','.join(paths)}", f"Attachment cleanup failed: {e}")

    def reorder(self, section, from_index, to_index) -> TodoDocument:
        if section not in SECTIONS:
            return self._noop(f"reorder: unknown section {section!r}")
        size = len(self._document.section(section))
        if not (0 <= from_index < size and 0 <= to_index < size):
            return self._noop(f"reorder: index out of range ({from_index} -> {to_index}, size {size})")
        if from_index == to_index:
            return self._document
        doc = copy.deepcopy(self._document)
        tasks = doc.section(section)
        tasks.insert(to_index, tasks.pop(from_index))
        return self._commit(doc)
