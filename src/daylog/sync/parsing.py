import re
import datetime

from ..format_core import FormatCore, normalize, is_fence
from ..models import Task, TodoDocument, PENDING, COMPLETED
from ..utils import Logger

DEFAULT_TITLES = {
    'pending': '## Todo',
    'completed': '## Done',
    'notes': '## Notes',
}

DATE_TITLE_RE = re.compile(r'^#\s+\d{4}-\d{2}-\d{2}\s*$')
# "- [ ] x", "- [x] x", lenient "- []" and "-[ ]x"; group 1 is the indentation
TASK_LINE_RE = re.compile(r'^( *)-\s*\[([^\]]?)\](.*)$')


def get_indent_depth(line):
    return len(line) - len(line.lstrip(' '))


def parse_checkbox(line):
    """(indent, checked, text) for a checkbox line, else None."""
    m = TASK_LINE_RE.match(line)
    if not m:
        return None
    mark = m.group(2)
    if mark not in ('', ' ', 'x', 'X'):
        Logger.debug(f"Unknown checkbox mark {mark!r}, reading as unchecked: {line.strip()}")
    return len(m.group(1)), mark.lower() == 'x', m.group(3).strip()


def _strip_indent(line, width):
    return line[min(get_indent_depth(line), width):]


def _trim_trailing_blanks(note):
    while note and not note[-1].strip():
        note.pop()


def coerce_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value))


class _TaskSectionReader:
    """
    Builds the task tree of the pending/completed sections line by line.

    Child-vs-top-level is decided by indentation width on every line: 0-1
    spaces starts a top-level task, 2+ spaces a step. A ``` line toggles a
    fence that belongs to the task (or step) whose note it appears in; while
    open, step lines are note text. A new top-level task always closes the
    fence, so an unbalanced fence never swallows the tasks after it.
    """

    def __init__(self, indent_width):
        self.width = indent_width
        self.task = None
        self.child = None
        self.in_fence = False
        self.fence_owner = None

    def finish_child(self):
        if self.child is not None:
            _trim_trailing_blanks(self.child.note)
            self.child = None

    def finish(self):
        self.finish_child()
        if self.task is not None:
            _trim_trailing_blanks(self.task.note)
            self.task = None
        self.in_fence = False
        self.fence_owner = None

    def feed(self, line, target_list):
        box = parse_checkbox(line)
        if box is not None:
            indent, checked, text = box
            if indent <= 1:
                self.finish()
                self.task = Task(text=text, checked=checked)
                target_list.append(self.task)
                return
            if not self.in_fence:
                if self.task is None:
                    # [DEGRADED] step without a parent: keep it as a top-level task
                    Logger.debug(f"Orphan step promoted to task: {text}")
                    self.task = Task(text=text, checked=checked)
                    target_list.append(self.task)
                    return
                self.finish_child()
                self.child = Task(text=text, checked=checked)
                self.task.children.append(self.child)
                return

        if self.task is None:
            if line.strip():
                Logger.debug(f"Line outside any task ignored: {line.strip()}")
            return

        if not line.strip():
            owner = self.fence_owner if self.in_fence else (self.child or self.task)
            # leading blanks are dropped, inner runs collapse to one
            if owner.note and owner.note[-1] != "":
                owner.note.append("")
            return

        indent = get_indent_depth(line)
        if self.in_fence:
            owner = self.fence_owner
            strip = self.width * 2 if owner is not self.task else self.width
        elif self.child is not None and indent >= self.width * 2:
            owner = self.child
            strip = self.width * 2
        else:
            # a parent-level line ends the current step's note
            self.finish_child()
            owner = self.task
            strip = self.width

        owner.note.append(_strip_indent(line, strip).rstrip())

        if is_fence(line):
            self.in_fence = not self.in_fence
            self.fence_owner = owner if self.in_fence else None


def parse_document(date, text, titles=None, indent_width=2):
    """
    Parse stored text into a TodoDocument.
    Never fails: malformed input degrades into best-effort structure.
    """
    titles = titles or DEFAULT_TITLES
    title_to_section = {
        titles['pending']: PENDING,
        titles['completed']: COMPLETED,
        titles['notes']: 'notes',
    }
    doc = TodoDocument(date=coerce_date(date))
    reader = _TaskSectionReader(indent_width)
    notes_lines = []
    notes_fence = False
    section = 'header'

    for line in normalize(text, indent_width).split('\n'):
        if not (section == 'notes' and notes_fence):
            if DATE_TITLE_RE.match(line):
                continue
            switch = title_to_section.get(line.rstrip())
            if switch is not None:
                reader.finish()
                section = switch
                continue

        if section in (PENDING, COMPLETED):
            reader.feed(line, doc.section(section))
        elif section == 'notes':
            if is_fence(line):
                notes_fence = not notes_fence
            notes_lines.append(line)
        elif line.strip():
            Logger.debug(f"Header text ignored: {line.strip()}")

    reader.finish()

    notes_lines = FormatCore.coerce_notes_headings(FormatCore.trim_blank_edges(notes_lines))
    doc.notes = "\n".join(notes_lines)
    return doc
