from ..format_core import FormatCore, is_fence
from .parsing import DEFAULT_TITLES, get_indent_depth


def format_line(task, depth=0, indent_width=2):
    pad = ' ' * (indent_width * depth)
    mark = 'x' if task.checked else ' '
    line = f"{pad}- [{mark}]"
    if task.text:
        line += f" {task.text}"
    return line


def _ends_in_open_fence(note):
    return sum(1 for line in note if is_fence(line)) % 2 == 1


def note_split(task, indent_width=2):
    """
    How many leading note lines go above the steps.
    Below the steps a note line must not read back as step text: the last
    step's note may not end inside a fence, and the first line there has to
    sit at parent level (less than one indent of its own). Lines above the
    steps must close every fence they open.
    """
    note = task.note
    if not task.children or not note:
        return 0
    if _ends_in_open_fence(task.children[-1].note):
        return len(note)
    in_fence = False
    for i, line in enumerate(note):
        if not in_fence and line.strip() and get_indent_depth(line) < indent_width:
            return i
        if is_fence(line):
            in_fence = not in_fence
    return len(note)


def render_task(task, depth=0, indent_width=2):
    """Checkbox line, then steps, then the note indented one level deeper (see note_split)."""
    out = [format_line(task, depth, indent_width)]
    note_pad = ' ' * (indent_width * (depth + 1))
    note = [f"{note_pad}{line}" if line.strip() else "" for line in task.note]
    if depth == 0 and task.children:
        split = note_split(task, indent_width)
        out.extend(note[:split])
        for child in task.children:
            out.extend(render_task(child, 1, indent_width))
        out.extend(note[split:])
    else:
        out.extend(note)
    return out


def render_notes(notes):
    if not notes:
        return []
    lines = FormatCore.trim_blank_edges(notes.split('\n'))
    return FormatCore.coerce_notes_headings(lines)


def render_document(doc, titles=None, indent_width=2):
    """Canonical text of a TodoDocument."""
    titles = titles or DEFAULT_TITLES
    lines = [f"# {doc.date.isoformat()}", ""]

    for key, tasks in (('pending', doc.pending), ('completed', doc.completed)):
        lines.extend([titles[key], ""])
        for task in tasks:
            lines.extend(render_task(task, 0, indent_width))
        if tasks:
            lines.append("")

    lines.append(titles['notes'])
    notes = render_notes(doc.notes)
    if notes:
        lines.append("")
        lines.extend(notes)

    return "\n".join(lines) + "\n"
