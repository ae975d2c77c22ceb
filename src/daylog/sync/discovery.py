from collections import namedtuple

from ..utils import FileUtils, Logger
from .parsing import parse_document

PastTask = namedtuple('PastTask', 'key source_date text')


def carry_key(date, text):
    """Stable identity of a pending task across runs (ids are not persisted)."""
    return f"{date.isoformat()}:{FileUtils.calculate_hash(text.strip())[:10]}"


def load_documents(store, titles=None, indent_width=2, until=None, skip=()):
    """Yield (date, TodoDocument) for every stored document up to ``until``, except ``skip`` paths."""
    for date in store.list_dates():
        if (until is not None and date > until) or store.relative_path(date) in skip:
            continue
        text = store.read_document(date)
        if text is None:
            continue
        yield date, parse_document(date, text, titles, indent_width)


def scan_past_uncompleted(store, before_date, dismissed=(), titles=None, indent_width=2, skip=()):
    """Pending top-level tasks of every document dated before ``before_date``."""
    dismissed = set(dismissed)
    found = []
    seen = set()
    for date, doc in load_documents(store, titles, indent_width, skip=skip):
        if date >= before_date:
            continue
        for task in doc.pending:
            if not task.text:
                continue
            key = carry_key(date, task.text)
            if key in dismissed or key in seen:
                continue
            seen.add(key)
            found.append(PastTask(key, date, task.text))
    Logger.debug(f"Past uncompleted scan: {len(found)} task(s) before {before_date}")
    return found
