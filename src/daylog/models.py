"""Data models for the daily log.

Task ids are assigned when a task is created or parsed and are never written
to the document text, so they are excluded from equality: two documents are
equal when their task trees and notes are.
"""
from __future__ import annotations

import datetime
import itertools
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

PENDING = 'pending'
COMPLETED = 'completed'
SECTIONS = (PENDING, COMPLETED)

# process prefix + counter: unique for the process lifetime, never reused
_id_prefix = os.urandom(3).hex()
_id_counter = itertools.count(1)


def generate_task_id() -> str:
    return f"t{_id_prefix}{next(_id_counter):x}"


@dataclass
class Task:
    """A node of the task tree.

    Fields:
        text: Single-line title.
        checked: Completion flag.
        note: Free-form body lines, stored without structural indentation.
        children: Steps; a step never has children of its own.
        id: Opaque identifier, not part of equality.
    """
    text: str
    checked: bool = False
    note: List[str] = field(default_factory=list)
    children: List['Task'] = field(default_factory=list)
    id: str = field(default_factory=generate_task_id, compare=False)

    def walk(self):
        yield self
        yield from self.children


@dataclass
class TodoDocument:
    date: datetime.date
    pending: List[Task] = field(default_factory=list)
    completed: List[Task] = field(default_factory=list)
    notes: str = ""

    def section(self, name: str) -> List[Task]:
        if name == PENDING:
            return self.pending
        if name == COMPLETED:
            return self.completed
        raise ValueError(f"Unknown section: {name}")

    def all_tasks(self):
        for task in itertools.chain(self.pending, self.completed):
            yield from task.walk()

    def locate(self, task_id: str):
        """Return (section, index) of a top-level task, or (None, -1)."""
        for name in SECTIONS:
            for i, task in enumerate(self.section(name)):
                if task.id == task_id:
                    return name, i
        return None, -1

    def find(self, task_id: str) -> Optional[Task]:
        for task in self.all_tasks():
            if task.id == task_id:
                return task
        return None

    def find_parent(self, child_id: str) -> Optional[Task]:
        for task in itertools.chain(self.pending, self.completed):
            if any(c.id == child_id for c in task.children):
                return task
        return None

    def counts(self):
        """(total, completed, uncompleted) over top-level tasks."""
        done = len(self.completed)
        todo = len(self.pending)
        return done + todo, done, todo


class SyncPhase(Enum):
    CLEAN = 'clean'
    DIRTY = 'dirty'
    SAVING = 'saving'
    SYNCING = 'syncing'
    CONFLICT_PENDING = 'conflict_pending'


@dataclass
class SyncState:
    """Per-document coordination state. Owned by the coordinator, never persisted."""
    dirty: bool = False
    last_activity: float = 0.0
    dirty_since: float = 0.0
    pending_conflict: Optional[List[str]] = None
    phase: SyncPhase = SyncPhase.CLEAN
    revision: int = 0
