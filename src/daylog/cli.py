"""daylog command line: edit today's list, sync it, resolve conflicts, run the watcher."""
import argparse
import datetime
import os
import re
import signal
import sys
import time

from .config import Config
from .errors import DaylogError, ConflictedDocument
from .manager import SyncCoordinator
from .models import PENDING, COMPLETED, SyncPhase
from .state_manager import StateManager
from .store import DocumentStore
from .sync.parsing import coerce_date
from .utils import Logger, ProcessLock
from .vcs import GitRepo

# p2 / c1 / p2.3
REF_RE = re.compile(r'^([pc])(\d+)(?:\.(\d+))?$')

SECTION_ALIASES = {
    'p': PENDING, 'pending': PENDING, 'todo': PENDING,
    'c': COMPLETED, 'completed': COMPLETED, 'done': COMPLETED,
}


def build_coordinator(config):
    store = DocumentStore(config.VAULT_ROOT, config.ATTACHMENT_DIR)
    vcs = None
    if os.path.isdir(os.path.join(config.VAULT_ROOT, '.git')):
        vcs = GitRepo(config.VAULT_ROOT, branch=config.BRANCH)
    sm = StateManager(config.STATE_FILE)
    return SyncCoordinator(config, store, vcs, sm)


def resolve_ref(doc, ref):
    """Turn a position ref printed by ``show`` into (task_id, parent_id)."""
    m = REF_RE.match(ref.strip().lower())
    if not m:
        raise ValueError(f"Bad task ref {ref!r} (expected p<N>, c<N> or p<N>.<M>)")
    tasks = doc.section(PENDING if m.group(1) == 'p' else COMPLETED)
    index = int(m.group(2)) - 1
    if not 0 <= index < len(tasks):
        raise ValueError(f"No task {ref}")
    task = tasks[index]
    if m.group(3) is None:
        return task.id, None
    step_index = int(m.group(3)) - 1
    if not 0 <= step_index < len(task.children):
        raise ValueError(f"No step {ref}")
    return task.children[step_index].id, task.id


def format_document(doc):
    lines = [f"# {doc.date.isoformat()}"]
    for section, prefix, label in ((PENDING, 'p', 'Todo'), (COMPLETED, 'c', 'Done')):
        tasks = doc.section(section)
        lines.append(f"{label} ({len(tasks)})")
        for i, task in enumerate(tasks, 1):
            lines.append(f"  {prefix}{i:<6}[{'x' if task.checked else ' '}] {task.text}")
            for line in task.note:
                lines.append(f"            {line}")
            for j, step in enumerate(task.children, 1):
                ref = f"{prefix}{i}.{j}"
                lines.append(f"    {ref:<6}  [{'x' if step.checked else ' '}] {step.text}")
                for line in step.note:
                    lines.append(f"                {line}")
    if doc.notes:
        lines.append("Notes")
        lines.extend(f"  {line}" for line in doc.notes.split('\n'))
    return "\n".join(lines)


def _read_text(value):
    return sys.stdin.read() if value == '-' else value


def _save(coordinator, date):
    if coordinator.save(date, silent=False):
        print(f"💾 Saved {coordinator.store.relative_path(date)}")
    else:
        print("Nothing changed.")


def _mutate(config, args, change):
    coordinator = build_coordinator(config)
    date = args.date
    engine = coordinator.open(date)
    change(engine)
    _save(coordinator, date)
    return 0


# --- commands ---

def cmd_show(config, args):
    coordinator = build_coordinator(config)
    print(format_document(coordinator.open(args.date).document))
    return 0


def cmd_add(config, args):
    def change(engine):
        engine.add_task(PENDING, _read_text(args.text))
        if args.done:
            engine.toggle(engine.last_created_id)
    return _mutate(config, args, change)


def cmd_step(config, args):
    def change(engine):
        task_id, parent_id = resolve_ref(engine.document, args.parent)
        if parent_id is not None:
            raise ValueError("Steps cannot have steps of their own")
        engine.add_step(task_id, _read_text(args.text))
    return _mutate(config, args, change)


def cmd_toggle(config, args):
    def change(engine):
        engine.toggle(*resolve_ref(engine.document, args.ref))
    return _mutate(config, args, change)


def cmd_edit(config, args):
    def change(engine):
        task_id, parent_id = resolve_ref(engine.document, args.ref)
        engine.set_text(task_id, _read_text(args.text), is_child=parent_id is not None)
    return _mutate(config, args, change)


def cmd_note(config, args):
    def change(engine):
        task_id, _ = resolve_ref(engine.document, args.ref)
        engine.set_note(task_id, _read_text(args.text))
    return _mutate(config, args, change)


def cmd_notes(config, args):
    return _mutate(config, args, lambda engine: engine.set_notes(_read_text(args.text)))


def cmd_rm(config, args):
    def change(engine):
        engine.delete(*resolve_ref(engine.document, args.ref))
    return _mutate(config, args, change)


def cmd_move(config, args):
    section = SECTION_ALIASES.get(args.section.lower())
    if section is None:
        raise ValueError(f"Unknown section {args.section!r}")
    return _mutate(config, args, lambda engine: engine.reorder(section, args.source - 1, args.target - 1))


def cmd_sync(config, args):
    coordinator = build_coordinator(config)
    if coordinator.vcs is None:
        print("Not a repository, run `daylog init` first.")
        return 1
    result = coordinator.sync_now(silent=False)
    if result == 'conflict':
        files = coordinator.conflict_session.files
        print(f"⚠️  Merge conflict in: {', '.join(files)}")
        print("   Run `daylog resolve --take local|remote|working` to finish the merge.")
        return 1
    if result == 'busy':
        print("Repository busy, try again.")
        return 1
    print("✅ Synced.")
    return 0


def cmd_resolve(config, args):
    coordinator = build_coordinator(config)
    session = coordinator.resume_conflicts()
    if session is None:
        print("No conflicts.")
        return 0
    while session.is_open:
        path = session.current_file
        if args.take == 'local':
            session.select_local_version()
        elif args.take == 'remote':
            session.select_remote_version()
        else:
            session.edit_buffer(session.versions.get('working', ""))
        if not session.resolve_current() and session.current_file == path:
            print(f"❌ {path}: merged content is empty, resolve it by hand.")
            session.cancel()
            return 1
        print(f"   resolved {path} ({args.take})")
    print("✅ Merge completed and pushed.")
    return 0


def _find_past(items, key):
    item = next((i for i in items if i.key == key), None)
    if item is None:
        raise ValueError(f"No past task with key {key}")
    return item


def cmd_carry(config, args):
    coordinator = build_coordinator(config)
    items = coordinator.past_uncompleted(args.date)

    if args.dismiss:
        coordinator.dismiss(args.dismiss)
        print(f"Dismissed {args.dismiss}")
        return 0
    if args.take:
        item = _find_past(items, args.take)
        coordinator.carry_forward(item, args.date)
        _save(coordinator, args.date)
        return 0
    if args.delete:
        item = _find_past(items, args.delete)
        coordinator.delete_past_task(item.source_date, item.text)
        print(f"Deleted from {item.source_date}: {item.text}")
        return 0

    if not items:
        print("No unfinished tasks before", args.date.isoformat())
        return 0
    for item in items:
        print(f"{item.key}  {item.text}")
    return 0


def cmd_stats(config, args):
    coordinator = build_coordinator(config)
    if args.recalculate:
        summary = coordinator.recalculate_stats()
    else:
        summary = coordinator.sm.summary()
    width = max(len(k) for k in summary)
    for key, value in summary.items():
        print(f"{key:<{width}}  {value}")
    return 0


def cmd_init(config, args):
    repo = GitRepo(config.VAULT_ROOT, branch=config.BRANCH)
    repo.init(config.USER_NAME, config.USER_EMAIL, config.REMOTE_URL)
    print(f"✅ Repository ready at {config.VAULT_ROOT}")
    return 0


def cmd_watch(config, args):
    lock = ProcessLock(config.LOCK_FILE)
    if not lock.acquire():
        pid = lock.read_pid()
        print(f"❌ Another watcher holds {config.LOCK_FILE} (PID {pid or 'unknown'})")
        return 1

    coordinator = build_coordinator(config)
    running = [True]

    def handle_stop(signum, frame):
        running[0] = False

    signal.signal(signal.SIGTERM, handle_stop)
    Logger.info(f"=== daylog watcher ({config.VAULT_ROOT}) ===")
    def open_today():
        today = datetime.date.today()
        try:
            coordinator.open(today)
        except ConflictedDocument as e:
            Logger.error_once(f"open_{today}", str(e))
            return None
        return today

    try:
        opened = open_today()
        coordinator.start()
        while running[0]:
            time.sleep(1)
            # midnight rollover, or today's file came out of a merge
            if opened != datetime.date.today():
                opened = open_today()
            if coordinator.phase == SyncPhase.CONFLICT_PENDING:
                coordinator.refresh_conflict_state()
            while not coordinator.events.empty():
                event = coordinator.events.get_nowait()
                if event.kind == 'conflict':
                    Logger.warning(f"Run `daylog resolve` to finish the merge of {', '.join(event.files)}")
    except KeyboardInterrupt:
        Logger.info("Stopping watcher...")
    finally:
        coordinator.stop()
        lock.release()
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog='daylog', description='Daily todo log with git sync')
    parser.add_argument('--root', help='Working copy root (default $DAYLOG_ROOT or ~/daylog)')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # shared --date for every command
    dated = argparse.ArgumentParser(add_help=False)
    dated.add_argument('--date', type=coerce_date, default=datetime.date.today(),
                       help='Document date (YYYY-MM-DD, default today)')

    def add(name, func, help_text):
        sub = subparsers.add_parser(name, parents=[dated], help=help_text)
        sub.set_defaults(func=func)
        return sub

    add('show', cmd_show, 'Print the document with task refs')

    p = add('add', cmd_add, 'Add a task')
    p.add_argument('text', help="Task title ('-' reads stdin)")
    p.add_argument('--done', action='store_true', help='Add it as completed')

    p = add('step', cmd_step, 'Add a step to a task')
    p.add_argument('parent', help='Task ref, e.g. p1')
    p.add_argument('text')

    p = add('toggle', cmd_toggle, 'Complete / reopen a task or step')
    p.add_argument('ref')

    p = add('edit', cmd_edit, 'Change a task title')
    p.add_argument('ref')
    p.add_argument('text')

    p = add('note', cmd_note, 'Replace a task note')
    p.add_argument('ref')
    p.add_argument('text', help="Note text ('-' reads stdin)")

    p = add('notes', cmd_notes, 'Replace the notes section')
    p.add_argument('text', help="Notes text ('-' reads stdin)")

    p = add('rm', cmd_rm, 'Delete a task or step')
    p.add_argument('ref')

    p = add('move', cmd_move, 'Reorder a task within its section')
    p.add_argument('section', help='todo or done')
    p.add_argument('source', type=int, help='Current position (1-based)')
    p.add_argument('target', type=int, help='New position (1-based)')

    add('sync', cmd_sync, 'Save, pull, check conflicts, push')

    p = add('resolve', cmd_resolve, 'Finish a conflicted merge')
    p.add_argument('--take', choices=['local', 'remote', 'working'], default='local')

    p = add('carry', cmd_carry, 'List, carry or dismiss unfinished tasks of earlier days')
    group = p.add_mutually_exclusive_group()
    group.add_argument('--dismiss', metavar='KEY')
    group.add_argument('--take', metavar='KEY', help='Copy into the --date document')
    group.add_argument('--delete', metavar='KEY', help='Remove from its original day')

    p = add('stats', cmd_stats, 'Completion statistics')
    p.add_argument('--recalculate', action='store_true', help='Rebuild from all documents')

    add('init', cmd_init, 'Create the repository and set the remote')
    add('watch', cmd_watch, 'Run the autosave/sync watcher')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {}
    if args.debug:
        overrides['DEBUG_MODE'] = True
    if args.root:
        overrides['VAULT_ROOT'] = os.path.abspath(os.path.expanduser(args.root))
    config = Config.from_env(**overrides)

    try:
        return args.func(config, args)
    except (DaylogError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
