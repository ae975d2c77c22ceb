import os
import json
import shutil
import datetime

from .utils import Logger, FileUtils


class StateManager:
    """
    Auxiliary state persisted next to the documents:
    dismissed carry-forward items and per-day task statistics.
    """

    def __init__(self, state_file):
        self.state_file = state_file
        self.state = {}
        self.load()

    def load(self):
        backup_file = self.state_file + ".bak"

        # 1. main file
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, 'r', encoding='utf-8') as f:
                    self.state = json.load(f)
                return
            except (OSError, ValueError):
                Logger.error_once("state_load_main", "State file corrupt, trying backup...")

        # 2. backup
        if os.path.exists(backup_file):
            try:
                with open(backup_file, 'r', encoding='utf-8') as f:
                    self.state = json.load(f)
                Logger.info("[StateManager] Restored state from backup.")
                return
            except (OSError, ValueError):
                Logger.error_once("state_load_bak", "State backup corrupt as well!")

        # 3. give up -> empty
        if os.path.exists(self.state_file) or os.path.exists(backup_file):
            Logger.warning("[StateManager] State unrecoverable, starting empty.")
        self.state = {}

    def save(self):
        if os.path.exists(self.state_file):
            try:
                shutil.copy2(self.state_file, self.state_file + ".bak")
            except OSError:
                pass
        content = json.dumps(self.state, ensure_ascii=False, indent=2)
        return FileUtils.write_file(self.state_file, content)

    # --- carry-forward dismissals ---

    @property
    def dismissed(self):
        return list(self.state.get('dismissed', []))

    @property
    def last_checked(self):
        return self.state.get('last_checked', '')

    def dismiss(self, key, today=None):
        today = today or datetime.date.today()
        dismissed = self.state.setdefault('dismissed', [])
        if key not in dismissed:
            dismissed.append(key)
        self.state['last_checked'] = today.isoformat()
        self.save()

    def is_dismissed(self, key):
        return key in self.state.get('dismissed', [])

    # --- statistics ---

    @property
    def daily(self):
        return self.state.setdefault('daily', {})

    def update_daily_stats(self, date, total, completed, uncompleted, today=None, persist=True):
        """Record one day's counters. Future dates are not counted."""
        today = today or datetime.date.today()
        if date > today:
            Logger.debug(f"Stats for future date {date} ignored")
            return False
        self.daily[date.isoformat()] = {
            'total': total,
            'completed': completed,
            'uncompleted': uncompleted,
        }
        self.state['last_updated'] = datetime.datetime.now().isoformat(timespec='seconds')
        if persist:
            self.save()
        return True

    def recalculate_stats(self, documents, today=None):
        """Rebuild the daily counters from (date, TodoDocument) pairs."""
        today = today or datetime.date.today()
        self.state['daily'] = {}
        for date, doc in documents:
            total, completed, uncompleted = doc.counts()
            self.update_daily_stats(date, total, completed, uncompleted, today=today, persist=False)
        self.save()
        return self.summary(today)

    def summary(self, today=None):
        today = today or datetime.date.today()
        days = {}
        for key, entry in self.daily.items():
            try:
                day = datetime.date.fromisoformat(key)
            except ValueError:
                continue
            if day <= today:
                days[day] = entry

        total = sum(e.get('total', 0) for e in days.values())
        completed = sum(e.get('completed', 0) for e in days.values())
        with_tasks = [d for d, e in days.items() if e.get('total', 0) > 0]
        perfect = {d for d, e in days.items() if e.get('total', 0) > 0 and e.get('uncompleted', 0) == 0}

        longest = run = 0
        prev = None
        for day in sorted(perfect):
            run = run + 1 if prev is not None and day - prev == datetime.timedelta(days=1) else 1
            longest = max(longest, run)
            prev = day

        # today may still be in progress: the streak can end yesterday
        cursor = today if today in perfect else today - datetime.timedelta(days=1)
        current = 0
        while cursor in perfect:
            current += 1
            cursor -= datetime.timedelta(days=1)

        return {
            'total_tasks_created': total,
            'total_tasks_completed': completed,
            'completion_rate': round(completed * 100.0 / total, 1) if total else 0.0,
            'current_streak': current,
            'longest_streak': longest,
            'average_tasks_per_day': round(total / len(with_tasks), 1) if with_tasks else 0.0,
            'total_days': len(days),
            'days_with_tasks': len(with_tasks),
            'perfect_days': len(perfect),
        }
