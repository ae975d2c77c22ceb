import os
import re
import datetime

from .errors import IoFailure
from .utils import Logger, FileUtils

_YEAR_RE = re.compile(r'^\d{4}$')
_MONTH_RE = re.compile(r'^\d{2}$')
_DAY_FILE_RE = re.compile(r'^(\d{2})\.md$')


class DocumentStore:
    """
    Local working copy of the daily documents.
    One file per day at <root>/YYYY/MM/DD.md; attachments are referenced
    relative to that file's directory and live in its attachment dir
    (e.g. assets/12-photo.png).
    """

    def __init__(self, root, attachment_dir='assets'):
        self.root = os.path.abspath(str(root))
        self.attachment_dir = attachment_dir

    def relative_path(self, date):
        return f"{date.year:04d}/{date.month:02d}/{date.day:02d}.md"

    def path_for(self, date):
        return os.path.join(self.root, *self.relative_path(date).split('/'))

    def read_document(self, date):
        """Stored text for the date, or None when no document exists."""
        path = self.path_for(date)
        try:
            return FileUtils.read_content(path)
        except OSError as e:
            raise IoFailure(f"Cannot read {path}: {e}") from e

    def write_document(self, date, text):
        path = self.path_for(date)
        if not FileUtils.write_file(path, text):
            raise IoFailure(f"Cannot write {path}")
        Logger.debug(f"[WRITE] {self.relative_path(date)}")

    def delete_attachments(self, date, paths):
        """
        Best-effort removal of attachment files; returns the paths removed.
        Only files inside the document's attachment dir are touched, other
        links in a note (sibling documents, files elsewhere) are left alone.
        """
        base = os.path.dirname(self.path_for(date))
        attachments = os.path.join(base, self.attachment_dir)
        removed = []
        for rel in paths:
            target = os.path.normpath(os.path.join(base, rel))
            # never leave the working copy
            if os.path.commonpath([self.root, target]) != self.root:
                Logger.error_once(f"attach_escape_{target}", f"Attachment outside vault skipped: {rel}")
                continue
            if os.path.commonpath([attachments, target]) != attachments:
                Logger.debug(f"Not an attachment, kept: {rel}")
                continue
            try:
                os.remove(target)
                removed.append(rel)
            except FileNotFoundError:
                continue
            except OSError as e:
                Logger.error_once(f"attach_rm_{target}", f"Attachment cleanup failed {rel}: {e}")
        return removed

    def list_dates(self):
        """Dates of all stored documents, oldest first."""
        dates = []
        if not os.path.isdir(self.root):
            return dates
        for year in sorted(os.listdir(self.root)):
            year_dir = os.path.join(self.root, year)
            if not _YEAR_RE.match(year) or not os.path.isdir(year_dir):
                continue
            for month in sorted(os.listdir(year_dir)):
                month_dir = os.path.join(year_dir, month)
                if not _MONTH_RE.match(month) or not os.path.isdir(month_dir):
                    continue
                for name in sorted(os.listdir(month_dir)):
                    m = _DAY_FILE_RE.match(name)
                    if not m:
                        continue
                    try:
                        dates.append(datetime.date(int(year), int(month), int(m.group(1))))
                    except ValueError:
                        Logger.debug(f"Not a calendar date, skipped: {year}/{month}/{name}")
        return dates
