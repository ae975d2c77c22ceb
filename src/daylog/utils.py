import os
import datetime
import tempfile
import hashlib

# fcntl is Unix/macOS only
try:
    import fcntl
except ImportError:
    fcntl = None


class Logger:
    _shown_errors = set()
    debug_enabled = False

    @staticmethod
    def error_once(key, message):
        if key not in Logger._shown_errors:
            print(f"\033[91m[ERROR] {message}\033[0m")
            Logger._shown_errors.add(key)

    @staticmethod
    def reset_errors(prefix=None):
        """Forget shown error keys so a recovered failure can be reported again."""
        if prefix is None:
            Logger._shown_errors.clear()
        else:
            Logger._shown_errors = {k for k in Logger._shown_errors if not k.startswith(prefix)}

    @staticmethod
    def info(message, date_tag=None):
        # [FEATURE] Focused Logging: only today's document is chatty
        t = datetime.datetime.now().strftime('%H:%M:%S')
        today_str = datetime.date.today().isoformat()

        if date_tag and date_tag != today_str:
            return

        prefix = f"[{date_tag}] " if date_tag else ""
        print(f"\033[92m[{t} INFO] {prefix}{message}\033[0m")

    @staticmethod
    def warning(message):
        t = datetime.datetime.now().strftime('%H:%M:%S')
        print(f"\033[93m[{t} WARN] {message}\033[0m")

    @staticmethod
    def debug(message):
        if Logger.debug_enabled:
            print(f"\033[90m[DEBUG] {message}\033[0m")

    @staticmethod
    def debug_block(title, lines):
        if Logger.debug_enabled:
            print(f"\033[96m--- [DEBUG] {title} ---\033[0m")
            for line in lines:
                print(f"  | {line.rstrip()}")
            print(f"\033[96m-----------------------\033[0m")


class FileUtils:
    @staticmethod
    def calculate_hash(content: str) -> str:
        """Fast MD5 hash for content identity."""
        if content is None:
            content = ""
        return hashlib.md5(content.encode('utf-8')).hexdigest()

    @staticmethod
    def read_content(filepath):
        """Return the file text, or None when it does not exist."""
        if not os.path.exists(filepath):
            return None
        with open(filepath, 'r', encoding='utf-8', errors='replace', newline='') as f:
            return f.read()

    @staticmethod
    def write_file(filepath, content):
        # [ATOMIC] tempfile + os.replace so a crash never leaves half a document
        dir_name = os.path.dirname(filepath) or '.'
        temp_name = None

        try:
            os.makedirs(dir_name, exist_ok=True)
            # newline='' keeps LF on every platform
            with tempfile.NamedTemporaryFile('w', dir=dir_name, delete=False,
                                             encoding='utf-8', newline='') as tf:
                temp_name = tf.name
                tf.write(content or "")
                tf.flush()
                os.fsync(tf.fileno())

            os.replace(temp_name, filepath)
            return True

        except OSError as e:
            Logger.error_once(f"write_{filepath}", f"Write failed {filepath}: {e}")
            if temp_name and os.path.exists(temp_name):
                try:
                    os.remove(temp_name)
                except OSError:
                    pass
            return False


class ProcessLock:
    """Exclusive lock on the working copy, one engine per vault."""

    def __init__(self, lock_file):
        self.lock_file = lock_file
        self._lock_fd = None

    def acquire(self):
        if not fcntl:
            return True
        try:
            os.makedirs(os.path.dirname(self.lock_file) or '.', exist_ok=True)
            self._lock_fd = os.open(self.lock_file, os.O_CREAT | os.O_RDWR)
            fcntl.flock(self._lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)

            # holder PID for diagnostics
            os.ftruncate(self._lock_fd, 0)
            os.write(self._lock_fd, str(os.getpid()).encode())
            return True
        except OSError:
            if self._lock_fd is not None:
                try:
                    os.close(self._lock_fd)
                except OSError:
                    pass
                self._lock_fd = None
            return False

    def read_pid(self):
        """PID of the current holder, if it wrote one."""
        try:
            with open(self.lock_file, 'r') as f:
                content = f.read().strip()
        except OSError:
            return None
        return int(content) if content.isdigit() else None

    def release(self):
        if self._lock_fd is not None:
            if fcntl:
                fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
            os.close(self._lock_fd)
            self._lock_fd = None
            try:
                os.remove(self.lock_file)
            except OSError:
                pass

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
