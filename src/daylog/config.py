import os


class Config:
    # --- [CORE] working copy root ---
    VAULT_ROOT = os.path.join(os.path.expanduser('~'), 'daylog')

    # --- remote replica ---
    REMOTE_URL = None
    BRANCH = 'main'
    USER_NAME = 'daylog'
    USER_EMAIL = 'daylog@localhost'

    # --- document layout ---
    TITLE_PENDING = '## Todo'
    TITLE_COMPLETED = '## Done'
    TITLE_NOTES = '## Notes'
    INDENT_WIDTH = 2
    ATTACHMENT_DIR = 'assets'

    # --- timing (seconds) ---
    DEBOUNCE_SECONDS = 1.5
    IDLE_SAVE_SECONDS = 30
    # long typing sessions never go idle; force a flush after this much unsaved time
    MAX_UNSAVED_SECONDS = 120
    IDLE_POLL_SECONDS = 5
    SYNC_INTERVAL_SECONDS = 300
    STARTUP_PULL_DELAY = 2
    FLUSH_TIMEOUT_SECONDS = 5

    DEBUG_MODE = False

    def __init__(self, vault_root=None, **overrides):
        if vault_root:
            self.VAULT_ROOT = os.path.abspath(os.path.expanduser(str(vault_root)))
        for key, value in overrides.items():
            if not hasattr(Config, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

        # State + lock files live next to the documents but outside YYYY/ dirs
        self.STATE_FILE = os.path.join(self.VAULT_ROOT, '.daylog_state.json')
        self.LOCK_FILE = os.path.join(self.VAULT_ROOT, '.daylog.lock')

    @property
    def section_titles(self):
        return {
            'pending': self.TITLE_PENDING,
            'completed': self.TITLE_COMPLETED,
            'notes': self.TITLE_NOTES,
        }

    @classmethod
    def from_env(cls, **overrides):
        """Build a config from DAYLOG_* environment variables."""
        env_map = {
            'REMOTE_URL': os.getenv('DAYLOG_REMOTE_URL'),
            'USER_NAME': os.getenv('DAYLOG_USER_NAME'),
            'USER_EMAIL': os.getenv('DAYLOG_USER_EMAIL'),
            'BRANCH': os.getenv('DAYLOG_BRANCH'),
        }
        settings = {k: v for k, v in env_map.items() if v}
        debug = os.getenv('DAYLOG_DEBUG')
        if debug:
            settings['DEBUG_MODE'] = debug.lower() in ('1', 'true', 'yes', 'on')
        settings.update(overrides)
        return cls(os.getenv('DAYLOG_ROOT'), **settings)
