"""Git-backed remote replica for the working copy."""
import os
import subprocess

from .errors import VcsError, MergeConflict, NetworkError, RejectedNonFastForward
from .utils import Logger, FileUtils

_CONFLICT_MARKERS = ('CONFLICT', 'Automatic merge failed', 'not possible to fast-forward',
                     'unmerged files', 'You have not concluded your merge')
_REJECT_MARKERS = ('[rejected]', 'non-fast-forward', 'fetch first', 'Updates were rejected')
_NETWORK_MARKERS = ('Could not resolve host', 'unable to access', 'Connection refused',
                    'Connection timed out', 'Could not read from remote repository',
                    'Operation timed out', 'Network is unreachable')
_MISSING_REF_MARKERS = ("couldn't find remote ref", 'no such ref was fetched')

README_TEXT = "# Todo List\n\nDaily todo documents, organised as YEAR/MONTH/DAY.md.\n"


def classify_git_error(output):
    """Map git's stderr/stdout to the collaborator error it stands for."""
    if any(m in output for m in _CONFLICT_MARKERS):
        return MergeConflict
    if any(m in output for m in _REJECT_MARKERS):
        return RejectedNonFastForward
    if any(m in output for m in _NETWORK_MARKERS):
        return NetworkError
    return VcsError


class GitRepo:
    """Thin wrapper over the git CLI implementing the pull/push/commit contract."""

    def __init__(self, root, branch='main', remote='origin', timeout=120):
        self.root = os.path.abspath(str(root))
        self.branch = branch
        self.remote = remote
        self.timeout = timeout

    def _run(self, *args, check=True):
        env = dict(os.environ, GIT_TERMINAL_PROMPT='0', LC_ALL='C')
        try:
            result = subprocess.run(
                ["git", "-C", self.root, *args],
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise VcsError("Git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise NetworkError(f"git {args[0]} timed out after {self.timeout}s") from e

        if check and result.returncode != 0:
            output = f"{result.stderr}\n{result.stdout}".strip()
            error_cls = classify_git_error(output)
            raise error_cls(f"git {' '.join(args)} failed: {output}")
        return result

    # --- bootstrap ---

    def init(self, user_name, user_email, remote_url=None):
        os.makedirs(self.root, exist_ok=True)
        if not os.path.isdir(os.path.join(self.root, '.git')):
            self._run('init')
            self._run('symbolic-ref', 'HEAD', f'refs/heads/{self.branch}')
            Logger.info(f"Initialised repository at {self.root}")

        self._run('config', 'user.name', user_name)
        self._run('config', 'user.email', user_email)

        if self._run('rev-parse', '--verify', 'HEAD', check=False).returncode != 0:
            readme = os.path.join(self.root, 'README.md')
            if not os.path.exists(readme):
                FileUtils.write_file(readme, README_TEXT)
            self._run('add', '--', 'README.md')
            self._run('commit', '-m', 'Initialise repository')

        if remote_url:
            remotes = self._run('remote').stdout.split()
            if self.remote in remotes:
                self._run('remote', 'set-url', self.remote, remote_url)
            else:
                self._run('remote', 'add', self.remote, remote_url)

    def has_remote(self):
        return self.remote in self._run('remote').stdout.split()

    # --- replica operations ---

    def commit(self, paths, message):
        """Stage the given paths and commit; returns False when nothing changed."""
        if isinstance(paths, str):
            paths = [paths]
        self._run('add', '--', *paths)
        staged = self._run('diff', '--cached', '--quiet', check=False)
        if staged.returncode == 0:
            return False
        self._run('commit', '-m', message)
        return True

    def pull(self):
        try:
            self._run('pull', '--no-rebase', '--no-edit', self.remote, self.branch)
        except VcsError as e:
            # an empty remote has nothing to merge yet
            if not isinstance(e, MergeConflict) and any(m in str(e) for m in _MISSING_REF_MARKERS):
                Logger.debug(f"Remote branch {self.branch} not found, nothing to pull")
                return
            raise

    def push(self):
        self._run('push', self.remote, f'HEAD:refs/heads/{self.branch}')

    def list_conflict_files(self):
        output = self._run('diff', '--name-only', '--diff-filter=U').stdout
        return [line.strip() for line in output.splitlines() if line.strip()]

    def has_conflicts(self):
        return bool(self.list_conflict_files())

    def _show_stage(self, stage, path):
        result = self._run('show', f':{stage}:{path}', check=False)
        return result.stdout if result.returncode == 0 else ""

    def read_conflict_versions(self, path):
        """{'local', 'remote', 'working'} texts of a conflicted file."""
        working = FileUtils.read_content(os.path.join(self.root, path)) or ""
        return {
            'local': self._show_stage(2, path),
            'remote': self._show_stage(3, path),
            'working': working,
        }

    def write_resolved_conflict(self, path, content):
        if not FileUtils.write_file(os.path.join(self.root, path), content):
            raise VcsError(f"Cannot write resolved content for {path}")
        self._run('add', '--', path)

    def complete_merge(self, message):
        self._run('commit', '--no-edit', '-m', message)
