"""Git-backed history provider.

Only three queries are needed: the current commit, the working-tree
status, and the name-status diff between two commits. Output parsing is
kept in pure functions so it can be tested without a repository.
"""

import logging
from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from vault_index.errors import HistoryError
from vault_index.indexer.models import ChangeStatus, FileChange

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30.0

NAME_STATUS_CODES: dict[str, ChangeStatus] = {
    "A": "added",
    "C": "added",
    "M": "modified",
    "T": "modified",
    "D": "deleted",
    "R": "renamed",
}


def _unquote(path: str) -> str:
    path = path.strip()
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        return path[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return path


def parse_porcelain_status(output: str) -> list[FileChange]:
    """
    Parse ``git status --porcelain`` (v1) output.

    ``??`` and ``A`` entries are additions, ``R`` entries carry
    ``old -> new``, ``D`` anywhere in the two-letter code is a deletion and
    everything else counts as a modification.
    """
    changes: list[FileChange] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code, rest = line[:2], line[3:]
        if code == "??":
            changes.append(FileChange(_unquote(rest), "added"))
        elif "R" in code and " -> " in rest:
            old, new = rest.split(" -> ", 1)
            changes.append(FileChange(_unquote(new), "renamed", old_path=_unquote(old)))
        elif "D" in code:
            changes.append(FileChange(_unquote(rest), "deleted"))
        elif "A" in code:
            changes.append(FileChange(_unquote(rest), "added"))
        else:
            changes.append(FileChange(_unquote(rest), "modified"))
    return changes


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status`` output (tab separated)."""
    changes: list[FileChange] = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0]:
            continue
        status = NAME_STATUS_CODES.get(parts[0][0])
        if status is None:
            logger.debug("Ignoring unknown diff status line: %s", line)
            continue
        if parts[0][0] in "RC" and len(parts) >= 3:
            if status == "renamed":
                changes.append(
                    FileChange(_unquote(parts[2]), "renamed", old_path=_unquote(parts[1]))
                )
            else:
                changes.append(FileChange(_unquote(parts[2]), status))
        else:
            changes.append(FileChange(_unquote(parts[1]), status))
    return changes


class GitHistory:
    """HistoryProvider backed by a GitPython ``Repo``.

    Paths are reported relative to ``repo_path``, which may be a
    subdirectory of the work tree; changes outside it are dropped.
    """

    def __init__(self, repo_path: Path, timeout: float = GIT_TIMEOUT):
        self.repo_path = repo_path
        self.timeout = timeout
        try:
            self.repo = Repo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise HistoryError(f"Not a git repository: {repo_path}") from e
        if self.repo.working_tree_dir is None:
            raise HistoryError(f"Bare repository has no work tree: {repo_path}")
        self._prefix = self._vault_prefix()

    @classmethod
    def discover(cls, path: Path) -> "GitHistory | None":
        """Return a provider when ``path`` is inside a git work tree."""
        try:
            return cls(path)
        except HistoryError as e:
            logger.info("%s, change detection uses content hashes", e)
            return None

    def _vault_prefix(self) -> str:
        root = Path(self.repo.working_tree_dir).resolve()
        relative = Path(self.repo_path).resolve().relative_to(root).as_posix()
        return "" if relative == "." else relative + "/"

    def _run(self, command: str, *args: str) -> str:
        try:
            # Non-ASCII paths come back verbatim instead of octal-escaped
            git = self.repo.git(c="core.quotepath=false")
            return getattr(git, command)(*args, kill_after_timeout=self.timeout)
        except GitCommandError as e:
            raise HistoryError(
                f"git {command} failed: {str(e.stderr).strip() or e.status}"
            ) from e

    def _relative(self, changes: list[FileChange]) -> list[FileChange]:
        prefix = self._prefix
        if not prefix:
            return changes

        relative: list[FileChange] = []
        for change in changes:
            if not change.path.startswith(prefix):
                if change.old_path and change.old_path.startswith(prefix):
                    # Moved out of the vault
                    relative.append(FileChange(change.old_path[len(prefix) :], "deleted"))
                continue
            old_path = change.old_path
            if old_path is not None:
                old_path = old_path[len(prefix) :] if old_path.startswith(prefix) else None
            if change.status == "renamed" and old_path is None:
                # Moved in from outside the vault
                relative.append(FileChange(change.path[len(prefix) :], "added"))
                continue
            relative.append(
                FileChange(change.path[len(prefix) :], change.status, old_path=old_path)
            )
        return relative

    def current_snapshot_id(self) -> str:
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            # Unborn branch: nothing committed yet
            raise HistoryError(f"No commits in {self.repo.working_tree_dir}") from e

    def is_clean(self) -> bool:
        return not self.uncommitted_changes()

    def uncommitted_changes(self) -> list[FileChange]:
        output = self._run("status", "--porcelain", "--untracked-files=all")
        return self._relative(parse_porcelain_status(output))

    def diff_between(self, from_id: str, to_id: str) -> list[FileChange]:
        output = self._run("diff", "--name-status", "-M", f"{from_id}..{to_id}")
        return self._relative(parse_name_status(output))
