"""Shared fixtures."""

from pathlib import Path

import pytest

from vault_index.errors import HistoryError
from vault_index.indexer.models import FileChange

VAULT_ENV_VARS = (
    "VAULT_ROOT",
    "VAULT_INDEX_DIR",
    "VAULT_INDEX_DB",
    "VAULT_EMBEDDING_PROVIDER",
    "VAULT_EMBEDDING_MODEL",
    "VAULT_EMBEDDING_URL",
    "VAULT_EMBEDDING_DIMENSION",
    "VAULT_MAX_TOKENS",
    "VAULT_OVERLAP_TOKENS",
    "VAULT_BATCH_SIZE",
    "VAULT_MAX_CONCURRENCY",
    "VAULT_MAX_CHANGED_FILES",
    "VAULT_SYNC_INTERVAL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's VAULT_* variables out of the tests."""
    for name in VAULT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeHistory:
    """In-memory HistoryProvider."""

    def __init__(self, snapshot: str = "c1"):
        self.snapshot = snapshot
        self.uncommitted: list[FileChange] = []
        self.diffs: dict[tuple[str, str], list[FileChange]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise HistoryError("simulated history failure")

    def current_snapshot_id(self) -> str:
        self._check()
        return self.snapshot

    def is_clean(self) -> bool:
        self._check()
        return not self.uncommitted

    def uncommitted_changes(self) -> list[FileChange]:
        self._check()
        return list(self.uncommitted)

    def diff_between(self, from_id: str, to_id: str) -> list[FileChange]:
        self._check()
        return list(self.diffs.get((from_id, to_id), []))


@pytest.fixture
def fake_history() -> FakeHistory:
    return FakeHistory()


def write_note(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """A small vault with three notes and some noise."""
    root = tmp_path / "vault"
    write_note(
        root,
        "projects/alpha.md",
        "---\ntitle: Project Alpha\ntags: [project/alpha]\nstatus: active\n---\n\n"
        "# Alpha\n\nAlpha links to [[Beta Notes]] and is tagged #work.\n\n"
        "## Tasks\n\n- write code\n- review code\n",
    )
    write_note(
        root,
        "beta.md",
        "# Beta Notes\n\nSome plain prose about beta.\n\n```python\nprint('beta')\n```\n",
    )
    write_note(root, "journal/2024-01-15.md", "Quick note without a heading.\n")
    write_note(root, ".obsidian/workspace.md", "# Editor state\n")
    write_note(root, "attachments/readme.txt", "not a note\n")
    return root
