"""Configuration module for vault-index.

Loads configuration from environment variables with sensible defaults.
Components never read the environment themselves; they receive the
relevant config object through their constructor.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

# Replaced with "-" in wiki-link targets. "<", ">", '"' and ":" are legal in
# note names and are kept.
DEFAULT_LINK_UNSAFE_CHARS = "\\*?"

CHUNKING_STRATEGIES = ("header", "fixed")
EMBEDDING_PROVIDERS = ("hash", "http")


@dataclass
class ChunkingConfig:
    """How notes are cut into chunks."""

    strategy: str = "header"
    max_tokens: int = 512
    overlap_tokens: int = 50
    split_by_headers: bool = True
    split_by_paragraphs: bool = True
    include_headers: bool = True
    preserve_code_blocks: bool = True
    preserve_tables: bool = True
    preserve_callouts: bool = True
    token_estimator: str = "simple"
    chars_per_token: float = 4.0
    min_preserved_length: int = 10
    preserved_ratio: float = 0.2

    def __post_init__(self) -> None:
        if self.strategy not in CHUNKING_STRATEGIES:
            raise ValueError(
                f"Chunking strategy must be one of {CHUNKING_STRATEGIES}, got '{self.strategy}'"
            )
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if not 0 <= self.overlap_tokens < self.max_tokens:
            raise ValueError(
                f"overlap_tokens must be between 0 and max_tokens, got {self.overlap_tokens}"
            )

    @property
    def preserved_kinds(self) -> frozenset[str]:
        kinds = {"math", "image"}
        if self.preserve_code_blocks:
            kinds.add("code")
        if self.preserve_tables:
            kinds.add("table")
        if self.preserve_callouts:
            kinds.add("callout")
        return frozenset(kinds)


@dataclass
class IndexingConfig:
    """How a vault is walked and pushed to the store."""

    batch_size: int = 10
    max_concurrency: int = 3
    abort_on_error: bool = False
    max_changed_files: int = 100
    file_extensions: tuple[str, ...] = (".md", ".markdown")
    exclude_dirs: tuple[str, ...] = (".git", ".obsidian", ".trash", "node_modules")
    max_file_size: int = 10 * 1024 * 1024
    custom_fields: tuple[str, ...] = ()
    delete_batch_size: int = 50
    link_unsafe_chars: str = DEFAULT_LINK_UNSAFE_CHARS

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_concurrency <= 0:
            raise ValueError(f"max_concurrency must be positive, got {self.max_concurrency}")
        if self.max_changed_files <= 0:
            raise ValueError(
                f"max_changed_files must be positive, got {self.max_changed_files}"
            )


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    value_str = os.getenv(name, str(default))
    try:
        value = int(value_str)
        if value < minimum:
            raise ValueError(f"must be at least {minimum}, got {value}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{value_str}': {e}") from e
    return value


@dataclass
class Config:
    """Application configuration."""

    vault_root: Path
    state_dir: Path
    db_path: Path
    embedding_provider: str = "hash"
    embedding_model: str = "nomic-embed-text"
    embedding_url: str = "http://localhost:11434"
    embedding_dimension: int = 384
    sync_interval: int = 300
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)

    @classmethod
    def from_env(cls, vault_root: Path | None = None) -> "Config":
        """Load configuration from environment variables.

        Args:
            vault_root: If provided, overrides the VAULT_ROOT env var.
        """
        if vault_root is None:
            vault_root = Path(os.getenv("VAULT_ROOT", ".")).expanduser()
        vault_root = vault_root.expanduser()

        default_state = str(vault_root / ".vault-index")
        state_dir = Path(os.getenv("VAULT_INDEX_DIR", default_state)).expanduser()
        db_path = Path(
            os.getenv("VAULT_INDEX_DB", str(state_dir / "chunks.db"))
        ).expanduser()

        embedding_provider = os.getenv("VAULT_EMBEDDING_PROVIDER", "hash").lower()
        if embedding_provider not in EMBEDDING_PROVIDERS:
            raise ValueError(
                f"Invalid VAULT_EMBEDDING_PROVIDER value '{embedding_provider}': "
                f"expected one of {EMBEDDING_PROVIDERS}"
            )

        max_tokens = _env_int("VAULT_MAX_TOKENS", 512)
        overlap_tokens = _env_int("VAULT_OVERLAP_TOKENS", 50, minimum=0)
        if overlap_tokens >= max_tokens:
            raise ValueError(
                f"VAULT_OVERLAP_TOKENS ({overlap_tokens}) must be smaller than "
                f"VAULT_MAX_TOKENS ({max_tokens})"
            )

        return cls(
            vault_root=vault_root,
            state_dir=state_dir,
            db_path=db_path,
            embedding_provider=embedding_provider,
            embedding_model=os.getenv("VAULT_EMBEDDING_MODEL", "nomic-embed-text"),
            embedding_url=os.getenv("VAULT_EMBEDDING_URL", "http://localhost:11434"),
            embedding_dimension=_env_int("VAULT_EMBEDDING_DIMENSION", 384),
            sync_interval=_env_int("VAULT_SYNC_INTERVAL", 300),
            chunking=ChunkingConfig(max_tokens=max_tokens, overlap_tokens=overlap_tokens),
            indexing=IndexingConfig(
                batch_size=_env_int("VAULT_BATCH_SIZE", 10),
                max_concurrency=_env_int("VAULT_MAX_CONCURRENCY", 3),
                max_changed_files=_env_int("VAULT_MAX_CHANGED_FILES", 100),
            ),
        )
