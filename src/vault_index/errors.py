"""Exception types raised by the indexing pipeline."""


class VaultIndexError(Exception):
    """Base class for vault-index errors."""


class HistoryError(VaultIndexError):
    """A version-control query failed or returned output we cannot parse."""


class StorageError(VaultIndexError):
    """A chunk store operation failed."""


class EmbeddingError(VaultIndexError):
    """The embedding provider rejected a request."""


class ProviderUnavailableError(VaultIndexError):
    """The chunk store or embedding provider cannot be reached.

    This is run-fatal: the orchestrator stops after the current batch and
    the version snapshot is not advanced.
    """
