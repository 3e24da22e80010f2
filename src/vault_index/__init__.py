"""vault-index - incremental chunk indexing for Markdown vaults."""

__version__ = "0.1.0"
