"""SQLite memory store with deduplication and decay, embedding providers, vector math, dependency graphs and structured logging."""

__version__ = "0.1.0"