"""Local persistence for stake attempts."""

from solstake.storage.sqlite import SQLiteOperationStore

__all__ = ["SQLiteOperationStore"]
