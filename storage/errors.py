"""Ledger error taxonomy."""


class LedgerError(Exception):
    """Base class for ledger store failures."""


class SchemaError(LedgerError):
    """Creating the ledger tables failed. Fatal for any write path."""


class StoreUnavailable(LedgerError):
    """No backing store is configured or it cannot be opened."""


class SnapshotWriteFailure(LedgerError):
    """A portfolio snapshot could not be persisted."""
