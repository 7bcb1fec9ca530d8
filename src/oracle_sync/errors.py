"""
Exception classes for oracle-sync.

Every error carries a short machine readable ``code`` next to its message so
task memory and status logs can report failures without string matching.
"""


class OracleSyncError(Exception):
    """Base exception for oracle-sync operations"""
    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or "ORACLE_SYNC_ERROR"


class NotFoundError(OracleSyncError, LookupError):
    """A store lookup was made before the data was fetched"""
    def __init__(self, message: str):
        super().__init__(message, "NOT_FOUND")


class TransientFetchError(OracleSyncError):
    """A chain access call failed in a way that may succeed on retry"""
    def __init__(self, message: str, chain_id: int | None = None):
        super().__init__(message, "TRANSIENT_FETCH")
        self.chain_id = chain_id


class FatalConfigError(OracleSyncError, ValueError):
    """Malformed workflow parameters or a missing required selection"""
    def __init__(self, message: str):
        super().__init__(message, "FATAL_CONFIG")


class TransactionFailedError(OracleSyncError):
    """A submitted transaction was mined but reverted"""
    def __init__(self, tx_hash: str, message: str = "Transaction reverted"):
        super().__init__(f"{message}: {tx_hash}", "TX_FAILED")
        self.tx_hash = tx_hash


class TransactionTimeoutError(OracleSyncError):
    """A submitted transaction was not confirmed within its check budget"""
    def __init__(self, tx_hash: str, checks: int):
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {checks} checks",
            "TX_TIMEOUT"
        )
        self.tx_hash = tx_hash
        self.checks = checks
