"""
Custom exception hierarchy for the reconciliation engine.

Hierarchy:

    ReconciliationError (base)
    ├── OperationalError     - transient/retryable (exchange, network, timeouts)
    │   └── ExchangeStateError
    ├── PersistenceError     - local store or audit sink write failed
    └── ConfigurationError   - invalid configuration, refuse to start

Rules:
    - OperationalError: caught at the lookup, the factor becomes "unknown"
    - PersistenceError: caught per position during cleanup, reported
    - ConfigurationError: raised at startup, let it crash
    - Corrupt position data is NOT an exception: it is classification evidence.
"""


class ReconciliationError(Exception):
    """Base exception for all reconciliation engine errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(ReconciliationError):
    """Transient/retryable error: exchange API, network, timeouts.

    Treatment: degrade the affected factor to unknown, continue the pass.
    """
    pass


class ExchangeStateError(OperationalError):
    """Exchange holdings or order history could not be fetched."""
    pass


# ============ PERSISTENCE (store writes) ============

class PersistenceError(ReconciliationError):
    """Local position store or audit sink failed to read/write.

    Treatment: record per position in the cleanup report, continue the batch.
    """
    pass


# ============ CONFIGURATION ============

class ConfigurationError(ReconciliationError):
    """Configuration is invalid or inconsistent."""
    pass
