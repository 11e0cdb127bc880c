"""Event correlation: SQL heuristics, transaction ids, query/lifecycle pairing."""

from .correlator import OperationCorrelator, PendingQuery, correlation_key
from .transactions import TransactionTracker

__all__ = [
    "OperationCorrelator",
    "PendingQuery",
    "TransactionTracker",
    "correlation_key",
]
