"""Exception hierarchy for the billing analytics engine.

All exceptions inherit from BillingAnalyticsError so callers can catch any
engine failure in one place. None of them is fatal to the host process: the
engine degrades to stale-but-available data instead.
"""

from typing import Any, Dict, List, Optional


class BillingAnalyticsError(Exception):
    """Base exception for all billing analytics errors."""

    def __init__(self, message: str, *args):
        self.message = message
        super().__init__(message, *args)


class FeedUnavailable(BillingAnalyticsError):
    """Raised when a change feed subscription is lost or cannot be established.

    Readers of ``AggregationEngine.get_snapshot()`` never see this exception;
    they receive the last good snapshot flagged as stale.
    """

    def __init__(self, message: str, collection: Optional[str] = None):
        self.collection = collection
        super().__init__(message)


class MalformedRecord(BillingAnalyticsError):
    """Raised when a record lacks a required numeric or date field.

    The offending record is skipped from aggregation; the rest of the pass
    proceeds.
    """

    def __init__(
        self,
        message: str,
        collection: str,
        record_id: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.collection = collection
        self.record_id = record_id
        self.errors = errors or []
        super().__init__(message)


class QueryFailure(BillingAnalyticsError):
    """Raised to the caller of a one-shot refresh when a point query fails.

    The cached snapshot remains valid and available.
    """

    def __init__(self, message: str, query: Optional[str] = None):
        self.query = query
        super().__init__(message)
