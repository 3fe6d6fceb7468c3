"""
Daily Sales Time Series

Buckets bills by their calendar date key and keeps a sliding window of the
latest distinct days.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import DefaultDict, Iterable, Tuple

from billing_analytics.aggregation.records import ZERO, TransactionRecord
from billing_analytics.aggregation.state import DailyBucket

DEFAULT_WINDOW_DAYS = 7


class TimeSeriesBucketer:
    """
    Sums bill totals per calendar day.

    The date key is supplied by the billing application and never derived from
    a timestamp. Truncation to the window is by date value, so the result does
    not depend on the order in which the feed delivered records.
    """

    def __init__(self, window_days: int = DEFAULT_WINDOW_DAYS):
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        self.window_days = window_days

    def bucket(self, transactions: Iterable[TransactionRecord]) -> Tuple[DailyBucket, ...]:
        totals: DefaultDict[str, Decimal] = defaultdict(lambda: ZERO)
        for bill in transactions:
            totals[bill.date_key] += bill.total

        ordered = sorted(totals.items(), key=lambda kv: date.fromisoformat(kv[0]))
        return tuple(
            DailyBucket(date_key=key, total=total)
            for key, total in ordered[-self.window_days:]
        )
