"""Sale period detection.

Segments an ordered observation history into the intervals during which the
variant was on sale (compare-at price strictly above price). Shared by the
reference-price, sale-duration and sale-frequency rules.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from forpris.compliance.errors import UnsortedHistoryError
from forpris.compliance.models import PriceObservation, SalePeriod


def ensure_sorted(observations: Sequence[PriceObservation]) -> None:
    """Raise UnsortedHistoryError unless timestamps are non-decreasing."""
    for previous, current in zip(observations, observations[1:]):
        if current.timestamp < previous.timestamp:
            raise UnsortedHistoryError(
                f"Observations out of order: {current.timestamp.isoformat()} "
                f"follows {previous.timestamp.isoformat()}"
            )


def detect_sale_periods(observations: Iterable[PriceObservation]) -> list[SalePeriod]:
    """
    Split an ascending observation history into sale periods.

    Args:
        observations: Observations sorted ascending by timestamp. The function
            does not sort; out-of-order input raises UnsortedHistoryError.

    Returns:
        Disjoint sale periods in chronological order. A sale still running at
        the last observation is returned with ``end`` set to that observation.
    """
    periods: list[SalePeriod] = []
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    previous_ts: Optional[datetime] = None

    for obs in observations:
        if previous_ts is not None and obs.timestamp < previous_ts:
            raise UnsortedHistoryError(
                f"Observations out of order: {obs.timestamp.isoformat()} "
                f"follows {previous_ts.isoformat()}"
            )
        previous_ts = obs.timestamp

        if obs.on_sale:
            if start is None:
                start = obs.timestamp
            end = obs.timestamp
        elif start is not None:
            periods.append(SalePeriod(start=start, end=end))
            start = end = None

    if start is not None:
        periods.append(SalePeriod(start=start, end=end))

    return periods


def current_sale_start(observations: Sequence[PriceObservation]) -> Optional[datetime]:
    """
    Start of the ongoing sale, or of the most recent sale if none is open.

    Returns None when the history contains no sale at all.
    """
    periods = detect_sale_periods(observations)
    if not periods:
        return None
    # The detector emits the open period last, so the last period is either
    # the ongoing sale or the most recent finished one.
    return periods[-1].start
