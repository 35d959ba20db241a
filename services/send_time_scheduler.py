"""
Gateway-legal send time computation.

The Gateway only accepts send times at least an hour ahead, on a ten minute
boundary, with no seconds.
"""

from datetime import datetime, timedelta
from typing import Optional

from utils.datetime_utils import ensure_utc, utc_now

MINIMUM_LEAD_TIME = timedelta(hours=1)
SLOT_MINUTES = 10


def legalize_send_time(requested: Optional[datetime], now: datetime,
                       lead: timedelta = MINIMUM_LEAD_TIME,
                       slot_minutes: int = SLOT_MINUTES) -> datetime:
    """
    Compute the send time to hand to the Gateway.

    Takes the later of the requested time and now + lead, then rounds up to the
    next slot boundary. Naive datetimes are treated as UTC. Never raises.

    Example:
        now 11:13:45, nothing requested -> 12:20:00
        now 11:00:00, requested 14:20:00 -> 14:20:00
    """
    now = ensure_utc(now)
    bound = now + lead
    candidate = bound if requested is None else max(ensure_utc(requested), bound)

    slot = timedelta(minutes=slot_minutes)
    result = candidate.replace(minute=candidate.minute - candidate.minute % slot_minutes,
                               second=0, microsecond=0)
    if result < candidate:
        result += slot
    # Rounding only ever moves forward; keep the lead guarantee explicit anyway
    while result < bound:
        result += slot
    return result


def reusable_send_time(stored: Optional[datetime], now: datetime,
                       lead: timedelta = MINIMUM_LEAD_TIME) -> Optional[datetime]:
    """
    Return a previously computed send time if it is still legal.

    A retry of the same registration presents the same time to the user and to
    the Gateway; only a time that has since fallen inside the lead window is
    recomputed.
    """
    if stored is None:
        return None
    stored = ensure_utc(stored)
    if stored < ensure_utc(now) + lead:
        return None
    return stored


class SendTimeScheduler:
    """Injectable wrapper so the orchestrator can be tested with a fixed clock."""

    def __init__(self, clock=None, lead: timedelta = MINIMUM_LEAD_TIME):
        self.clock = clock or utc_now
        self.lead = lead

    def schedule(self, requested: Optional[datetime], stored: Optional[datetime] = None) -> datetime:
        now = self.clock()
        return reusable_send_time(stored, now, self.lead) or legalize_send_time(requested, now, self.lead)
