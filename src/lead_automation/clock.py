"""
Controllable clock for simulations and tests
"""
from datetime import datetime, timedelta
from typing import Optional

from .models.workflow import utcnow


class ManualClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments"""
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def advance_to(self, moment: datetime) -> datetime:
        if moment > self.now:
            self.now = moment
        return self.now
