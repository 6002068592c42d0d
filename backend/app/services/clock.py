"""
Horloge injectable du moteur de présence.

La date d'une présence est toujours la date *locale* de la cantine
(fuseau MESS_TIMEZONE), jamais une date UTC tronquée : un scan à 23h55
heure locale est enregistré sur ce jour-là, pas sur le lendemain UTC.
"""

from datetime import date, datetime, time, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.config import settings


class Clock:
    def __init__(self, tz_name: str, now_fn: Optional[Callable[[], datetime]] = None):
        self.tz = ZoneInfo(tz_name)
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        """Instant courant, exprimé dans le fuseau de la cantine."""
        return self._to_local(self._now_fn())

    def local_date(self, instant: Optional[datetime] = None) -> date:
        return self._to_local(instant or self._now_fn()).date()

    def local_time(self, instant: Optional[datetime] = None) -> time:
        return self._to_local(instant or self._now_fn()).time()

    def _to_local(self, instant: datetime) -> datetime:
        # Un datetime naïf est considéré comme déjà exprimé en heure locale
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self.tz)
        return instant.astimezone(self.tz)


def get_clock() -> Clock:
    """Dépendance FastAPI : horloge réelle dans le fuseau configuré."""
    return Clock(settings.MESS_TIMEZONE)
