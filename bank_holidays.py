from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Set

import holidays

from config import HOLIDAY_COUNTRY, HOLIDAY_SUBDIV
from errors import HolidayLookupError, InvalidInput

logger = logging.getLogger("workhours.holidays")


class PublicHolidays:
    """Public holidays of one fixed jurisdiction (country + optional subdivision)."""

    def __init__(self, country: str = HOLIDAY_COUNTRY, subdiv: Optional[str] = HOLIDAY_SUBDIV):
        self.country = country
        self.subdiv = subdiv

    def holidays_in_range(self, from_date: date, to_date: date) -> Set[date]:
        """Holiday dates in [from_date, to_date], both inclusive."""
        if from_date > to_date:
            raise InvalidInput("from must not be after to")

        years = range(from_date.year, to_date.year + 1)
        try:
            calendar = holidays.country_holidays(self.country, subdiv=self.subdiv, years=years)
        except (NotImplementedError, KeyError, ValueError) as e:
            logger.error("holiday lookup failed for %s-%s: %s", self.country, self.subdiv, e)
            raise HolidayLookupError(f"No holiday calendar for {self.country}/{self.subdiv}") from e

        return {d for d in calendar.keys() if from_date <= d <= to_date}
