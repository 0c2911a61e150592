"""Presence calculation over membership intervals."""

from datetime import date
from typing import Optional

from rotafair.domain.models import Entity


class PresenceCalculator:
    """Converts membership intervals into elapsed-day figures.

    All methods are pure: entities are never modified and results depend only
    on the arguments.
    """

    def days_present(self, entity: Entity, reference_date: date) -> int:
        """Total days of membership up to a reference date.

        Intervals starting after the reference date are ignored. Open
        intervals are clipped at the reference date, closed ones at the
        earlier of their end and the reference date.

        Args:
            entity: Entity to measure.
            reference_date: Date the presence is measured at.

        Returns:
            Elapsed days, never negative.
        """
        total = 0
        for interval in entity.membership_intervals:
            if interval.start > reference_date:
                continue
            end = reference_date
            if interval.end is not None and interval.end < reference_date:
                end = interval.end
            total += max(0, (end - interval.start).days)
        return total

    def days_present_between(
        self, entity: Entity, since: Optional[date], until: date
    ) -> int:
        """Days of membership accrued inside a window.

        Args:
            entity: Entity to measure.
            since: Window start, or None for "since the beginning".
            until: Window end (the reference date).

        Returns:
            Elapsed days inside the window, never negative.
        """
        if since is None:
            return self.days_present(entity, until)
        return max(
            0, self.days_present(entity, until) - self.days_present(entity, since)
        )

    def is_active(self, entity: Entity, day: date) -> bool:
        """Check whether some membership interval contains the date."""
        return any(
            interval.contains(day) for interval in entity.membership_intervals
        )

    def active_entities(self, entities: list[Entity], day: date) -> list[Entity]:
        """Filter entities down to those active on a date, keeping order."""
        return [entity for entity in entities if self.is_active(entity, day)]
