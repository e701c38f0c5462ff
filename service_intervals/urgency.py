"""Urgency enum for how close a vehicle is to its next service."""

from enum import Enum


class Urgency(Enum):
    """Urgency categories, listed most urgent first."""

    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    UPCOMING = "upcoming"
    OK = "ok"

    @property
    def rank(self) -> int:
        """Lower rank = more urgent."""
        return list(Urgency).index(self)
