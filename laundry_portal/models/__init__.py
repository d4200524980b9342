# Laundry Portal - Models Package

from laundry_portal.models.agent_preference import AgentPreference
from laundry_portal.models.booking_draft import BookingDraft

__all__ = [
    "AgentPreference",
    "BookingDraft",
]
