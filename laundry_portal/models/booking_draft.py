"""
Laundry Portal - Booking Draft Model

Server-side holder of one customer's in-progress booking wizard. The row
is transient UI state: it is created when the wizard opens, deleted when
it closes, and purged once stale.
"""

import json
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from laundry_portal.database import Base
from laundry_portal.timestamps import now_utc


class BookingDraft(Base):
    """An open booking wizard, keyed by the id in the draft cookie."""

    __tablename__ = "booking_drafts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # Serialized wizard state (BookingState JSON)
    state_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, onupdate=now_utc, index=True)

    def __repr__(self) -> str:
        return f"<BookingDraft {self.id}>"

    @property
    def state_dict(self) -> dict:
        try:
            return json.loads(self.state_json or "{}")
        except ValueError:
            return {}
