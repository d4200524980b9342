"""
Laundry Portal - Agent Preference Model

Notification and appearance choices a support agent saves on the settings
page. The backend keeps no such settings, so the portal stores them.
"""

import json
from datetime import datetime

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from laundry_portal.database import Base
from laundry_portal.timestamps import now_utc


class AgentPreference(Base):
    """Saved settings of one support agent, keyed by the backend user id."""

    __tablename__ = "agent_preferences"

    agent_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Serialized AgentPreferences JSON
    preferences_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, onupdate=now_utc)

    def __repr__(self) -> str:
        return f"<AgentPreference {self.agent_id}>"

    @property
    def preferences_dict(self) -> dict:
        try:
            return json.loads(self.preferences_json or "{}")
        except ValueError:
            return {}
