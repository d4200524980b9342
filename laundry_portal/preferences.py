"""
Laundry Portal - Support Agent Preferences

Settings page of the support desk: notification toggles and appearance
choices, stored per agent in the portal database.
"""

import json
import logging
from typing import Literal, Mapping

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from laundry_portal.errors import FormValidationError
from laundry_portal.models import AgentPreference

logger = logging.getLogger(__name__)

THEMES = (("light", "Light"), ("dark", "Dark"), ("system", "System"))
LANGUAGES = (("en", "English"), ("hi", "Hindi"))

# Checkbox field -> label, in page order
CHANNEL_OPTIONS = (
    ("email_notifications", "Email notifications"),
    ("push_notifications", "Push notifications"),
    ("sound_enabled", "Sound alerts"),
)
EVENT_OPTIONS = (
    ("ticket_assigned", "A ticket is assigned to me"),
    ("ticket_updated", "A ticket I'm working on is updated"),
    ("new_message", "I receive a new chat message"),
    ("daily_digest", "Daily summary digest"),
)

SETTINGS_TABS = (("profile", "Profile"), ("notifications", "Notifications"), ("appearance", "Appearance"))


class AgentPreferences(BaseModel):
    email_notifications: bool = True
    push_notifications: bool = True
    sound_enabled: bool = True
    ticket_assigned: bool = True
    ticket_updated: bool = True
    new_message: bool = True
    daily_digest: bool = False

    theme: Literal["light", "dark", "system"] = "light"
    language: Literal["en", "hi"] = "en"
    compact_mode: bool = False


def parse_preferences_form(form: Mapping[str, str], current: AgentPreferences, tab: str) -> AgentPreferences:
    """
    Apply the fields of one settings tab to the saved preferences.

    Unticked boxes are not sent, so every toggle of the tab absent from the
    form is switched off. Fields of other tabs keep their saved values.

    Raises:
        FormValidationError: unknown tab, theme or language
    """
    values = current.model_dump()
    if tab == "notifications":
        values.update({name: name in form for name, _ in CHANNEL_OPTIONS + EVENT_OPTIONS})
    elif tab == "appearance":
        values["compact_mode"] = "compact_mode" in form
        values["theme"] = form.get("theme") or "light"
        values["language"] = form.get("language") or "en"
    else:
        raise FormValidationError("These settings cannot be changed here")
    try:
        return AgentPreferences(**values)
    except ValidationError:
        raise FormValidationError("Please choose a valid theme and language")


async def get_preferences(db: AsyncSession, agent_id: str) -> AgentPreferences:
    row = await db.get(AgentPreference, agent_id)
    if row is None:
        return AgentPreferences()
    try:
        return AgentPreferences.model_validate(row.preferences_dict)
    except ValidationError:
        logger.warning("Ignoring unreadable preferences of agent %s", agent_id)
        return AgentPreferences()


async def save_preferences(db: AsyncSession, agent_id: str, preferences: AgentPreferences) -> AgentPreference:
    row = await db.get(AgentPreference, agent_id)
    if row is None:
        row = AgentPreference(agent_id=agent_id)
        db.add(row)
    row.preferences_json = json.dumps(preferences.model_dump())
    await db.commit()
    logger.info("Saved settings of agent %s", agent_id)
    return row
