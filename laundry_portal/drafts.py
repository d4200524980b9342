"""
Laundry Portal - Booking Draft Store

Persists the wizard state of each open booking between requests. The
browser only holds a signed draft id; closing the wizard deletes the row so
a reopened wizard always starts from step 1.
"""

import json
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Request
from fastapi.responses import Response
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from laundry_portal.config import settings
from laundry_portal.models import BookingDraft
from laundry_portal.timestamps import now_utc

logger = logging.getLogger(__name__)

DRAFT_COOKIE_NAME = "laundry_booking_draft"

draft_serializer = URLSafeTimedSerializer(settings.SECRET_KEY, salt="laundry-booking-draft")


# =============================================================================
# COOKIE
# =============================================================================

def read_draft_id(request: Request) -> Optional[str]:
    """Return the draft id from the signed cookie, or None if absent/invalid."""
    token = request.cookies.get(DRAFT_COOKIE_NAME)
    if not token:
        return None
    try:
        return draft_serializer.loads(token, max_age=settings.DRAFT_TTL_HOURS * 3600)
    except (BadSignature, SignatureExpired):
        return None


def set_draft_cookie(response: Response, draft_id: str) -> None:
    response.set_cookie(
        key=DRAFT_COOKIE_NAME,
        value=draft_serializer.dumps(draft_id),
        max_age=settings.DRAFT_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=not settings.DEBUG,
    )


def clear_draft_cookie(response: Response) -> None:
    response.delete_cookie(DRAFT_COOKIE_NAME)


# =============================================================================
# STORE
# =============================================================================

async def get_draft(db: AsyncSession, draft_id: Optional[str]) -> Optional[BookingDraft]:
    if not draft_id:
        return None
    return await db.get(BookingDraft, draft_id)


async def reload_draft(db: AsyncSession, draft_id: str) -> Optional[BookingDraft]:
    """Fetch a draft bypassing the session's identity map."""
    return await db.get(BookingDraft, draft_id, populate_existing=True)


async def create_draft(db: AsyncSession, state: Optional[dict] = None) -> BookingDraft:
    draft = BookingDraft(state_json=json.dumps(state or {}))
    db.add(draft)
    await db.commit()
    await db.refresh(draft)
    logger.debug("Opened booking draft %s", draft.id)
    return draft


async def open_draft(db: AsyncSession, request: Request) -> tuple[BookingDraft, bool]:
    """
    Return the draft of the current browser, creating a fresh one if needed.

    Returns:
        (draft, created) - `created` tells the caller to set the cookie
    """
    draft = await get_draft(db, read_draft_id(request))
    if draft is not None:
        return draft, False
    return await create_draft(db), True


async def save_state(db: AsyncSession, draft: BookingDraft, state: dict) -> BookingDraft:
    draft.state_json = json.dumps(state)
    draft.updated_at = now_utc()
    await db.commit()
    return draft


async def discard_draft(db: AsyncSession, draft_id: Optional[str]) -> bool:
    """Delete a draft. Returns True if a row was removed."""
    if not draft_id:
        return False
    result = await db.execute(delete(BookingDraft).where(BookingDraft.id == draft_id))
    await db.commit()
    removed = result.rowcount > 0
    if removed:
        logger.debug("Discarded booking draft %s", draft_id)
    return removed


async def purge_stale_drafts(db: AsyncSession, max_age_hours: Optional[int] = None) -> int:
    """Delete drafts untouched for longer than the draft TTL."""
    hours = settings.DRAFT_TTL_HOURS if max_age_hours is None else max_age_hours
    cutoff = now_utc() - timedelta(hours=hours)
    result = await db.execute(delete(BookingDraft).where(BookingDraft.updated_at < cutoff))
    await db.commit()
    if result.rowcount:
        logger.info("Purged %d stale booking drafts", result.rowcount)
    return result.rowcount
