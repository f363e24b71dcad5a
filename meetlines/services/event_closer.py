"""Close events whose end time has passed.

Regular events move to ``completed`` and platform events to ``ended``;
both stop being live. Rows already in a terminal status are filtered out,
so running the job again changes nothing. Regular events are committed
before platform events are looked at: a failure in the second step leaves
the first step applied.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from meetlines.models import Event, PlatformEvent, EventStatus, PlatformEventStatus

logger = logging.getLogger(__name__)

PLATFORM_TERMINAL = (PlatformEventStatus.COMPLETED.value, PlatformEventStatus.ENDED.value)


def _summary(row, kind: str) -> dict:
    return {
        "id": row.id,
        "title": row.title,
        "end_date": row.end_date.isoformat() if row.end_date else None,
        "kind": kind,
    }


def close_ended_events(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    logger.info("Searching for events to end. Current time: %s", now.isoformat())

    events = (
        db.query(Event)
        .filter(
            Event.end_date.isnot(None),
            Event.end_date < now,
            Event.status != EventStatus.COMPLETED.value,
        )
        .all()
    )
    for event in events:
        event.status = EventStatus.COMPLETED.value
        event.is_live = False
        event.updated_at = now
    ended = [_summary(e, "event") for e in events]
    db.commit()
    logger.info("Ended %d events", len(events))

    platform_events = (
        db.query(PlatformEvent)
        .filter(
            PlatformEvent.end_date.isnot(None),
            PlatformEvent.end_date < now,
            PlatformEvent.status.notin_(PLATFORM_TERMINAL),
        )
        .all()
    )
    for event in platform_events:
        event.status = PlatformEventStatus.ENDED.value
        event.is_live = False
        event.updated_at = now
    ended += [_summary(e, "platform_event") for e in platform_events]
    db.commit()
    logger.info("Ended %d platform events", len(platform_events))

    if not ended:
        return {"success": True, "message": "No events to end", "endedCount": 0, "events": []}

    logger.info("Successfully ended: %s", ", ".join(e["title"] for e in ended))
    return {
        "success": True,
        "message": f"Ended {len(ended)} events",
        "endedCount": len(ended),
        "events": ended,
    }
