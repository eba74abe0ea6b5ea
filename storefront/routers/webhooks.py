"""
Maksekeskus payment notification receiver.

POST /api/maksekeskus/notification   (form fields: json, mac)

The provider always gets HTTP 200 {"status": "OK"}, with an "error" field when
the notification was rejected or could not be applied.  A non-200 answer would
only make the provider redeliver a notification this service cannot process;
the cost is that a persistent internal failure drops that payment update.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.database import get_db
from storefront.errors import InvalidSignature, NotificationRejected
from storefront.schemas import NotificationAck
from storefront.services.reconciler import process_notification

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api/maksekeskus", tags=["webhooks"])


@router.post("/notification", response_model=NotificationAck, response_model_exclude_none=True)
async def maksekeskus_notification(
    payload: str = Form(default="", alias="json"),
    mac: str = Form(default=""),
    db: AsyncSession = Depends(get_db),
) -> NotificationAck:
    logger.info(
        "Received Maksekeskus notification: payload=%s… mac=%s",
        payload[:100], f"{mac[:10]}…" if mac else "missing",
    )
    try:
        outcome = await process_notification(
            db, payload, mac, settings.maksekeskus_api_secret_key
        )
        await db.commit()
    except InvalidSignature as exc:
        logger.error("Rejected notification: %s", exc.message)
        return NotificationAck(error=exc.message)
    except NotificationRejected as exc:
        await db.rollback()
        logger.error("Rejected notification: %s", exc.message)
        return NotificationAck(error=exc.message)
    except Exception as exc:
        await db.rollback()
        logger.exception("Error processing notification: %s", exc)
        return NotificationAck(error=str(exc))

    logger.info(
        "Processed notification for order %s: %s (%s)",
        outcome.order_id, outcome.status, outcome.message,
    )
    return NotificationAck()
