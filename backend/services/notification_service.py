"""
notification_service.py — Intervention handoff.
Writes an in-app notification row and forwards a push request to the external
dispatcher. Delivery is best-effort: nothing here may fail the caller.
"""

import logging

import httpx
from sqlalchemy.orm import Session

from config import PUSH_DISPATCH_URL, PUSH_DISPATCH_TOKEN
from models.intervention import Intervention
from models.notification import Notification

logger = logging.getLogger(__name__)

PUSH_TIMEOUT_SECONDS = 5
INTERVENTION_URL = "/ai-insights"
BODY_PREVIEW = 100


def build_push_payload(intervention: Intervention, is_critical: bool = False) -> dict:
    message = intervention.message or ""
    body = message[:BODY_PREVIEW] + ("..." if len(message) > BODY_PREVIEW else "")
    return {
        "user_id": intervention.user_id,
        "title": "We're Here for You" if is_critical else "Recovery Check-in",
        "body": body,
        "url": INTERVENTION_URL,
        "data": {
            "type": "proactive_intervention",
            "intervention_id": intervention.id,
            "risk_score": intervention.risk_score,
            "is_critical": is_critical,
        },
    }


class NotificationDispatcher:
    def __init__(self, dispatch_url: str = PUSH_DISPATCH_URL, token: str = PUSH_DISPATCH_TOKEN):
        self.dispatch_url = dispatch_url
        self.token = token

    async def notify_intervention(self, db: Session, intervention: Intervention, is_critical: bool = False) -> bool:
        """Returns True when the push dispatcher accepted the request."""
        payload = build_push_payload(intervention, is_critical)

        try:
            db.add(Notification(
                user_id=intervention.user_id,
                type="proactive_intervention",
                title=payload["title"],
                message=intervention.message,
                action_url=INTERVENTION_URL,
                reference_id=intervention.id,
            ))
            db.commit()
        except Exception as e:
            logger.warning(f"In-app notification for intervention {intervention.id} not saved: {e}")
            db.rollback()

        if not self.dispatch_url:
            return False

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            async with httpx.AsyncClient(timeout=PUSH_TIMEOUT_SECONDS) as client:
                response = await client.post(self.dispatch_url, headers=headers, json=payload)
            if response.status_code >= 400:
                logger.warning(f"Push dispatcher returned {response.status_code} for intervention {intervention.id}")
                return False
        except Exception as e:
            logger.warning(f"Push dispatch failed for intervention {intervention.id}: {e}")
            return False
        logger.info(f"Push notification sent for intervention {intervention.id}")
        return True
