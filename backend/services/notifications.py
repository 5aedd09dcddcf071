"""
EV Dealer Hub - Notification dispatch

In-app notification row + optional transactional email, triggered by the
payout, order, lead and test-ride workflows after their state change.

Delivery is best effort: a failure is logged and swallowed, the
state change that triggered it is never rolled back.
"""

import asyncio
import logging
import uuid
from typing import Optional, List

from config import now_iso

logger = logging.getLogger("notifications")

NOTIFICATION_TYPES = ["payout", "order", "lead_update", "lead_assigned", "test_ride"]
PRIORITIES = ["normal", "high"]


class NotificationService:

    def __init__(self, db, mailer=None, events=None):
        self.db = db
        self.mailer = mailer
        self.events = events

    async def notify(
        self,
        user_id: Optional[str],
        title: str,
        message: str,
        type: str,
        priority: str = "normal",
        data: dict = None,
        email_to: Optional[str] = None,
        template_id: Optional[str] = None,
        template_props: dict = None,
    ) -> Optional[dict]:
        """
        Records a notification for user_id and, when template_id and email_to
        are given, sends the matching email. Returns the stored notification
        or None when nothing could be stored.
        """
        doc = None
        if user_id:
            doc = {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "title": title,
                "message": message,
                "type": type,
                "priority": priority if priority in PRIORITIES else "normal",
                "data": data or {},
                "read": False,
                "read_at": None,
                "created_at": now_iso(),
            }
            try:
                await self.db.notifications.insert_one(doc)
                doc.pop("_id", None)
            except Exception as e:
                logger.error(f"[NOTIFY] insert failed user={user_id} title={title!r}: {e}")
                doc = None
            else:
                if self.events is not None:
                    self.events.publish("notifications", type, doc["id"], {"user_id": user_id, "title": title})
        else:
            logger.warning(f"[NOTIFY] no recipient for {title!r}, in-app notification skipped")

        if template_id and email_to and self.mailer is not None:
            await self._send_email(template_id, email_to, template_props or {})

        return doc

    async def _send_email(self, template_id: str, email_to: str, props: dict) -> bool:
        try:
            sent = await asyncio.to_thread(self.mailer.send_template, template_id, email_to, props)
        except Exception as e:
            logger.error(f"[NOTIFY] email {template_id} to {email_to} failed: {e}")
            return False
        if not sent:
            logger.warning(f"[NOTIFY] email {template_id} to {email_to} not sent")
        return bool(sent)

    # ==================== INBOX ====================

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> dict:
        query = {"user_id": user_id}
        if unread_only:
            query["read"] = False
        items = await self.db.notifications.find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .limit(limit) \
            .to_list(limit)
        unread = await self.db.notifications.count_documents({"user_id": user_id, "read": False})
        return {"notifications": items, "unread_count": unread}

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        result = await self.db.notifications.update_one(
            {"id": notification_id, "user_id": user_id},
            {"$set": {"read": True, "read_at": now_iso()}}
        )
        return result.matched_count > 0

    async def mark_many_read(self, user_id: str, notification_ids: List[str] = None) -> int:
        query = {"user_id": user_id, "read": False}
        if notification_ids:
            query["id"] = {"$in": notification_ids}
        result = await self.db.notifications.update_many(
            query, {"$set": {"read": True, "read_at": now_iso()}}
        )
        return result.modified_count
