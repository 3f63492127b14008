import asyncio
import json
import logging
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config import STREAM_BATCH_SIZE, STREAM_POLL_INTERVAL
from database import SessionLocal
from errors import NotFound
from models import Notification, utcnow
from schemas import NotificationType

logger = logging.getLogger(__name__)


def notification_to_dict(n: Notification):
    return {
        "id": n.id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "is_read": bool(n.is_read),
        "user_id": n.user_id,
        "sender_id": n.sender_id,
        "related_issue_id": n.related_issue_id,
        "created_at": n.created_at,
    }


# ---------- Dispatcher ----------

class NotificationDispatcher:
    """
    Writes notification rows as a side effect of report and account events.

    The insert runs in a SAVEPOINT of the caller's transaction. It commits
    together with the primary write, but a failed insert only rolls back
    the savepoint: it is logged and the caller carries on.
    """

    def dispatch(
        self,
        session: Session,
        title: str,
        message: str,
        type: NotificationType = "info",
        related_issue_id: Optional[int] = None,
        user_id: Optional[int] = None,
        sender_id: Optional[int] = None,
    ) -> Optional[Notification]:
        try:
            with session.begin_nested():
                notification = self._insert(
                    session,
                    title=title,
                    message=message,
                    type=type,
                    related_issue_id=related_issue_id,
                    user_id=user_id,
                    sender_id=sender_id,
                )
        except SQLAlchemyError:
            logger.exception("Notification dispatch failed: %s", title)
            return None
        logger.info("Notification %s queued for user %s", notification.id, user_id)
        return notification

    def _insert(self, session: Session, **fields) -> Notification:
        notification = Notification(is_read=False, created_at=utcnow(), **fields)
        session.add(notification)
        session.flush()
        return notification


# ---------- Store ----------

class NotificationStore:
    def __init__(self, session: Session):
        self.session = session

    def list(self, user_id: Optional[int] = None, unread: bool = False):
        query = self.session.query(Notification)
        if user_id is not None:
            query = query.filter(or_(Notification.user_id == user_id, Notification.user_id.is_(None)))
        if unread:
            query = query.filter(Notification.is_read.is_(False))
        rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
        return [notification_to_dict(n) for n in rows]

    def _get(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        return notification

    def get(self, notification_id: int):
        return notification_to_dict(self._get(notification_id))

    def mark_read(self, notification_id: int, is_read: bool = True):
        notification = self._get(notification_id)
        try:
            notification.is_read = is_read
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return notification_to_dict(notification)

    def delete(self, notification_id: int):
        notification = self._get(notification_id)
        try:
            self.session.delete(notification)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("Notification %s deleted", notification_id)


# ---------- Feed ----------

def format_event(notification: dict) -> str:
    payload = json.dumps(jsonable_encoder(notification))
    return f"id: {notification['id']}\ndata: {payload}\n\n"


class NotificationFeed:
    """
    Server-sent event feed. Every `interval` seconds each connection asks
    for rows with an id above its watermark, emits them in id order and
    moves the watermark to the largest id it sent.
    """

    def __init__(self, session_factory=SessionLocal, interval: float = STREAM_POLL_INTERVAL,
                 batch_size: int = STREAM_BATCH_SIZE):
        self.session_factory = session_factory
        self.interval = interval
        self.batch_size = batch_size

    def poll(self, session: Session, watermark: int):
        rows = (
            session.query(Notification)
            .filter(Notification.id > watermark)
            .order_by(Notification.id.asc())
            .limit(self.batch_size)
            .all()
        )
        if rows:
            watermark = rows[-1].id
        return [notification_to_dict(n) for n in rows], watermark

    def _poll_once(self, watermark: int):
        # short-lived session per poll; nothing is held across the sleep
        session = self.session_factory()
        try:
            return self.poll(session, watermark)
        finally:
            session.close()

    async def events(self, request=None, watermark: int = 0):
        logger.info("Notification stream opened")
        try:
            while True:
                if request is not None and await request.is_disconnected():
                    break
                try:
                    batch, watermark = await run_in_threadpool(self._poll_once, watermark)
                except SQLAlchemyError:
                    logger.exception("Notification stream poll failed")
                    batch = []
                for notification in batch:
                    yield format_event(notification)
                await asyncio.sleep(self.interval)
        finally:
            logger.info("Notification stream closed at watermark %s", watermark)
