from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import Notification
from partner_portal.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    @staticmethod
    def _from_row(row) -> Notification:
        data = dict(row)
        return Notification(
            id=int(data["id"]),
            user_email=data.get("user_email") or "",
            partner_id=data.get("partner_id"),
            type=data["type"],
            title=data["title"],
            message=data["message"],
            link=data.get("link"),
            related_entity_type=data.get("related_entity_type"),
            related_entity_id=data.get("related_entity_id"),
            dedupe_key=data.get("dedupe_key"),
            is_read=bool(data.get("is_read")),
            created_at=None if data.get("created_at") is None else str(data["created_at"]),
        )

    def create_once(self, db, notification: Notification) -> bool:
        """Insert unless a notification with the same dedupe key exists. Returns True when inserted."""
        cursor = db.execute(
            """
            INSERT INTO notifications (
                user_email, partner_id, type, title, message, link,
                related_entity_type, related_entity_id, dedupe_key
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (dedupe_key) DO NOTHING
            """,
            (
                notification.user_email or "",
                notification.partner_id,
                notification.type,
                notification.title,
                notification.message,
                notification.link,
                notification.related_entity_type,
                notification.related_entity_id,
                notification.dedupe_key,
            ),
        )
        return cursor.rowcount == 1

    def list_for_partner(self, db, partner_id: int) -> list[Notification]:
        rows = db.execute(
            """
            SELECT *
            FROM notifications
            WHERE partner_id = ?
            ORDER BY id ASC
            """,
            (partner_id,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def list_for_related(self, db, entity_type: str, entity_id: int) -> list[Notification]:
        rows = db.execute(
            """
            SELECT *
            FROM notifications
            WHERE related_entity_type = ? AND related_entity_id = ?
            ORDER BY id ASC
            """,
            (entity_type, entity_id),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def list_recent(self, db, limit: int = 100) -> list[Notification]:
        rows = db.execute(
            "SELECT * FROM notifications ORDER BY id DESC LIMIT ?",
            (int(limit),),
        ).fetchall()
        return [self._from_row(row) for row in rows]
