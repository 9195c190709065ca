from __future__ import annotations

from partner_portal.infrastructure.repositories.base import BaseRepository


class StatusEventRepository(BaseRepository):
    def record(
        self,
        db,
        *,
        tender_id: int,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str,
        reason: str | None = None,
        actor: str | None = None,
    ) -> None:
        db.execute(
            """
            INSERT INTO tender_status_events (tender_id, entity, entity_id, from_status, to_status, reason, actor)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (tender_id, entity, entity_id, from_status, to_status, reason, actor),
        )

    def list_for_tender(self, db, tender_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, tender_id, entity, entity_id, from_status, to_status, reason, actor, occurred_at
            FROM tender_status_events
            WHERE tender_id = ?
            ORDER BY id ASC
            """,
            (tender_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)
