from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import TenderNda
from partner_portal.infrastructure.repositories.base import BaseRepository


class NdaRepository(BaseRepository):
    def get(self, db, tender_id: int, partner_id: int) -> TenderNda | None:
        row = db.execute(
            """
            SELECT id, tender_id, partner_id, user_email, nda_version, accepted_at
            FROM tender_ndas
            WHERE tender_id = ? AND partner_id = ?
            LIMIT 1
            """,
            (tender_id, partner_id),
        ).fetchone()
        if not row:
            return None
        data = dict(row)
        return TenderNda(
            id=int(data["id"]),
            tender_id=int(data["tender_id"]),
            partner_id=int(data["partner_id"]),
            user_email=data.get("user_email"),
            nda_version=data["nda_version"],
            accepted_at=str(data["accepted_at"]),
        )

    def accept(self, db, nda: TenderNda) -> TenderNda:
        # First acceptance wins; repeated acceptance returns the stored record.
        db.execute(
            """
            INSERT INTO tender_ndas (tender_id, partner_id, user_email, nda_version, accepted_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (tender_id, partner_id) DO NOTHING
            """,
            (nda.tender_id, nda.partner_id, nda.user_email, nda.nda_version, nda.accepted_at),
        )
        return self.get(db, nda.tender_id, nda.partner_id)
