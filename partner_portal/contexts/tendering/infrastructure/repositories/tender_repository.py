from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import Tender, int_tuple, parse_date, text_tuple
from partner_portal.errors import ConcurrencyConflictError
from partner_portal.infrastructure.repositories.base import BaseRepository


def _text(value) -> str | None:
    return None if value is None else str(value)


class TenderRepository(BaseRepository):
    def _from_row(self, row) -> Tender:
        data = dict(row)
        return Tender(
            id=int(data["id"]),
            title=data["title"],
            status=data["status"],
            tender_code=data.get("tender_code"),
            invitation_strategy=data.get("invitation_strategy") or "",
            invited_partners=int_tuple(self.json_loads(data.get("invited_partners"), [])),
            required_solutions=int_tuple(self.json_loads(data.get("required_solutions"), [])),
            vertical_id=data.get("vertical_id"),
            assa_abloy_products=text_tuple(self.json_loads(data.get("assa_abloy_products"), [])),
            project_start_date=parse_date(data.get("project_start_date")),
            customer_name=data.get("customer_name"),
            customer_contact=data.get("customer_contact"),
            project_location=data.get("project_location"),
            project_language=data.get("project_language"),
            required_service_coverage=text_tuple(self.json_loads(data.get("required_service_coverage"), [])),
            estimated_gross_value=data.get("estimated_gross_value"),
            awarded_to=data.get("awarded_to"),
            awarded_project_id=data.get("awarded_project_id"),
            cancel_reason=data.get("cancel_reason"),
            published_at=_text(data.get("published_at")),
            version=int(data.get("version") or 1),
            created_at=_text(data.get("created_at")),
            updated_at=_text(data.get("updated_at")),
        )

    def get(self, db, tender_id: int) -> Tender | None:
        row = db.execute(
            """
            SELECT *
            FROM tenders
            WHERE id = ?
            LIMIT 1
            """,
            (tender_id,),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_all(self, db, *, exclude_drafts: bool = False) -> list[Tender]:
        query = "SELECT * FROM tenders"
        if exclude_drafts:
            query += " WHERE status <> 'draft'"
        rows = db.execute(f"{query} ORDER BY id DESC").fetchall()
        return [self._from_row(row) for row in rows]

    def create(self, db, tender: Tender) -> Tender:
        tender_id = self.insert_returning_id(
            db,
            """
            INSERT INTO tenders (
                tender_code, title, status, invitation_strategy, invited_partners, required_solutions,
                vertical_id, assa_abloy_products, project_start_date, customer_name, customer_contact,
                project_location, project_language, required_service_coverage, estimated_gross_value
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                tender.tender_code,
                tender.title,
                tender.status,
                tender.invitation_strategy,
                self.json_dumps(list(tender.invited_partners)),
                self.json_dumps(list(tender.required_solutions)),
                tender.vertical_id,
                self.json_dumps(list(tender.assa_abloy_products)),
                tender.project_start_date.isoformat() if tender.project_start_date else None,
                tender.customer_name,
                tender.customer_contact,
                tender.project_location,
                tender.project_language,
                self.json_dumps(list(tender.required_service_coverage)),
                tender.estimated_gross_value,
            ),
        )
        return self.get(db, tender_id)

    def save(self, db, tender: Tender) -> Tender:
        """Persist status-bearing fields if nobody changed the row since it was read."""
        cursor = db.execute(
            """
            UPDATE tenders
            SET status = ?,
                awarded_to = ?,
                awarded_project_id = ?,
                cancel_reason = ?,
                published_at = ?,
                version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND version = ?
            """,
            (
                tender.status,
                tender.awarded_to,
                tender.awarded_project_id,
                tender.cancel_reason,
                tender.published_at,
                tender.id,
                tender.version,
            ),
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(
                details=f"tender_version_changed:{tender.id}",
                payload={"tender_id": tender.id},
            )
        return self.get(db, tender.id)

    def touch(self, db, tender: Tender) -> Tender:
        """Bump the version so concurrent writers on the same tender conflict."""
        cursor = db.execute(
            """
            UPDATE tenders
            SET version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND version = ?
            """,
            (tender.id, tender.version),
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(
                details=f"tender_version_changed:{tender.id}",
                payload={"tender_id": tender.id},
            )
        return self.get(db, tender.id)
