from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import CertificationSnapshot, TenderResponse, int_tuple
from partner_portal.errors import ConcurrencyConflictError, InvalidTransitionError, is_unique_violation
from partner_portal.infrastructure.repositories.base import BaseRepository


class ResponseRepository(BaseRepository):
    def _from_row(self, row) -> TenderResponse:
        data = dict(row)
        final_status = self.json_loads(data.get("final_certification_status"), {})
        return TenderResponse(
            id=int(data["id"]),
            tender_id=int(data["tender_id"]),
            partner_id=int(data["partner_id"]),
            status=data["status"],
            certification_status=CertificationSnapshot.from_dict(self.json_loads(data.get("certification_status"), {})),
            committed_training_sessions=int_tuple(self.json_loads(data.get("committed_training_sessions"), [])),
            proposed_value=data.get("proposed_value"),
            proposal_document=data.get("proposal_document"),
            meeting_date=data.get("meeting_date"),
            team_assigned=int_tuple(self.json_loads(data.get("team_assigned"), [])),
            final_certification_status=CertificationSnapshot.from_dict(final_status) if final_status else None,
            rejection_reason=data.get("rejection_reason"),
            submitted_at=data.get("submitted_at"),
            approved_at=data.get("approved_at"),
            proposal_submitted_at=data.get("proposal_submitted_at"),
            rejected_at=data.get("rejected_at"),
            awarded_at=data.get("awarded_at"),
            version=int(data.get("version") or 1),
        )

    def get(self, db, tender_id: int, partner_id: int) -> TenderResponse | None:
        row = db.execute(
            """
            SELECT *
            FROM tender_responses
            WHERE tender_id = ? AND partner_id = ?
            LIMIT 1
            """,
            (tender_id, partner_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_for_tender(self, db, tender_id: int) -> list[TenderResponse]:
        rows = db.execute(
            """
            SELECT *
            FROM tender_responses
            WHERE tender_id = ?
            ORDER BY id ASC
            """,
            (tender_id,),
        ).fetchall()
        return [self._from_row(row) for row in rows]

    def create(self, db, response: TenderResponse) -> TenderResponse:
        try:
            self.insert_returning_id(
                db,
                """
                INSERT INTO tender_responses (
                    tender_id, partner_id, status, certification_status, committed_training_sessions, submitted_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    response.tender_id,
                    response.partner_id,
                    response.status,
                    self.json_dumps(response.certification_status.to_dict()),
                    self.json_dumps(list(response.committed_training_sessions)),
                    response.submitted_at,
                ),
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise InvalidTransitionError(details="response_exists") from exc
            raise
        return self.get(db, response.tender_id, response.partner_id)

    def save(self, db, response: TenderResponse) -> TenderResponse:
        cursor = db.execute(
            """
            UPDATE tender_responses
            SET status = ?,
                proposed_value = ?,
                proposal_document = ?,
                meeting_date = ?,
                team_assigned = ?,
                final_certification_status = ?,
                rejection_reason = ?,
                approved_at = ?,
                proposal_submitted_at = ?,
                rejected_at = ?,
                awarded_at = ?,
                version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND version = ?
            """,
            (
                response.status,
                response.proposed_value,
                response.proposal_document,
                response.meeting_date,
                self.json_dumps(list(response.team_assigned)),
                (
                    self.json_dumps(response.final_certification_status.to_dict())
                    if response.final_certification_status
                    else None
                ),
                response.rejection_reason,
                response.approved_at,
                response.proposal_submitted_at,
                response.rejected_at,
                response.awarded_at,
                response.id,
                response.version,
            ),
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflictError(
                details=f"response_version_changed:{response.id}",
                payload={"tender_id": response.tender_id, "partner_id": response.partner_id},
            )
        return self.get(db, response.tender_id, response.partner_id)
