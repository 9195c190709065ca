from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import TenderQuestion
from partner_portal.infrastructure.repositories.base import BaseRepository


_COLUMNS = "id, tender_id, partner_id, question, asked_by, asked_at, answer, answered_by, answered_at"


class QuestionRepository(BaseRepository):
    @staticmethod
    def _from_row(row) -> TenderQuestion:
        data = dict(row)
        return TenderQuestion(
            id=int(data["id"]),
            tender_id=int(data["tender_id"]),
            partner_id=int(data["partner_id"]),
            question=data["question"],
            asked_at=str(data["asked_at"]),
            asked_by=data.get("asked_by"),
            answer=data.get("answer"),
            answered_at=data.get("answered_at"),
            answered_by=data.get("answered_by"),
        )

    def get(self, db, tender_id: int, question_id: int) -> TenderQuestion | None:
        row = db.execute(
            f"SELECT {_COLUMNS} FROM tender_questions WHERE tender_id = ? AND id = ? LIMIT 1",
            (tender_id, question_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_for_tender(self, db, tender_id: int, partner_id: int | None = None) -> list[TenderQuestion]:
        if partner_id is None:
            rows = db.execute(
                f"SELECT {_COLUMNS} FROM tender_questions WHERE tender_id = ? ORDER BY id ASC",
                (tender_id,),
            ).fetchall()
        else:
            rows = db.execute(
                f"SELECT {_COLUMNS} FROM tender_questions WHERE tender_id = ? AND partner_id = ? ORDER BY id ASC",
                (tender_id, partner_id),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def create(self, db, question: TenderQuestion) -> TenderQuestion:
        question_id = self.insert_returning_id(
            db,
            """
            INSERT INTO tender_questions (tender_id, partner_id, question, asked_by, asked_at)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (question.tender_id, question.partner_id, question.question, question.asked_by, question.asked_at),
        )
        return self.get(db, question.tender_id, question_id)

    def answer(self, db, question: TenderQuestion) -> bool:
        """Store the answer unless one was recorded first; False means it lost."""
        cursor = db.execute(
            """
            UPDATE tender_questions
            SET answer = ?, answered_by = ?, answered_at = ?
            WHERE id = ? AND answered_at IS NULL
            """,
            (question.answer, question.answered_by, question.answered_at, question.id),
        )
        return cursor.rowcount == 1
