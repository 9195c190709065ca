from __future__ import annotations

from typing import Iterable

from partner_portal.contexts.tendering.domain.models import (
    Certification,
    Partner,
    Solution,
    TeamMember,
    TrainingSession,
    Vertical,
    parse_date,
    text_tuple,
)
from partner_portal.infrastructure.repositories.base import BaseRepository


def _date_param(value) -> str | None:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None


class DirectoryRepository(BaseRepository):
    """Partners, staff, certifications and the reference catalogs they point to."""

    def _partner_from_row(self, row) -> Partner:
        data = dict(row)
        return Partner(
            id=int(data["id"]),
            company_name=data["company_name"],
            status=data.get("status") or "",
            partner_type=data.get("partner_type"),
            contact_email=data.get("contact_email"),
            primary_contact_email=data.get("primary_contact_email"),
            verticals=text_tuple(self.json_loads(data.get("verticals"), [])),
            solutions=text_tuple(self.json_loads(data.get("solutions"), [])),
            assa_abloy_products=text_tuple(self.json_loads(data.get("assa_abloy_products"), [])),
        )

    @staticmethod
    def _certification_from_row(row) -> Certification:
        data = dict(row)
        return Certification(
            id=int(data["id"]),
            team_member_id=int(data["team_member_id"]),
            certification_code=data.get("certification_code"),
            certification_name=data.get("certification_name"),
            product_code=data.get("product_code"),
            status=data.get("status") or "",
            issue_date=parse_date(data.get("issue_date")),
            expiry_date=parse_date(data.get("expiry_date")),
        )

    @staticmethod
    def _session_from_row(row) -> TrainingSession:
        data = dict(row)
        return TrainingSession(
            id=int(data["id"]),
            title=data["title"],
            assa_abloy_product=data.get("assa_abloy_product"),
            session_date=parse_date(data.get("session_date")),
            status=data.get("status") or "",
            location_type=data.get("location_type"),
        )

    def get_partner(self, db, partner_id: int) -> Partner | None:
        row = db.execute("SELECT * FROM partners WHERE id = ? LIMIT 1", (partner_id,)).fetchone()
        return self._partner_from_row(row) if row else None

    def list_partners(self, db) -> list[Partner]:
        rows = db.execute("SELECT * FROM partners ORDER BY id ASC").fetchall()
        return [self._partner_from_row(row) for row in rows]

    def list_verticals(self, db) -> list[Vertical]:
        rows = db.execute("SELECT id, code, name FROM verticals ORDER BY id ASC").fetchall()
        return [Vertical(id=int(row["id"]), code=row["code"], name=row["name"]) for row in rows]

    def list_solutions(self, db) -> list[Solution]:
        rows = db.execute("SELECT id, code, name FROM solutions ORDER BY id ASC").fetchall()
        return [Solution(id=int(row["id"]), code=row["code"], name=row["name"]) for row in rows]

    def list_team_members(self, db, partner_id: int) -> list[TeamMember]:
        rows = db.execute(
            """
            SELECT id, partner_id, full_name, email, active
            FROM team_members
            WHERE partner_id = ?
            ORDER BY id ASC
            """,
            (partner_id,),
        ).fetchall()
        return [
            TeamMember(
                id=int(row["id"]),
                partner_id=int(row["partner_id"]),
                full_name=row["full_name"],
                email=row["email"],
                active=bool(row["active"]),
            )
            for row in rows
        ]

    def list_certifications_for_partner(self, db, partner_id: int) -> list[Certification]:
        rows = db.execute(
            """
            SELECT c.*
            FROM certifications c
            JOIN team_members tm ON tm.id = c.team_member_id
            WHERE tm.partner_id = ?
            ORDER BY c.id ASC
            """,
            (partner_id,),
        ).fetchall()
        return [self._certification_from_row(row) for row in rows]

    def list_training_sessions(self, db) -> list[TrainingSession]:
        rows = db.execute("SELECT * FROM training_sessions ORDER BY session_date ASC, id ASC").fetchall()
        return [self._session_from_row(row) for row in rows]

    def create_vertical(self, db, code: str, name: str) -> int:
        return self.insert_returning_id(
            db,
            "INSERT INTO verticals (code, name) VALUES (?, ?) RETURNING id",
            (code, name),
        )

    def create_solution(self, db, code: str, name: str) -> int:
        return self.insert_returning_id(
            db,
            "INSERT INTO solutions (code, name) VALUES (?, ?) RETURNING id",
            (code, name),
        )

    def create_partner(
        self,
        db,
        *,
        company_name: str,
        status: str = "active",
        partner_type: str | None = None,
        contact_email: str | None = None,
        primary_contact_email: str | None = None,
        verticals: Iterable[str] = (),
        solutions: Iterable[str] = (),
        assa_abloy_products: Iterable[str] = (),
    ) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO partners (
                company_name, status, partner_type, contact_email, primary_contact_email,
                verticals, solutions, assa_abloy_products
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                company_name,
                status,
                partner_type,
                contact_email,
                primary_contact_email,
                self.json_dumps(list(verticals)),
                self.json_dumps(list(solutions)),
                self.json_dumps(list(assa_abloy_products)),
            ),
        )

    def create_team_member(self, db, *, partner_id: int, full_name: str, email: str | None = None, active: bool = True) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO team_members (partner_id, full_name, email, active)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (partner_id, full_name, email, 1 if active else 0),
        )

    def create_certification(
        self,
        db,
        *,
        team_member_id: int,
        product_code: str | None = None,
        certification_code: str | None = None,
        certification_name: str | None = None,
        status: str = "valid",
        issue_date=None,
        expiry_date=None,
    ) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO certifications (
                team_member_id, certification_code, certification_name, product_code, status, issue_date, expiry_date
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                team_member_id,
                certification_code,
                certification_name,
                product_code,
                status,
                _date_param(issue_date),
                _date_param(expiry_date),
            ),
        )

    def create_training_session(
        self,
        db,
        *,
        title: str,
        assa_abloy_product: str,
        session_date,
        status: str = "registration_open",
        location_type: str | None = None,
    ) -> int:
        return self.insert_returning_id(
            db,
            """
            INSERT INTO training_sessions (title, assa_abloy_product, session_date, status, location_type)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (title, assa_abloy_product, _date_param(session_date), status, location_type),
        )
