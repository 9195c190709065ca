from __future__ import annotations

from partner_portal.contexts.tendering.domain.models import Project, int_tuple, parse_date, text_tuple
from partner_portal.infrastructure.repositories.base import BaseRepository


class ProjectRepository(BaseRepository):
    def _from_row(self, row) -> Project:
        data = dict(row)
        return Project(
            id=int(data["id"]),
            tender_id=int(data["tender_id"]),
            project_name=data["project_name"],
            client_name=data.get("client_name"),
            customer_contact=data.get("customer_contact"),
            source=data.get("source") or "tender",
            status=data.get("status") or "assigned",
            solution_ids=int_tuple(self.json_loads(data.get("solution_ids"), [])),
            primary_solution=data.get("primary_solution"),
            additional_solutions=int_tuple(self.json_loads(data.get("additional_solutions"), [])),
            assa_abloy_products=text_tuple(self.json_loads(data.get("assa_abloy_products"), [])),
            vertical_id=data.get("vertical_id"),
            project_location=data.get("project_location"),
            estimated_value=data.get("estimated_value"),
            start_date=parse_date(data.get("start_date")),
            assigned_partner_id=data.get("assigned_partner_id"),
            assigned_team_members=int_tuple(self.json_loads(data.get("assigned_team_members"), [])),
            project_language=data.get("project_language"),
            required_service_coverage=text_tuple(self.json_loads(data.get("required_service_coverage"), [])),
            notes=data.get("notes"),
        )

    def get(self, db, project_id: int) -> Project | None:
        row = db.execute("SELECT * FROM projects WHERE id = ? LIMIT 1", (project_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_by_tender(self, db, tender_id: int) -> Project | None:
        row = db.execute("SELECT * FROM projects WHERE tender_id = ? LIMIT 1", (tender_id,)).fetchone()
        return self._from_row(row) if row else None

    def create(self, db, project: Project) -> Project:
        project_id = self.insert_returning_id(
            db,
            """
            INSERT INTO projects (
                tender_id, project_name, client_name, customer_contact, source, status, solution_ids,
                primary_solution, additional_solutions, assa_abloy_products, vertical_id, project_location,
                estimated_value, start_date, assigned_partner_id, assigned_team_members, project_language,
                required_service_coverage, notes
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                project.tender_id,
                project.project_name,
                project.client_name,
                project.customer_contact,
                project.source,
                project.status,
                self.json_dumps(list(project.solution_ids)),
                project.primary_solution,
                self.json_dumps(list(project.additional_solutions)),
                self.json_dumps(list(project.assa_abloy_products)),
                project.vertical_id,
                project.project_location,
                project.estimated_value,
                project.start_date.isoformat() if project.start_date else None,
                project.assigned_partner_id,
                self.json_dumps(list(project.assigned_team_members)),
                project.project_language,
                self.json_dumps(list(project.required_service_coverage)),
                project.notes,
            ),
        )
        return self.get(db, project_id)
