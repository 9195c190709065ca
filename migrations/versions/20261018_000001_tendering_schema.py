"""Tendering schema baseline from partner_portal.db

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from partner_portal.db import schema_statements


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TABLES = [
    "tender_status_events",
    "tender_questions",
    "tender_ndas",
    "notifications",
    "projects",
    "tender_responses",
    "tenders",
    "training_sessions",
    "certifications",
    "team_members",
    "partners",
    "solutions",
    "verticals",
]


def _resolve_backend(connection: Connection) -> str:
    dialect = (connection.dialect.name or "").lower()
    if dialect.startswith("postgres"):
        return "postgres"
    return "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    for statement in schema_statements(_resolve_backend(connection)):
        connection.exec_driver_sql(statement)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_tender_responses_single_winner")
    for table in TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table}")
