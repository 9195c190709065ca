import contextlib
import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._in_transaction = False

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @contextlib.contextmanager
    def transaction(self):
        """Run the enclosed statements as one unit of work.

        SQLite takes the write lock up front (BEGIN IMMEDIATE) so concurrent
        writers serialize and every read inside the block sees committed
        state. Nested blocks join the outer transaction.
        """
        if self._in_transaction:
            yield self
            return

        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            self.execute("ROLLBACK")
            raise
        self._in_transaction = False
        self.execute("COMMIT")

    def commit(self):
        if self._in_transaction:
            return
        self._conn.commit()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db: Database | None = None):
    db = db or get_db()
    for statement in schema_statements(db.backend):
        db.execute(statement)
    db.commit()


def schema_statements(backend: str) -> list[str]:
    if backend == "postgres":
        pk = "SERIAL PRIMARY KEY"
        ts = "TIMESTAMPTZ NOT NULL DEFAULT NOW()"
    else:
        pk = "INTEGER PRIMARY KEY AUTOINCREMENT"
        ts = "TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP"

    return [
        f"""
        CREATE TABLE IF NOT EXISTS verticals (
            id {pk},
            code TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS solutions (
            id {pk},
            code TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS partners (
            id {pk},
            company_name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            partner_type TEXT,
            contact_email TEXT,
            primary_contact_email TEXT,
            verticals TEXT NOT NULL DEFAULT '[]',
            solutions TEXT NOT NULL DEFAULT '[]',
            assa_abloy_products TEXT NOT NULL DEFAULT '[]',
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS team_members (
            id {pk},
            partner_id INTEGER NOT NULL REFERENCES partners (id),
            full_name TEXT NOT NULL,
            email TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS certifications (
            id {pk},
            team_member_id INTEGER NOT NULL REFERENCES team_members (id),
            certification_code TEXT,
            certification_name TEXT,
            product_code TEXT,
            status TEXT NOT NULL DEFAULT 'valid',
            issue_date TEXT,
            expiry_date TEXT,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS training_sessions (
            id {pk},
            title TEXT NOT NULL,
            assa_abloy_product TEXT,
            session_date TEXT,
            status TEXT NOT NULL DEFAULT 'registration_open',
            location_type TEXT,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tenders (
            id {pk},
            tender_code TEXT,
            title TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ('draft','published','response_period','under_review','awarded','cancelled')
            ),
            invitation_strategy TEXT NOT NULL DEFAULT 'qualified_only',
            invited_partners TEXT NOT NULL DEFAULT '[]',
            required_solutions TEXT NOT NULL DEFAULT '[]',
            vertical_id INTEGER,
            assa_abloy_products TEXT NOT NULL DEFAULT '[]',
            project_start_date TEXT,
            customer_name TEXT,
            customer_contact TEXT,
            project_location TEXT,
            project_language TEXT,
            required_service_coverage TEXT NOT NULL DEFAULT '[]',
            estimated_gross_value REAL,
            awarded_to INTEGER,
            awarded_project_id INTEGER,
            cancel_reason TEXT,
            published_at TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at {ts},
            updated_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tender_responses (
            id {pk},
            tender_id INTEGER NOT NULL REFERENCES tenders (id),
            partner_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'interest_submitted' CHECK (
                status IN ('interest_submitted','calculating','proposal_submitted','rejected','awarded')
            ),
            certification_status TEXT NOT NULL DEFAULT '{{}}',
            committed_training_sessions TEXT NOT NULL DEFAULT '[]',
            proposed_value REAL,
            proposal_document TEXT,
            meeting_date TEXT,
            team_assigned TEXT NOT NULL DEFAULT '[]',
            final_certification_status TEXT,
            rejection_reason TEXT,
            submitted_at TEXT,
            approved_at TEXT,
            proposal_submitted_at TEXT,
            rejected_at TEXT,
            awarded_at TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at {ts},
            updated_at {ts},
            UNIQUE (tender_id, partner_id)
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_tender_responses_single_winner
        ON tender_responses (tender_id)
        WHERE status = 'awarded'
        """,
        f"""
        CREATE TABLE IF NOT EXISTS projects (
            id {pk},
            tender_id INTEGER UNIQUE REFERENCES tenders (id),
            project_name TEXT NOT NULL,
            client_name TEXT,
            customer_contact TEXT,
            source TEXT NOT NULL DEFAULT 'tender',
            status TEXT NOT NULL DEFAULT 'assigned',
            solution_ids TEXT NOT NULL DEFAULT '[]',
            primary_solution INTEGER,
            additional_solutions TEXT NOT NULL DEFAULT '[]',
            assa_abloy_products TEXT NOT NULL DEFAULT '[]',
            vertical_id INTEGER,
            project_location TEXT,
            estimated_value REAL,
            start_date TEXT,
            assigned_partner_id INTEGER,
            assigned_team_members TEXT NOT NULL DEFAULT '[]',
            project_language TEXT,
            required_service_coverage TEXT NOT NULL DEFAULT '[]',
            notes TEXT,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS notifications (
            id {pk},
            user_email TEXT NOT NULL DEFAULT '',
            partner_id INTEGER,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            link TEXT,
            related_entity_type TEXT,
            related_entity_id INTEGER,
            dedupe_key TEXT UNIQUE,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at {ts}
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tender_ndas (
            id {pk},
            tender_id INTEGER NOT NULL REFERENCES tenders (id),
            partner_id INTEGER NOT NULL,
            user_email TEXT,
            nda_version TEXT NOT NULL,
            accepted_at TEXT NOT NULL,
            UNIQUE (tender_id, partner_id)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tender_questions (
            id {pk},
            tender_id INTEGER NOT NULL REFERENCES tenders (id),
            partner_id INTEGER NOT NULL,
            question TEXT NOT NULL,
            asked_by TEXT,
            asked_at TEXT NOT NULL,
            answer TEXT,
            answered_by TEXT,
            answered_at TEXT
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS ix_tender_questions_tender
        ON tender_questions (tender_id, partner_id, id)
        """,
        f"""
        CREATE TABLE IF NOT EXISTS tender_status_events (
            id {pk},
            tender_id INTEGER NOT NULL,
            entity TEXT NOT NULL CHECK (entity IN ('tender','response')),
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor TEXT,
            occurred_at {ts}
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS ix_tender_status_events_tender
        ON tender_status_events (tender_id, id)
        """,
        """
        CREATE INDEX IF NOT EXISTS ix_notifications_partner
        ON notifications (partner_id, id)
        """,
    ]
