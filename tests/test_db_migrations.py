import os
import sqlite3
import unittest

from partner_portal import create_app
from partner_portal.config import Config
from partner_portal.db import close_db
from partner_portal.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


def _index_exists(db_path: str, index_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND name = ?",
            (index_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="migrations")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        config = self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init)
        return create_app(config)

    def test_schema_not_created_when_auto_init_disabled(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "tenders"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        for table in ("tenders", "tender_responses", "tender_questions", "projects", "notifications", "tender_status_events"):
            self.assertTrue(_table_exists(self.db_path, table), table)
        self.assertTrue(_index_exists(self.db_path, "uq_tender_responses_single_winner"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "tenders"))
        self.assertTrue(_index_exists(self.db_path, "uq_tender_responses_single_winner"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "tenders"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "tender_responses"))

    def test_seed_demo_command(self) -> None:
        app = self._build_app(testing=True, db_auto_init=True)
        result = app.test_cli_runner().invoke(args=["seed-demo"])
        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertIn("Seeded 2 partners and 2 training sessions.", result.output)

    def test_sqlalchemy_url_normalization(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertEqual(to_sqlalchemy_url("sqlite:///x.db"), "sqlite:///x.db")
        self.assertTrue(to_sqlalchemy_url(self.db_path).startswith("sqlite:///"))
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


if __name__ == "__main__":
    unittest.main()
