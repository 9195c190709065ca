from __future__ import annotations

import json
from typing import Any, Iterable


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def insert_returning_id(db, sql: str, params: Iterable[Any]) -> int:
        # Drain the cursor so SQLite finalizes the statement before COMMIT.
        rows = db.execute(sql, tuple(params)).fetchall()
        row = rows[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def json_loads(value: Any, default: Any):
        if value is None:
            return default
        if isinstance(value, (list, dict)):
            return value
        raw = str(value).strip()
        if not raw:
            return default
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return default
        return parsed if isinstance(parsed, type(default)) else default

    @staticmethod
    def json_dumps(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=True, default=str)
