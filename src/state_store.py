import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional


# finalize steps, in execution order
JOURNAL_STEPS = ["started", "recorded", "removed", "archived", "rendered", "published", "saved", "done"]


def default_db_path(data_dir: str = "data") -> str:
    return os.getenv("INVOICE_STATE_DB", os.path.join(data_dir, "invoice_state.db"))


class StateStore:
    """sqlite-backed audit trail and finalize journal."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def _conn(self):
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        con = sqlite3.connect(self.db_path)
        con.execute("PRAGMA journal_mode=WAL;")
        try:
            yield con
            con.commit()
        finally:
            con.close()

    def init_db(self):
        with self._conn() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                  ts TEXT,
                  level TEXT,
                  actor TEXT,
                  action TEXT,
                  target_ids TEXT,
                  score INTEGER,
                  result TEXT,
                  error TEXT
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS finalize_journal (
                  invoice_number INTEGER PRIMARY KEY,
                  payload_json TEXT,
                  step TEXT,
                  error TEXT,
                  updated_at TEXT
                );
                """
            )

    def write_audit(self, level: str, actor: str, action: str, target_ids: list, score: int, result: str, error: str | None = None):
        with self._conn() as con:
            con.execute(
                "INSERT INTO audit_log(ts, level, actor, action, target_ids, score, result, error) VALUES (?,?,?,?,?,?,?,?)",
                (datetime.now(timezone.utc).isoformat(), level, actor, action, json.dumps(target_ids), score, result, error),
            )

    def read_audit(self, action: Optional[str] = None) -> List[Dict]:
        sql = "SELECT ts, level, actor, action, target_ids, score, result, error FROM audit_log"
        params: tuple = ()
        if action:
            sql += " WHERE action=?"
            params = (action,)
        with self._conn() as con:
            rows = con.execute(sql + " ORDER BY rowid", params).fetchall()
        return [
            {
                "ts": ts,
                "level": level,
                "actor": actor,
                "action": act,
                "target_ids": json.loads(target_ids or "[]"),
                "score": score,
                "result": result,
                "error": error,
            }
            for ts, level, actor, act, target_ids, score, result, error in rows
        ]

    def start_journal(self, invoice_number: int, payload: Dict):
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO finalize_journal(invoice_number, payload_json, step, error, updated_at) VALUES (?,?,?,?,?)",
                (invoice_number, json.dumps(payload, ensure_ascii=False), "started", None, datetime.now(timezone.utc).isoformat()),
            )

    def advance_journal(self, invoice_number: int, step: str):
        if step not in JOURNAL_STEPS:
            raise ValueError(f"unknown journal step: {step}")
        with self._conn() as con:
            con.execute(
                "UPDATE finalize_journal SET step=?, error=NULL, updated_at=? WHERE invoice_number=?",
                (step, datetime.now(timezone.utc).isoformat(), invoice_number),
            )

    def fail_journal(self, invoice_number: int, error: str):
        with self._conn() as con:
            con.execute(
                "UPDATE finalize_journal SET error=?, updated_at=? WHERE invoice_number=?",
                (error, datetime.now(timezone.utc).isoformat(), invoice_number),
            )

    def get_journal(self, invoice_number: int) -> Optional[Dict]:
        with self._conn() as con:
            row = con.execute(
                "SELECT payload_json, step, error, updated_at FROM finalize_journal WHERE invoice_number=?",
                (invoice_number,),
            ).fetchone()
        if not row:
            return None
        payload_json, step, error, updated_at = row
        return {
            "invoice_number": invoice_number,
            "payload": json.loads(payload_json or "{}"),
            "step": step,
            "error": error,
            "updated_at": updated_at,
        }

    def incomplete_journals(self) -> List[Dict]:
        with self._conn() as con:
            rows = con.execute(
                "SELECT invoice_number FROM finalize_journal WHERE step != 'done' ORDER BY updated_at"
            ).fetchall()
        return [self.get_journal(r[0]) for r in rows]


def step_reached(current: str, step: str) -> bool:
    """True once ``current`` is at or past ``step``."""
    return JOURNAL_STEPS.index(current) >= JOURNAL_STEPS.index(step)
