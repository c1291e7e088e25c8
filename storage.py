# storage.py
import sqlite3, json
from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, List, Optional

DB = Path(__file__).with_name("bot.db")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pair_state (
  pair_id TEXT PRIMARY KEY,
  state TEXT NOT NULL,
  entry_z REAL,
  units_y REAL,
  units_x REAL,
  legs_json TEXT,
  roles TEXT,
  opened_at TEXT,
  halted INTEGER NOT NULL DEFAULT 0,
  halt_reason TEXT,
  updated_at TEXT
);

CREATE TABLE IF NOT EXISTS transitions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ts TEXT,
  pair_id TEXT,
  kind TEXT,
  side TEXT,
  from_state TEXT,
  to_state TEXT,
  z REAL,
  spread REAL,
  beta_raw REAL,
  beta_used REAL,
  inverted INTEGER,
  units_y REAL,
  units_x REAL,
  exit_reason TEXT
);

CREATE TABLE IF NOT EXISTS orders (
  order_id TEXT PRIMARY KEY,
  ts TEXT,
  market TEXT,
  side TEXT,
  units REAL,
  paper INTEGER
);
"""

def _conn():
    conn = sqlite3.connect(DB)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    with _conn() as c:
        c.executescript(_SCHEMA)


## PAIR STATE
def get_pair_state(pair_id: str) -> Optional[Dict]:
    with _conn() as c:
        row = c.execute("SELECT * FROM pair_state WHERE pair_id = ?", (pair_id,)).fetchone()
    if row is None:
        return None
    out = dict(row)
    out["legs"] = json.loads(out.pop("legs_json") or "[]")
    out["halted"] = bool(out["halted"])
    return out


def upsert_pair_state(row: dict):
    row = dict(row)
    row["legs_json"] = json.dumps(row.pop("legs", []))
    row["halted"] = int(bool(row.get("halted", False)))
    row.setdefault("halt_reason", None)
    row["updated_at"] = datetime.now(timezone.utc).isoformat()
    with _conn() as c:
        c.execute(
            """INSERT OR REPLACE INTO pair_state
               VALUES(:pair_id, :state, :entry_z, :units_y, :units_x,
                      :legs_json, :roles, :opened_at, :halted,
                      :halt_reason, :updated_at)""",
            row
        )


def set_halted(pair_id: str, halted: bool, reason: Optional[str] = None):
    with _conn() as c:
        cur = c.execute(
            "UPDATE pair_state SET halted = ?, halt_reason = ?, updated_at = ? WHERE pair_id = ?",
            (int(halted), reason, datetime.now(timezone.utc).isoformat(), pair_id)
        )
        if cur.rowcount == 0:
            c.execute(
                """INSERT INTO pair_state (pair_id, state, halted, halt_reason, updated_at)
                   VALUES (?, 'FLAT', ?, ?, ?)""",
                (pair_id, int(halted), reason, datetime.now(timezone.utc).isoformat())
            )


## TRANSITIONS
def save_transition(row: dict):
    with _conn() as c:
        c.execute(
            """INSERT INTO transitions
               (ts, pair_id, kind, side, from_state, to_state, z, spread,
                beta_raw, beta_used, inverted, units_y, units_x, exit_reason)
               VALUES(:ts, :pair_id, :kind, :side, :from_state, :to_state, :z, :spread,
                      :beta_raw, :beta_used, :inverted, :units_y, :units_x, :exit_reason)""",
            row
        )


def get_recent_transitions(pair_id: str, n: int = 10) -> List[Dict]:
    """Last `n` transitions of a pair, newest first."""
    with _conn() as c:
        rows = c.execute(
            "SELECT * FROM transitions WHERE pair_id = ? ORDER BY id DESC LIMIT ?",
            (pair_id, n)
        ).fetchall()
    return [dict(r) for r in rows]


## ORDERS
def save_order(row: dict):
    with _conn() as c:
        c.execute(
            """INSERT OR REPLACE INTO orders
               VALUES(:order_id, :ts, :market, :side, :units, :paper)""",
            row
        )


def list_orders(limit: int = 50) -> List[Dict]:
    with _conn() as c:
        rows = c.execute(
            "SELECT * FROM orders ORDER BY ts DESC LIMIT ?", (limit,)
        ).fetchall()
    return [dict(r) for r in rows]
