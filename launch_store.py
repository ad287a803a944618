"""
Local persistence for launches (SQLite).

Holds the rows the orchestrator reads and writes around a launch:
  - credentials       (access token per user)
  - ad_accounts       (internal id -> act_<id>)
  - entities          (created campaigns / ad sets / ads, keyed by remote id)
  - campaign_insights (rows written by the insight sync)

launch_store_pg.LaunchStorePG exposes the same methods on Postgres.
"""

from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

DEFAULT_STORE_PATH = ".launch_store.db"


@dataclass(frozen=True)
class StoredToken:
    access_token: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class EntityRecord:
    external_id: str
    type: str  # campaign | adset | ad
    name: str
    parent_id: Optional[str] = None
    ad_account_id: Optional[str] = None
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def check_token_fresh(tok: Optional[StoredToken], user_id: str, *, refresh_buffer_minutes: int = 10) -> str:
    if not tok:
        raise RuntimeError(f"No access token stored for user '{user_id}'.")
    if tok.expires_at is not None:
        expires_at = tok.expires_at if tok.expires_at.tzinfo else tok.expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= datetime.now(timezone.utc) + timedelta(minutes=refresh_buffer_minutes):
            # No refresh here: the token owner re-authenticates.
            raise RuntimeError(f"Stored token for '{user_id}' is expired/near-expiry (expires_at={expires_at.isoformat()}).")
    return tok.access_token


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class LaunchStore:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    user_id TEXT PRIMARY KEY,
                    access_token TEXT NOT NULL,
                    expires_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ad_accounts (
                    id TEXT PRIMARY KEY,
                    external_id TEXT NOT NULL,
                    name TEXT,
                    user_id TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    external_id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    parent_id TEXT,
                    ad_account_id TEXT,
                    status TEXT,
                    raw TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS campaign_insights (
                    campaign_id TEXT NOT NULL,
                    date_start TEXT NOT NULL,
                    date_stop TEXT NOT NULL,
                    impressions INTEGER,
                    clicks INTEGER,
                    spend REAL,
                    reach INTEGER,
                    raw TEXT,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (campaign_id, date_start, date_stop)
                )
                """
            )
            conn.commit()

    # ---- credentials ----

    def put_credential(self, user_id: str, access_token: str, expires_at: Optional[datetime] = None) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO credentials (user_id, access_token, expires_at, updated_at) VALUES (?, ?, ?, ?)",
                (
                    user_id,
                    access_token,
                    expires_at.isoformat() if expires_at else None,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()

    def get_credential(self, user_id: str) -> Optional[StoredToken]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT access_token, expires_at FROM credentials WHERE user_id=?", (user_id,)
            ).fetchone()
        if not row:
            return None
        return StoredToken(access_token=row[0], expires_at=_parse_ts(row[1]))

    def get_valid_access_token(self, user_id: str, *, refresh_buffer_minutes: int = 10) -> str:
        return check_token_fresh(self.get_credential(user_id), user_id, refresh_buffer_minutes=refresh_buffer_minutes)

    # ---- ad accounts ----

    def put_ad_account(self, account_id: str, external_id: str, *, name: str | None = None, user_id: str | None = None) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO ad_accounts (id, external_id, name, user_id) VALUES (?, ?, ?, ?)",
                (account_id, external_id, name, user_id),
            )
            conn.commit()

    def get_ad_account(self, account_id: str) -> Optional[dict]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, external_id, name, user_id FROM ad_accounts WHERE id=?", (account_id,)
            ).fetchone()
        if not row:
            return None
        return {"id": row[0], "external_id": row[1], "name": row[2], "user_id": row[3]}

    def list_ad_accounts(self, user_id: str | None = None) -> List[dict]:
        with sqlite3.connect(self.db_path) as conn:
            if user_id:
                rows = conn.execute(
                    "SELECT id, external_id, name, user_id FROM ad_accounts WHERE user_id=? ORDER BY id", (user_id,)
                ).fetchall()
            else:
                rows = conn.execute("SELECT id, external_id, name, user_id FROM ad_accounts ORDER BY id").fetchall()
        return [{"id": r[0], "external_id": r[1], "name": r[2], "user_id": r[3]} for r in rows]

    # ---- created entities ----

    def upsert(self, record: EntityRecord) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO entities
                (external_id, type, name, parent_id, ad_account_id, status, raw, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.external_id,
                    record.type,
                    record.name,
                    record.parent_id,
                    record.ad_account_id,
                    record.status,
                    json.dumps(record.raw, default=str),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()

    def get(self, external_id: str) -> Optional[EntityRecord]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT external_id, type, name, parent_id, ad_account_id, status, raw FROM entities WHERE external_id=?",
                (external_id,),
            ).fetchone()
        if not row:
            return None
        return EntityRecord(
            external_id=row[0],
            type=row[1],
            name=row[2],
            parent_id=row[3],
            ad_account_id=row[4],
            status=row[5],
            raw=json.loads(row[6]) if row[6] else {},
        )

    def list_children(self, parent_id: str) -> List[EntityRecord]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT external_id FROM entities WHERE parent_id=? ORDER BY created_at", (parent_id,)
            ).fetchall()
        return [rec for rec in (self.get(r[0]) for r in rows) if rec is not None]

    # ---- insights ----

    def upsert_campaign_insight(self, campaign_id: str, row: Dict[str, Any]) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO campaign_insights
                (campaign_id, date_start, date_stop, impressions, clicks, spend, reach, raw, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    campaign_id,
                    row.get("date_start") or "",
                    row.get("date_stop") or "",
                    int(row.get("impressions") or 0),
                    int(row.get("clicks") or 0),
                    float(row.get("spend") or 0),
                    int(row.get("reach") or 0),
                    json.dumps(row, default=str),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()

    def list_campaign_insights(self, campaign_id: str) -> List[dict]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT date_start, date_stop, impressions, clicks, spend, reach
                FROM campaign_insights WHERE campaign_id=? ORDER BY date_start
                """,
                (campaign_id,),
            ).fetchall()
        return [
            {"date_start": r[0], "date_stop": r[1], "impressions": r[2], "clicks": r[3], "spend": r[4], "reach": r[5]}
            for r in rows
        ]


def build_launch_store(store_path: str | None = None):
    """Factory: SQLite (default) or Postgres.

    Enable the Postgres store by setting:
      LAUNCH_STORE_SOURCE=db
      DATABASE_URL=...
    """
    load_dotenv(override=False)
    source = (os.getenv("LAUNCH_STORE_SOURCE") or "").strip().lower()
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if source == "db":
        if not database_url:
            raise ValueError("LAUNCH_STORE_SOURCE=db but DATABASE_URL is not set.")
        from launch_store_pg import LaunchStorePG

        return LaunchStorePG(database_url)
    return LaunchStore(Path(store_path or os.getenv("LAUNCH_STORE_PATH") or DEFAULT_STORE_PATH))
