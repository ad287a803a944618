from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import psycopg
from psycopg.types.json import Jsonb

from launch_store import EntityRecord, StoredToken, check_token_fresh


class LaunchStorePG:
    """Postgres-backed launch store (same methods as launch_store.LaunchStore).

    Tables:
      - credentials
      - ad_accounts
      - launch_entities
      - campaign_insights
    """

    def __init__(self, database_url: str, *, prefix: str = ""):
        self.database_url = database_url
        self.prefix = prefix.strip()
        self._init_db()

    def _conn(self):
        return psycopg.connect(self.database_url)

    def _t(self, name: str) -> str:
        return f"{self.prefix}{name}" if self.prefix else name

    def _init_db(self) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('credentials')} (
                      user_id TEXT PRIMARY KEY,
                      access_token TEXT NOT NULL,
                      expires_at TIMESTAMPTZ,
                      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('ad_accounts')} (
                      id TEXT PRIMARY KEY,
                      external_id TEXT NOT NULL,
                      name TEXT,
                      user_id TEXT
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('launch_entities')} (
                      external_id TEXT PRIMARY KEY,
                      type TEXT NOT NULL,
                      name TEXT NOT NULL,
                      parent_id TEXT,
                      ad_account_id TEXT,
                      status TEXT,
                      raw JSONB,
                      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('campaign_insights')} (
                      campaign_id TEXT NOT NULL,
                      date_start TEXT NOT NULL,
                      date_stop TEXT NOT NULL,
                      impressions BIGINT,
                      clicks BIGINT,
                      spend NUMERIC,
                      reach BIGINT,
                      raw JSONB,
                      updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                      PRIMARY KEY (campaign_id, date_start, date_stop)
                    )
                    """
                )
            conn.commit()

    # ---- credentials ----

    def put_credential(self, user_id: str, access_token: str, expires_at: Optional[datetime] = None) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._t('credentials')} (user_id, access_token, expires_at, updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (user_id) DO UPDATE SET
                      access_token=EXCLUDED.access_token,
                      expires_at=EXCLUDED.expires_at,
                      updated_at=now()
                    """,
                    (user_id, access_token, expires_at),
                )
            conn.commit()

    def get_credential(self, user_id: str) -> Optional[StoredToken]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT access_token, expires_at FROM {self._t('credentials')} WHERE user_id=%s",
                    (user_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return StoredToken(access_token=row[0], expires_at=row[1])

    def get_valid_access_token(self, user_id: str, *, refresh_buffer_minutes: int = 10) -> str:
        return check_token_fresh(self.get_credential(user_id), user_id, refresh_buffer_minutes=refresh_buffer_minutes)

    # ---- ad accounts ----

    def put_ad_account(self, account_id: str, external_id: str, *, name: str | None = None, user_id: str | None = None) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._t('ad_accounts')} (id, external_id, name, user_id)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                      external_id=EXCLUDED.external_id,
                      name=EXCLUDED.name,
                      user_id=EXCLUDED.user_id
                    """,
                    (account_id, external_id, name, user_id),
                )
            conn.commit()

    def get_ad_account(self, account_id: str) -> Optional[dict]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT id, external_id, name, user_id FROM {self._t('ad_accounts')} WHERE id=%s",
                    (account_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return {"id": row[0], "external_id": row[1], "name": row[2], "user_id": row[3]}

    def list_ad_accounts(self, user_id: str | None = None) -> List[dict]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                if user_id:
                    cur.execute(
                        f"SELECT id, external_id, name, user_id FROM {self._t('ad_accounts')} WHERE user_id=%s ORDER BY id",
                        (user_id,),
                    )
                else:
                    cur.execute(f"SELECT id, external_id, name, user_id FROM {self._t('ad_accounts')} ORDER BY id")
                rows = cur.fetchall()
        return [{"id": r[0], "external_id": r[1], "name": r[2], "user_id": r[3]} for r in rows]

    # ---- created entities ----

    def upsert(self, record: EntityRecord) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._t('launch_entities')}
                      (external_id, type, name, parent_id, ad_account_id, status, raw, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, now())
                    ON CONFLICT (external_id) DO UPDATE SET
                      name=EXCLUDED.name,
                      status=EXCLUDED.status,
                      raw=EXCLUDED.raw
                    """,
                    (
                        record.external_id,
                        record.type,
                        record.name,
                        record.parent_id,
                        record.ad_account_id,
                        record.status,
                        Jsonb(record.raw),
                    ),
                )
            conn.commit()

    def get(self, external_id: str) -> Optional[EntityRecord]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT external_id, type, name, parent_id, ad_account_id, status, raw
                    FROM {self._t('launch_entities')} WHERE external_id=%s
                    """,
                    (external_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return EntityRecord(
            external_id=row[0],
            type=row[1],
            name=row[2],
            parent_id=row[3],
            ad_account_id=row[4],
            status=row[5],
            raw=row[6] or {},
        )

    def list_children(self, parent_id: str) -> List[EntityRecord]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT external_id, type, name, parent_id, ad_account_id, status, raw
                    FROM {self._t('launch_entities')} WHERE parent_id=%s ORDER BY created_at
                    """,
                    (parent_id,),
                )
                rows = cur.fetchall()
        return [
            EntityRecord(external_id=r[0], type=r[1], name=r[2], parent_id=r[3], ad_account_id=r[4], status=r[5], raw=r[6] or {})
            for r in rows
        ]

    # ---- insights ----

    def upsert_campaign_insight(self, campaign_id: str, row: Dict[str, Any]) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._t('campaign_insights')}
                      (campaign_id, date_start, date_stop, impressions, clicks, spend, reach, raw, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, now())
                    ON CONFLICT (campaign_id, date_start, date_stop) DO UPDATE SET
                      impressions=EXCLUDED.impressions,
                      clicks=EXCLUDED.clicks,
                      spend=EXCLUDED.spend,
                      reach=EXCLUDED.reach,
                      raw=EXCLUDED.raw,
                      updated_at=now()
                    """,
                    (
                        campaign_id,
                        row.get("date_start") or "",
                        row.get("date_stop") or "",
                        int(row.get("impressions") or 0),
                        int(row.get("clicks") or 0),
                        float(row.get("spend") or 0),
                        int(row.get("reach") or 0),
                        Jsonb(row),
                    ),
                )
            conn.commit()

    def list_campaign_insights(self, campaign_id: str) -> List[dict]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT date_start, date_stop, impressions, clicks, spend, reach
                    FROM {self._t('campaign_insights')} WHERE campaign_id=%s ORDER BY date_start
                    """,
                    (campaign_id,),
                )
                rows = cur.fetchall()
        return [
            {"date_start": r[0], "date_stop": r[1], "impressions": r[2], "clicks": r[3], "spend": float(r[4] or 0), "reach": r[5]}
            for r in rows
        ]
