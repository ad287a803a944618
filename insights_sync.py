"""
Insight sync (read path, not part of a launch).

For every ad account a user owns: list campaigns, fetch their insights and store
them. Accounts are synced in parallel and every leg settles on its own, so one
failing account / campaign / save never blocks the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from graph_client import DEFAULT_API_VERSION, MetaClient, MetaConfig
from launch_store import EntityRecord

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = "impressions,clicks,spend,reach,ctr,cpc,cpm,actions"


class InsightSyncError(RuntimeError):
    pass


@dataclass
class AccountSyncReport:
    ad_account_id: str
    campaigns: int = 0
    insights_saved: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class SyncReport:
    accounts: List[AccountSyncReport] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": all(a.ok for a in self.accounts),
            "accounts": [
                {
                    "adAccountId": a.ad_account_id,
                    "campaigns": a.campaigns,
                    "insightsSaved": a.insights_saved,
                    "errors": list(a.errors),
                }
                for a in self.accounts
            ],
        }


def _settle(pool: ThreadPoolExecutor, fn: Callable[..., Any], items: List[Any]) -> List[Tuple[Any, Any, Optional[Exception]]]:
    """Run fn over items and collect (item, result, error) for each, never raising."""
    futures = {pool.submit(fn, item): item for item in items}
    out = []
    for fut in as_completed(futures):
        item = futures[fut]
        try:
            out.append((item, fut.result(), None))
        except Exception as e:  # settled: recorded per item
            out.append((item, None, e))
    return out


def sync_account(
    client: MetaClient,
    store,
    account: Dict[str, Any],
    *,
    date_preset: str = "last_30d",
    max_workers: int = 4,
) -> AccountSyncReport:
    report = AccountSyncReport(ad_account_id=account["id"])
    campaigns = client.list_campaigns(account["external_id"])
    report.campaigns = len(campaigns)

    for c in campaigns:
        store.upsert(EntityRecord(
            external_id=str(c["id"]),
            type="campaign",
            name=c.get("name") or "",
            ad_account_id=account["id"],
            status=c.get("status"),
            raw=c,
        ))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        fetched = _settle(
            pool,
            lambda c: client.get_insights(str(c["id"]), date_preset=date_preset, fields=INSIGHT_FIELDS),
            campaigns,
        )
        to_save: List[Tuple[str, Dict[str, Any]]] = []
        for c, rows, err in fetched:
            if err is not None:
                logger.warning("Insights fetch failed for campaign %s: %s", c.get("id"), err)
                report.errors.append(f"fetch {c.get('id')}: {err}")
                continue
            to_save.extend((str(c["id"]), row) for row in rows or [])

        saved = _settle(pool, lambda item: store.upsert_campaign_insight(item[0], item[1]), to_save)
        for (campaign_id, _row), _res, err in saved:
            if err is not None:
                logger.warning("Saving insights failed for campaign %s: %s", campaign_id, err)
                report.errors.append(f"save {campaign_id}: {err}")
            else:
                report.insights_saved += 1

    logger.info("Synced %d campaigns for account %s", report.campaigns, account["external_id"])
    return report


def sync_insights(
    user_id: str,
    *,
    store,
    date_preset: str = "last_30d",
    base_cfg: MetaConfig | None = None,
    client_factory: Callable[[MetaConfig], MetaClient] = MetaClient,
    max_workers: int = 4,
) -> SyncReport:
    try:
        token = store.get_valid_access_token(user_id)
    except RuntimeError as e:
        raise InsightSyncError(f"No usable access token: {e}") from e

    cfg = MetaConfig(
        access_token=token,
        api_version=base_cfg.api_version if base_cfg else DEFAULT_API_VERSION,
        app_secret=base_cfg.app_secret if base_cfg else None,
        timeout_s=base_cfg.timeout_s if base_cfg else 30,
    )
    client = client_factory(cfg)
    accounts = store.list_ad_accounts(user_id)

    report = SyncReport()
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        results = _settle(
            pool,
            lambda account: sync_account(client, store, account, date_preset=date_preset),
            accounts,
        )
    for account, account_report, err in results:
        if err is not None:
            logger.error("Error syncing account %s: %s", account.get("external_id"), err)
            account_report = AccountSyncReport(ad_account_id=account["id"], errors=[str(err)])
        report.accounts.append(account_report)
    report.accounts.sort(key=lambda a: a.ad_account_id)
    return report
