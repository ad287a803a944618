"""
Platform adapters for the simple launch path.

Every adapter exposes the same capability set (ensure_auth, create_campaign,
create_adset, create_ad, get_metrics). create_adapter() picks one from
(platform, dry_run); platforms without an adapter fail fast.
"""

from __future__ import annotations

import abc
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from blueprints import Budget
from creative_specs import WebsiteDestination, build_call_to_action, build_targeting, to_minor_units
from graph_client import MetaAPIError, MetaClient

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = ("META", "GOOGLE", "LINKEDIN", "SNAP")


class AuthError(RuntimeError):
    pass


class PlatformNotImplementedError(NotImplementedError):
    pass


# -----------------------------
# Adapter inputs / outputs
# -----------------------------

@dataclass(frozen=True)
class CampaignInput:
    name: str
    objective: str
    status: str = "PAUSED"
    budget: Optional[Budget] = None


@dataclass(frozen=True)
class AdSetInput:
    campaign_id: str
    name: str
    status: str = "PAUSED"
    targeting: Dict[str, Any] = field(default_factory=dict)
    budget: Optional[Budget] = None
    billing_event: str = "IMPRESSIONS"
    optimization_goal: str = "LINK_CLICKS"

    def __post_init__(self) -> None:
        if not self.campaign_id:
            raise ValueError("AdSetInput requires campaign_id")


@dataclass(frozen=True)
class AdCreativeInput:
    title: str
    body: str
    image_url: Optional[str] = None
    call_to_action: Optional[str] = None
    link: Optional[str] = None


@dataclass(frozen=True)
class AdInput:
    adset_id: str
    name: str
    creative: AdCreativeInput
    status: str = "PAUSED"

    def __post_init__(self) -> None:
        if not self.adset_id:
            raise ValueError("AdInput requires adset_id")


@dataclass(frozen=True)
class MetricsScope:
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    ad_id: Optional[str] = None


def _create_result(platform: str, external_id: str, echoed: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": external_id, "platform": platform, "created_at": datetime.now(timezone.utc), **echoed}


def derive_metrics(impressions: float, clicks: float, spend: float, conversions: float | None = None) -> Dict[str, Any]:
    return {
        "impressions": int(impressions),
        "clicks": int(clicks),
        "spend": float(spend),
        "conversions": conversions,
        "ctr": (clicks / impressions) * 100 if impressions else 0.0,
        "cpc": spend / clicks if clicks else 0.0,
        "cpm": (spend / impressions) * 1000 if impressions else 0.0,
    }


class PlatformAdapter(abc.ABC):
    name: str = ""

    @abc.abstractmethod
    def ensure_auth(self, org_id: str, connection_id: str) -> None: ...

    @abc.abstractmethod
    def create_campaign(self, data: CampaignInput) -> Dict[str, Any]: ...

    @abc.abstractmethod
    def create_adset(self, data: AdSetInput) -> Dict[str, Any]: ...

    @abc.abstractmethod
    def create_ad(self, data: AdInput) -> Dict[str, Any]: ...

    @abc.abstractmethod
    def get_metrics(self, scope: MetricsScope, date_from: str, date_to: str) -> List[Dict[str, Any]]: ...


# -----------------------------
# Dry run
# -----------------------------

class DryRunAdapter(PlatformAdapter):
    """Simulates every call without network I/O and keeps a log of what it was asked to do."""

    def __init__(self, platform: str = "META"):
        self.name = platform
        self.operations: List[Dict[str, Any]] = []

    def _record(self, op: str, data: Any, prefix: str) -> Dict[str, Any]:
        echoed = {k: v for k, v in vars(data).items()}
        result = _create_result(self.name, f"dryrun_{prefix}_{secrets.token_hex(6)}", echoed)
        self.operations.append({
            "type": op,
            "input": data,
            "result": result,
            "timestamp": datetime.now(timezone.utc),
        })
        return result

    def ensure_auth(self, org_id: str, connection_id: str) -> None:
        logger.info("[DRY RUN] %s ensure_auth(org_id=%s, connection_id=%s)", self.name, org_id, connection_id)

    def create_campaign(self, data: CampaignInput) -> Dict[str, Any]:
        logger.info("[DRY RUN] %s create_campaign(name=%s)", self.name, data.name)
        return self._record("create_campaign", data, "campaign")

    def create_adset(self, data: AdSetInput) -> Dict[str, Any]:
        logger.info("[DRY RUN] %s create_adset(name=%s)", self.name, data.name)
        return self._record("create_adset", data, "adset")

    def create_ad(self, data: AdInput) -> Dict[str, Any]:
        logger.info("[DRY RUN] %s create_ad(name=%s)", self.name, data.name)
        return self._record("create_ad", data, "ad")

    def get_metrics(self, scope: MetricsScope, date_from: str, date_to: str) -> List[Dict[str, Any]]:
        logger.info("[DRY RUN] %s get_metrics(%s, %s, %s)", self.name, scope, date_from, date_to)
        return [derive_metrics(10000, 500, 100.0, 50)]

    def reset(self) -> None:
        self.operations = []


# -----------------------------
# Meta (Graph API)
# -----------------------------

class MetaAdapter(PlatformAdapter):
    name = "META"

    def __init__(self, client: MetaClient):
        self.client = client
        # Campaigns created with a budget own it (CBO); their ad sets must not carry one.
        self._cbo_campaigns: set[str] = set()

    def ensure_auth(self, org_id: str, connection_id: str) -> None:
        if not self.client.cfg.access_token:
            raise AuthError("No access token configured")
        try:
            me = self.client.whoami()
        except MetaAPIError as e:
            raise AuthError(f"Meta authentication failed: {e}") from e
        logger.info("Authenticated as %s for org=%s connection=%s", me.get("id"), org_id, connection_id)

    def create_campaign(self, data: CampaignInput) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": data.name,
            "objective": data.objective,
            "status": data.status,
            "special_ad_categories": [],
        }
        if data.budget is not None:
            field_name = "daily_budget" if data.budget.type == "DAILY" else "lifetime_budget"
            payload[field_name] = to_minor_units(data.budget.amount)
            payload["bid_strategy"] = "LOWEST_COST_WITHOUT_CAP"
        resp = self.client.create_campaign(payload)
        campaign_id = str(resp["id"])
        if data.budget is not None:
            self._cbo_campaigns.add(campaign_id)
        logger.info("Created campaign %s (%s)", campaign_id, data.name)
        return _create_result(self.name, campaign_id, {"name": data.name, "objective": data.objective, "status": data.status})

    def create_adset(self, data: AdSetInput) -> Dict[str, Any]:
        t = data.targeting or {}
        targeting = build_targeting(
            age_min=t.get("age_min", 18),
            age_max=t.get("age_max", 65),
            countries=t.get("locations") or [],
            audience_type="INTEREST",
            interests=t.get("interests") or [],
        )
        payload: Dict[str, Any] = {
            "name": data.name,
            "campaign_id": data.campaign_id,
            "status": data.status,
            "billing_event": data.billing_event,
            "optimization_goal": data.optimization_goal,
            "targeting": targeting,
            "is_dynamic_creative": False,
        }
        if data.budget is not None and data.campaign_id not in self._cbo_campaigns:
            field_name = "daily_budget" if data.budget.type == "DAILY" else "lifetime_budget"
            payload[field_name] = to_minor_units(data.budget.amount)
            payload["bid_strategy"] = "LOWEST_COST_WITHOUT_CAP"
        resp = self.client.create_adset(payload)
        adset_id = str(resp["id"])
        logger.info("Created ad set %s (%s)", adset_id, data.name)
        return _create_result(self.name, adset_id, {"name": data.name, "campaign_id": data.campaign_id, "targeting": targeting})

    def create_ad(self, data: AdInput) -> Dict[str, Any]:
        page_id = self.client.cfg.page_id
        if not page_id:
            raise ValueError("META_PAGE_ID is required to create ads.")
        c = data.creative
        if not c.link:
            raise ValueError(f"Ad {data.name!r} has no destination link.")

        link_data: Dict[str, Any] = {
            "link": c.link,
            "message": c.body,
            "name": c.title,
            "call_to_action": build_call_to_action(c.call_to_action or "Learn More", WebsiteDestination(url=c.link)),
        }
        if c.image_url:
            image = self.client.upload_image_url(c.image_url, name=data.name)
            link_data["image_hash"] = image["hash"]

        creative = self.client.create_adcreative({
            "name": f"{data.name} - Creative",
            "object_story_spec": {"page_id": page_id, "link_data": link_data},
        })
        resp = self.client.create_ad({
            "name": data.name,
            "adset_id": data.adset_id,
            "creative": {"creative_id": creative["id"]},
            "status": data.status,
        })
        ad_id = str(resp["id"])
        logger.info("Created ad %s (%s) with creative %s", ad_id, data.name, creative["id"])
        return _create_result(self.name, ad_id, {"name": data.name, "adset_id": data.adset_id, "creative_id": creative["id"]})

    def get_metrics(self, scope: MetricsScope, date_from: str, date_to: str) -> List[Dict[str, Any]]:
        object_id = scope.ad_id or scope.adset_id or scope.campaign_id or self.client.cfg.ad_account_id
        rows = self.client.get_insights(
            object_id,
            time_range={"since": date_from, "until": date_to},
            fields="impressions,clicks,spend,actions",
        )
        metrics = []
        for row in rows:
            conversions = sum(
                float(a.get("value") or 0)
                for a in row.get("actions") or []
                if str(a.get("action_type", "")).startswith("offsite_conversion") or a.get("action_type") == "lead"
            )
            metrics.append(derive_metrics(
                float(row.get("impressions") or 0),
                float(row.get("clicks") or 0),
                float(row.get("spend") or 0),
                conversions,
            ))
        return metrics


# -----------------------------
# Factory
# -----------------------------

def supported_platforms() -> List[str]:
    return list(SUPPORTED_PLATFORMS)


def is_platform_supported(platform: str) -> bool:
    return (platform or "").upper() in SUPPORTED_PLATFORMS


def create_adapter(platform: str, *, dry_run: bool = False, client: MetaClient | None = None) -> PlatformAdapter:
    platform = (platform or "").upper()
    if dry_run:
        logger.info("Creating DryRunAdapter for %s", platform)
        return DryRunAdapter(platform)

    if platform == "META":
        if client is None:
            raise ValueError("MetaAdapter requires a configured MetaClient.")
        return MetaAdapter(client)
    if platform in ("GOOGLE", "LINKEDIN", "SNAP"):
        raise PlatformNotImplementedError(f"{platform.title()}Adapter not implemented yet")
    raise PlatformNotImplementedError(f"Unsupported platform: {platform}")
