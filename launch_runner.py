"""
Simple launch path: blueprint -> expansion -> adapter calls.

One campaign per value prop, one ad set per audience under it, one ad per ad set.
A failed create only drops its own subtree; auth and validation failures abort
the whole run before anything is created.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from blueprints import Audience, Blueprint, ExpansionParams, create_creative_variant, expand_blueprint
from outcomes import BranchReport, attempt
from providers import AdCreativeInput, AdInput, AdSetInput, CampaignInput, PlatformAdapter

logger = logging.getLogger(__name__)

DEFAULT_ORG_ID = "org-default"
DEFAULT_CONNECTION_ID = "connection-default"


class LaunchError(RuntimeError):
    """Fatal launch failure: nothing (further) was created."""


class BlueprintValidationError(ValueError):
    pass


@dataclass(frozen=True)
class CreatedEntity:
    type: str  # campaign | adset | ad
    external_id: str
    name: str
    parent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"type": self.type, "externalId": self.external_id, "name": self.name}
        if self.parent_id:
            d["parentId"] = self.parent_id
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d


@dataclass(frozen=True)
class LaunchResult:
    blueprint_id: str
    blueprint_name: str
    platform: str
    created: Tuple[CreatedEntity, ...]
    total_created: Dict[str, int]
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    errors: Tuple[Dict[str, str], ...]

    @property
    def success(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            "blueprintId": self.blueprint_id,
            "blueprintName": self.blueprint_name,
            "platform": self.platform,
            "created": [e.as_dict() for e in self.created],
            "totalCreated": dict(self.total_created),
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "durationMs": self.duration_ms,
            "errors": [dict(e) for e in self.errors],
        }


def validate_blueprint(blueprint: Blueprint) -> None:
    """Pre-flight check, no side effects. Raises BlueprintValidationError."""
    if not (blueprint.name or "").strip():
        raise BlueprintValidationError("Blueprint must have a name")
    if not (blueprint.platform or "").strip():
        raise BlueprintValidationError("Blueprint must have a platform")
    config = blueprint.config
    if config is None:
        raise BlueprintValidationError("Blueprint must have a config")
    if not config.budget or config.budget <= 0:
        raise BlueprintValidationError("Blueprint must have a valid budget")
    creative = config.creative
    if creative is None or not creative.headline or not creative.description:
        raise BlueprintValidationError("Blueprint must have valid creative")
    if config.target_audience is None or not config.target_audience.locations:
        raise BlueprintValidationError("Blueprint must have at least one target location")


# -----------------------------
# Branches
# -----------------------------

def _ad_branch(
    adapter: PlatformAdapter,
    params: ExpansionParams,
    adset: CreatedEntity,
    value_prop: str,
) -> BranchReport:
    report = BranchReport()
    ad_name = f"{adset.name} - Ad"

    def create() -> CreatedEntity:
        variant = create_creative_variant(params.creative, value_prop)
        resp = adapter.create_ad(AdInput(
            adset_id=adset.external_id,
            name=ad_name,
            status="PAUSED",
            creative=AdCreativeInput(
                title=variant.headline,
                body=variant.description,
                image_url=variant.image_url,
                call_to_action=variant.call_to_action,
                link=variant.link_url,
            ),
        ))
        logger.info("Ad created: %s", resp["id"])
        return CreatedEntity("ad", str(resp["id"]), ad_name, adset.external_id, {"valueProp": value_prop})

    report.add(attempt(ad_name, create, kind="ad"))
    return report


def _adset_branch(
    adapter: PlatformAdapter,
    params: ExpansionParams,
    campaign: CreatedEntity,
    value_prop: str,
    audience: Audience,
    index: int,
) -> BranchReport:
    report = BranchReport()
    adset_name = f"{campaign.name} - {audience.name}"

    def create() -> CreatedEntity:
        resp = adapter.create_adset(AdSetInput(
            campaign_id=campaign.external_id,
            name=adset_name,
            status="PAUSED",
            targeting={
                "age_min": audience.age_min,
                "age_max": audience.age_max,
                "locations": list(audience.locations),
                "interests": list(audience.interests),
            },
            budget=params.budget,
        ))
        logger.info("Ad set created: %s", resp["id"])
        return CreatedEntity(
            "adset", str(resp["id"]), adset_name, campaign.external_id, {"audience": audience.name, "index": index}
        )

    outcome = attempt(adset_name, create, kind="adset")
    if report.add(outcome):
        report.merge(_ad_branch(adapter, params, outcome.value, value_prop))
    return report


def _campaign_branch(
    adapter: PlatformAdapter,
    blueprint: Blueprint,
    params: ExpansionParams,
    value_prop: str,
    index: int,
) -> BranchReport:
    report = BranchReport()
    campaign_name = f"{blueprint.name} - {value_prop}"

    def create() -> CreatedEntity:
        resp = adapter.create_campaign(CampaignInput(
            name=campaign_name,
            objective="CONVERSIONS",
            status="PAUSED",
            budget=params.budget,
        ))
        logger.info("Campaign created: %s", resp["id"])
        return CreatedEntity("campaign", str(resp["id"]), campaign_name, None, {"valueProp": value_prop, "index": index})

    outcome = attempt(campaign_name, create, kind="campaign")
    if report.add(outcome):
        for audience_index, audience in enumerate(params.audiences):
            report.merge(_adset_branch(adapter, params, outcome.value, value_prop, audience, audience_index))
    return report


# -----------------------------
# Entry point
# -----------------------------

def run_launch(blueprint: Blueprint, adapter: PlatformAdapter, *, dry_run: bool = False) -> LaunchResult:
    """Launch one blueprint through `adapter`. Raises LaunchError / BlueprintValidationError on fatal failures."""
    validate_blueprint(blueprint)

    started_at = datetime.now(timezone.utc)
    t0 = time.monotonic()
    logger.info("Starting launch for blueprint %r on %s (dry_run=%s)", blueprint.name, blueprint.platform, dry_run)

    try:
        adapter.ensure_auth(DEFAULT_ORG_ID, DEFAULT_CONNECTION_ID)
        params = expand_blueprint(blueprint.config)
    except Exception as e:
        logger.error("Launch failed: %s", e)
        raise LaunchError(f"Launch failed: {e}") from e

    logger.info("Expansion: %d value props x %d audiences", len(params.value_props), len(params.audiences))

    report = BranchReport()
    for index, value_prop in enumerate(params.value_props):
        report.merge(_campaign_branch(adapter, blueprint, params, value_prop, index))

    created: List[CreatedEntity] = list(report.created)
    total_created = {
        "campaigns": sum(1 for e in created if e.type == "campaign"),
        "adsets": sum(1 for e in created if e.type == "adset"),
        "ads": sum(1 for e in created if e.type == "ad"),
    }
    completed_at = datetime.now(timezone.utc)
    duration_ms = int((time.monotonic() - t0) * 1000)

    logger.info(
        "Launch completed in %dms: %d campaigns, %d adsets, %d ads",
        duration_ms,
        total_created["campaigns"],
        total_created["adsets"],
        total_created["ads"],
    )
    if report.errors:
        logger.warning("%d errors occurred during launch", len(report.errors))

    return LaunchResult(
        blueprint_id=blueprint.id,
        blueprint_name=blueprint.name,
        platform=blueprint.platform,
        created=tuple(created),
        total_created=total_created,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=duration_ms,
        errors=tuple({"entity": e.entity, "error": e.error} for e in report.errors),
    )
