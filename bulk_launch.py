"""
Bulk campaign launch
====================

Creates one campaign, N ad sets and M ads per ad set straight against the Graph API
from a wizard-assembled tree:

    BulkLaunchRequest
      campaign: CampaignConfig        (budget mode CBO/ABO, schedule, url tags)
      adSets:   [AdSetConfig]         (targeting, optimization event, ads)
                  ads: [AdConfig]     (media refs, copy, CTA, destination)

Failure scope:
  - missing credential / ad account, or the campaign create itself -> LaunchError
  - an ad set failing                                              -> recorded, its ads skipped
  - an ad failing (media, creative or ad create)                   -> recorded, siblings continue
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from creative_specs import (
    MediaAsset,
    annotate_ad_name,
    build_creative,
    build_promoted_object,
    build_targeting,
    optimization_goal_for,
    parse_destination,
    pick_trace_asset,
    to_minor_units,
)
from graph_client import DEFAULT_API_VERSION, MetaClient, MetaConfig
from launch_runner import LaunchError
from launch_store import EntityRecord
from media_upload import MediaUploader, ProgressCallback
from outcomes import BranchReport, attempt

logger = logging.getLogger(__name__)


# -----------------------------
# Request tree
# -----------------------------

class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CampaignConfig(_Model):
    name: str
    objective: str
    budget_mode: Literal["CBO", "ABO"] = Field(default="CBO", alias="budgetMode")
    budget: Optional[float] = None
    budget_type: Literal["daily", "lifetime"] = Field(default="daily", alias="budgetType")
    start_date: str = Field(default="NOW", alias="startDate")
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    url_tags: Optional[str] = Field(default=None, alias="urlTags")
    display_link: Optional[str] = Field(default=None, alias="displayLink")

    @model_validator(mode="after")
    def _check_budget(self) -> "CampaignConfig":
        if self.budget_mode == "CBO" and (self.budget is None or self.budget <= 0):
            raise ValueError("CBO campaigns require a positive campaign budget.")
        return self


class Demographics(_Model):
    age_min: int = Field(default=18, alias="ageMin")
    age_max: int = Field(default=65, alias="ageMax")
    gender: str = "All"


class GeoLocations(_Model):
    countries: List[str] = Field(default_factory=list)
    regions: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    cities: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)


class AudienceConfig(_Model):
    type: str = "BROAD"
    name: str = ""
    interests: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    custom_audience_id: Optional[str] = Field(default=None, alias="customAudienceId")


class DestinationConfig(_Model):
    type: Literal["LANDING_PAGE", "LEAD_FORM", "DEEPLINK"] = "LANDING_PAGE"
    url: Optional[str] = None
    form_id: Optional[str] = Field(default=None, alias="formId")
    deeplink: Optional[str] = None


class AdConfig(_Model):
    name: str
    format: Literal["Image", "Video"] = "Image"
    label: Optional[str] = None
    creative_url: str = Field(alias="creativeUrl")
    creative_url_story: Optional[str] = Field(default=None, alias="creativeUrlStory")
    headline: str = ""
    primary_text: str = Field(default="", alias="primaryText")
    cta: str = "Learn More"
    destination: DestinationConfig = Field(default_factory=DestinationConfig)

    def __repr__(self) -> str:
        # creative urls can be multi-MB data URLs
        return f"AdConfig(name={self.name!r}, format={self.format!r})"


class AdSetConfig(_Model):
    name: str
    audience: AudienceConfig = Field(default_factory=AudienceConfig)
    placements: List[str] = Field(default_factory=list)
    geo_locations: GeoLocations = Field(default_factory=GeoLocations, alias="geoLocations")
    demographics: Demographics = Field(default_factory=Demographics)
    optimization_event: str = Field(default="Link Clicks", alias="optimizationEvent")
    budget: Optional[float] = None
    budget_type: Literal["daily", "lifetime"] = Field(default="daily", alias="budgetType")
    ads: List[AdConfig] = Field(default_factory=list)


class BulkLaunchRequest(_Model):
    campaign: CampaignConfig
    ad_sets: List[AdSetConfig] = Field(default_factory=list, alias="adSets")
    facebook_page_id: str = Field(alias="facebookPageId")
    facebook_pixel_id: Optional[str] = Field(default=None, alias="facebookPixelId")
    instagram_account_id: Optional[str] = Field(default=None, alias="instagramAccountId")
    custom_event_type: Optional[str] = Field(default=None, alias="customEventType")
    custom_event_str: Optional[str] = Field(default=None, alias="customEventStr")
    custom_conversion_id: Optional[str] = Field(default=None, alias="customConversionId")


# -----------------------------
# Result
# -----------------------------

@dataclass
class BulkLaunchResult:
    campaign_id: str
    campaign: Dict[str, Any]
    ad_sets: List[Dict[str, Any]] = field(default_factory=list)
    ads: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "campaignId": self.campaign_id,
            "results": {
                "campaign": self.campaign,
                "adSets": list(self.ad_sets),
                "ads": list(self.ads),
                "errors": list(self.errors),
            },
        }


# -----------------------------
# Payloads
# -----------------------------

def build_datetime(date: str, time: str | None = None) -> str:
    return f"{date}T{time or '12:00'}:00"


def resolve_start_time(campaign: CampaignConfig) -> str:
    if campaign.start_date == "NOW":
        return "NOW"
    return build_datetime(campaign.start_date, campaign.start_time)


def _budget_field(budget_type: str) -> str:
    return "daily_budget" if budget_type == "daily" else "lifetime_budget"


def build_campaign_payload(campaign: CampaignConfig) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": campaign.name,
        "objective": campaign.objective,
        "status": "PAUSED",
        "special_ad_categories": [],
        "start_time": resolve_start_time(campaign),
    }
    if campaign.budget_mode == "CBO":
        payload["bid_strategy"] = "LOWEST_COST_WITHOUT_CAP"
        payload[_budget_field(campaign.budget_type)] = to_minor_units(campaign.budget)
    if campaign.end_date:
        payload["stop_time"] = build_datetime(campaign.end_date, campaign.end_time)
    return payload


def build_adset_payload(request: BulkLaunchRequest, cfg: AdSetConfig, campaign_id: str) -> Dict[str, Any]:
    targeting = build_targeting(
        age_min=cfg.demographics.age_min,
        age_max=cfg.demographics.age_max,
        gender=cfg.demographics.gender,
        countries=cfg.geo_locations.countries,
        regions=cfg.geo_locations.regions,
        cities=cfg.geo_locations.cities,
        audience_type=cfg.audience.type,
        interests=cfg.audience.interests,
        custom_audience_id=cfg.audience.custom_audience_id,
        placements=cfg.placements,
    )
    optimization_goal = optimization_goal_for(cfg.optimization_event)
    promoted_object = build_promoted_object(
        optimization_goal=optimization_goal,
        campaign_objective=request.campaign.objective,
        page_id=request.facebook_page_id,
        pixel_id=request.facebook_pixel_id,
        custom_event_type=request.custom_event_type,
        custom_event_str=request.custom_event_str,
        custom_conversion_id=request.custom_conversion_id,
    )

    payload: Dict[str, Any] = {
        "name": cfg.name,
        "campaign_id": campaign_id,
        "status": "ACTIVE",
        "optimization_goal": optimization_goal,
        "billing_event": "IMPRESSIONS",
        "targeting": targeting,
        # PAC is not dynamic creative.
        "is_dynamic_creative": False,
    }
    if request.campaign.budget_mode == "ABO":
        if cfg.budget is None or cfg.budget <= 0:
            raise ValueError(f"Ad set {cfg.name!r} needs a positive budget when the campaign uses ABO.")
        payload["bid_strategy"] = "LOWEST_COST_WITHOUT_CAP"
        payload[_budget_field(cfg.budget_type)] = to_minor_units(cfg.budget)
    if promoted_object:
        payload["promoted_object"] = promoted_object
    return payload


# -----------------------------
# Orchestrator
# -----------------------------

class BulkCampaignLauncher:
    def __init__(
        self,
        client: MetaClient,
        store,
        *,
        ad_account: Dict[str, Any],
        uploader: MediaUploader | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.client = client
        self.store = store
        self.ad_account = ad_account
        self.uploader = uploader or MediaUploader.from_env(client, ad_account["external_id"])
        self.on_progress = on_progress

    def _persist(self, kind: str, resp: Dict[str, Any], name: str, parent_id: str | None, status: str) -> None:
        self.store.upsert(EntityRecord(
            external_id=str(resp["id"]),
            type=kind,
            name=name,
            parent_id=parent_id,
            ad_account_id=self.ad_account["id"],
            status=status,
            raw=resp,
        ))

    def _resolve_media(self, ad: AdConfig) -> Tuple[Optional[MediaAsset], Optional[MediaAsset]]:
        """Feed and story legs run concurrently; either failing fails the ad."""
        kind = "video" if ad.format == "Video" else "image"
        with ThreadPoolExecutor(max_workers=2) as pool:
            feed_f = pool.submit(
                self.uploader.resolve, ad.creative_url, kind=kind, name=f"{ad.name} - Feed", on_progress=self.on_progress
            )
            story_f = None
            if ad.creative_url_story:
                story_f = pool.submit(
                    self.uploader.resolve,
                    ad.creative_url_story,
                    kind=kind,
                    name=f"{ad.name} - Story",
                    on_progress=self.on_progress,
                )
            feed = feed_f.result()
            story = story_f.result() if story_f is not None else None
        logger.info("Media resolved for ad %r (feed=%s, story=%s)", ad.name, bool(feed), bool(story))
        return feed, story

    def _create_ad(self, request: BulkLaunchRequest, ad: AdConfig, adset_id: str) -> Dict[str, Any]:
        logger.info("Creating ad %r (format=%s, story=%s)", ad.name, ad.format, bool(ad.creative_url_story))
        destination = parse_destination(ad.destination.model_dump(by_alias=True))
        feed, story = self._resolve_media(ad)

        creative = build_creative(
            ad_name=ad.name,
            feed=feed,
            story=story,
            page_id=request.facebook_page_id,
            primary_text=ad.primary_text,
            headline=ad.headline,
            destination=destination,
            cta=ad.cta,
            instagram_user_id=request.instagram_account_id,
            display_link=request.campaign.display_link,
            url_tags=request.campaign.url_tags,
        )
        creative_resp = self.client.create_adcreative(creative.payload())

        ad_name = annotate_ad_name(ad.name, pick_trace_asset(feed, story), ad.label)
        resp = self.client.create_ad({
            "name": ad_name,
            "adset_id": adset_id,
            "creative": {"creative_id": creative_resp["id"]},
            "status": "ACTIVE",
        })
        self._persist("ad", resp, ad_name, adset_id, "ACTIVE")
        logger.info("Ad created: %s (%s)", resp["id"], ad_name)
        return resp

    def _create_adset(self, request: BulkLaunchRequest, cfg: AdSetConfig, campaign_id: str) -> Dict[str, Any]:
        logger.info("Creating ad set %r", cfg.name)
        resp = self.client.create_adset(build_adset_payload(request, cfg, campaign_id))
        self._persist("adset", resp, cfg.name, campaign_id, "ACTIVE")
        return resp

    def _adset_branch(self, request: BulkLaunchRequest, cfg: AdSetConfig, campaign_id: str) -> BranchReport:
        report = BranchReport()
        outcome = attempt(cfg.name, lambda: ("adSet", self._create_adset(request, cfg, campaign_id)), kind="adSet")
        if not report.add(outcome):
            return report
        adset_id = str(outcome.value[1]["id"])
        for ad in cfg.ads:
            report.add(attempt(ad.name, lambda ad=ad: ("ad", self._create_ad(request, ad, adset_id)), kind="ad"))
        return report

    def run(self, request: BulkLaunchRequest) -> BulkLaunchResult:
        if request.instagram_account_id:
            logger.info("Using Instagram account %s", request.instagram_account_id)
        else:
            logger.warning("No Instagram account id provided; Instagram placements may not deliver")

        logger.info("Creating campaign %r", request.campaign.name)
        try:
            campaign_resp = self.client.create_campaign(build_campaign_payload(request.campaign))
            self._persist("campaign", campaign_resp, request.campaign.name, None, "PAUSED")
        except Exception as e:
            logger.error("Campaign creation failed: %s", e)
            raise LaunchError(f"Campaign creation failed: {e}") from e
        campaign_id = str(campaign_resp["id"])

        report = BranchReport()
        for cfg in request.ad_sets:
            report.merge(self._adset_branch(request, cfg, campaign_id))

        result = BulkLaunchResult(
            campaign_id=campaign_id,
            campaign=campaign_resp,
            ad_sets=[resp for kind, resp in report.created if kind == "adSet"],
            ads=[resp for kind, resp in report.created if kind == "ad"],
            errors=[{"type": e.kind, "name": e.entity, "error": e.error} for e in report.errors],
        )
        logger.info(
            "Bulk launch %s finished: %d ad sets, %d ads, %d errors",
            campaign_id,
            len(result.ad_sets),
            len(result.ads),
            len(result.errors),
        )
        return result


def launch_bulk_campaign(
    user_id: str,
    ad_account_id: str,
    request: BulkLaunchRequest,
    *,
    store,
    base_cfg: MetaConfig | None = None,
    client_factory: Callable[[MetaConfig], MetaClient] = MetaClient,
    uploader: MediaUploader | None = None,
    on_progress: ProgressCallback | None = None,
) -> BulkLaunchResult:
    """Resolve credential + ad account from the store, then run the launch."""
    try:
        token = store.get_valid_access_token(user_id)
    except RuntimeError as e:
        raise LaunchError(f"No usable access token: {e}") from e

    account = store.get_ad_account(ad_account_id)
    if not account:
        raise LaunchError("Ad account not found")

    cfg = MetaConfig(
        access_token=token,
        ad_account_id=account["external_id"],
        api_version=base_cfg.api_version if base_cfg else DEFAULT_API_VERSION,
        app_secret=base_cfg.app_secret if base_cfg else None,
        page_id=request.facebook_page_id,
        timeout_s=base_cfg.timeout_s if base_cfg else 30,
    )
    client = client_factory(cfg)
    launcher = BulkCampaignLauncher(client, store, ad_account=account, uploader=uploader, on_progress=on_progress)
    return launcher.run(request)
