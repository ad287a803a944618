"""
Creative, targeting and promoted-object payload builders.

Everything here is pure: plain values in, Graph payload fragments out.
Destinations and creatives are explicit variants (one class per kind) and are
validated when constructed, so a payload is never assembled from a half-empty dict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


# -----------------------------
# Static platform lookup tables
# -----------------------------

OPTIMIZATION_EVENT_TO_GOAL: Dict[str, str] = {
    "Link Clicks": "LINK_CLICKS",
    "Landing Page Views": "LANDING_PAGE_VIEWS",
    "Impressions": "IMPRESSIONS",
    "Reach": "REACH",
    "Conversions": "OFFSITE_CONVERSIONS",
    "Leads": "OFFSITE_CONVERSIONS",
    "Post Engagement": "POST_ENGAGEMENT",
    "Video Views": "VIDEO_VIEWS",
    "ThruPlay": "THRUPLAY",
}

DEFAULT_OPTIMIZATION_GOAL = "LINK_CLICKS"

CTA_MAP: Dict[str, str] = {
    "Learn More": "LEARN_MORE",
    "Shop Now": "SHOP_NOW",
    "Sign Up": "SIGN_UP",
    "Download": "DOWNLOAD",
    "Watch More": "WATCH_MORE",
    "Contact Us": "CONTACT_US",
    "Book Now": "BOOK_NOW",
    "Get Quote": "GET_QUOTE",
    "Apply Now": "APPLY_NOW",
    "Subscribe": "SUBSCRIBE",
    "See Menu": "SEE_MENU",
    "Get Offer": "GET_OFFER",
}

PUBLISHER_PLATFORMS = ["facebook", "instagram", "audience_network", "messenger"]

DEFAULT_PLACEMENTS: Dict[str, List[str]] = {
    "publisher_platforms": list(PUBLISHER_PLATFORMS),
    "facebook_positions": ["feed", "story"],
    "instagram_positions": ["stream", "ig_search", "story", "explore", "reels", "explore_home"],
    "device_platforms": ["mobile", "desktop"],
    "messenger_positions": ["story"],
    "audience_network_positions": ["classic", "rewarded_video"],
}

LBL_COMMON = "LBL_COMMON"


def to_minor_units(amount: float) -> int:
    """Major currency units (12.50) -> minor units (1250)."""
    return int(round(float(amount) * 100))


def optimization_goal_for(event: str | None) -> str:
    """Map a user-facing optimization event ('Landing Page Views') to a Graph goal."""
    return OPTIMIZATION_EVENT_TO_GOAL.get((event or "").strip(), DEFAULT_OPTIMIZATION_GOAL)


def map_cta(label: str) -> str:
    # Unknown labels pass through so new platform CTA types work without a table update.
    return CTA_MAP.get(label, label)


# -----------------------------
# Promoted object
# -----------------------------

def _conversion_fields(
    pixel_id: str,
    custom_event_type: str | None,
    custom_event_str: str | None,
    custom_conversion_id: str | None,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {"pixel_id": pixel_id}
    if custom_event_type:
        obj["custom_event_type"] = custom_event_type
        if custom_event_type == "OTHER" and custom_event_str:
            obj["custom_event_str"] = custom_event_str
    if custom_conversion_id:
        obj["custom_conversion_id"] = custom_conversion_id
    return obj


def build_promoted_object(
    *,
    optimization_goal: str,
    campaign_objective: str,
    page_id: str,
    pixel_id: str | None = None,
    custom_event_type: str | None = None,
    custom_event_str: str | None = None,
    custom_conversion_id: str | None = None,
) -> Optional[Dict[str, Any]]:
    """
    Resolve the ad set promoted_object. Branches are exclusive and checked in order:

    1. QUALITY_LEAD / LEAD_GENERATION           -> {page_id}
    2. OFFSITE_CONVERSIONS / LANDING_PAGE_VIEWS
       with a pixel                             -> {pixel_id, custom_event_type, ...}
       (OUTCOME_LEADS defaults the event to LEAD)
    3. LINK_CLICKS / REACH / IMPRESSIONS with a pixel AND an explicit
       event or custom conversion               -> {pixel_id, ...}
    4. OUTCOME_LEADS campaign                   -> {page_id}
    5. anything else                            -> None
    """
    if optimization_goal in ("QUALITY_LEAD", "LEAD_GENERATION"):
        return {"page_id": page_id}

    if pixel_id and optimization_goal in ("OFFSITE_CONVERSIONS", "LANDING_PAGE_VIEWS"):
        event_type = custom_event_type
        if not event_type and campaign_objective == "OUTCOME_LEADS":
            event_type = "LEAD"
        return _conversion_fields(pixel_id, event_type, custom_event_str, custom_conversion_id)

    if (
        pixel_id
        and (custom_event_type or custom_conversion_id)
        and optimization_goal in ("LINK_CLICKS", "REACH", "IMPRESSIONS")
    ):
        return _conversion_fields(pixel_id, custom_event_type, custom_event_str, custom_conversion_id)

    if campaign_objective == "OUTCOME_LEADS":
        return {"page_id": page_id}

    return None


# -----------------------------
# Destinations + call to action
# -----------------------------

@dataclass(frozen=True)
class WebsiteDestination:
    url: str

    def __post_init__(self) -> None:
        if not (self.url or "").strip():
            raise ValueError("Website destination requires a url.")

    def cta_value(self, display_link: str | None = None) -> Dict[str, Any]:
        value: Dict[str, Any] = {"link": self.url}
        if display_link:
            value["link_caption"] = display_link
        return value


@dataclass(frozen=True)
class LeadFormDestination:
    form_id: str
    url: str = ""

    def __post_init__(self) -> None:
        if not (self.form_id or "").strip():
            raise ValueError("Lead form destination requires a form id.")

    def cta_value(self, display_link: str | None = None) -> Dict[str, Any]:
        return {"lead_gen_form_id": self.form_id}


@dataclass(frozen=True)
class DeeplinkDestination:
    deeplink: str
    url: str = ""

    def __post_init__(self) -> None:
        if not (self.deeplink or "").strip():
            raise ValueError("Deeplink destination requires a deeplink.")

    def cta_value(self, display_link: str | None = None) -> Dict[str, Any]:
        return {"application": self.deeplink}


Destination = Union[WebsiteDestination, LeadFormDestination, DeeplinkDestination]


def parse_destination(raw: Dict[str, Any]) -> Destination:
    """Turn a wizard destination dict ({type, url?, formId?, deeplink?}) into a variant."""
    kind = (raw.get("type") or "LANDING_PAGE").upper()
    url = raw.get("url") or ""
    if kind == "LANDING_PAGE":
        return WebsiteDestination(url=url)
    if kind == "LEAD_FORM":
        return LeadFormDestination(form_id=raw.get("formId") or raw.get("form_id") or "", url=url)
    if kind == "DEEPLINK":
        return DeeplinkDestination(deeplink=raw.get("deeplink") or "", url=url)
    raise ValueError(f"Unknown destination type: {kind}")


def build_call_to_action(cta: str, destination: Destination, display_link: str | None = None) -> Dict[str, Any]:
    return {"type": map_cta(cta), "value": destination.cta_value(display_link)}


# -----------------------------
# Targeting
# -----------------------------

def map_placements(placements: List[str]) -> Dict[str, List[str]]:
    """
    Fold free-text placement labels into Graph placement arrays.

    Matching is case-insensitive by platform + position substring; the generic
    labels 'Feed', 'Stories' and 'Reels' expand to both Facebook and Instagram.
    Empty position lists are dropped.
    """
    result: Dict[str, List[str]] = {
        "publisher_platforms": [],
        "facebook_positions": [],
        "instagram_positions": [],
        "messenger_positions": [],
        "audience_network_positions": [],
    }

    def add(platform: str, position: str) -> None:
        if platform not in result["publisher_platforms"]:
            result["publisher_platforms"].append(platform)
        key = f"{platform}_positions"
        if position not in result[key]:
            result[key].append(position)

    for placement in placements or []:
        lower = (placement or "").strip().lower()
        if "facebook" in lower and "feed" in lower:
            add("facebook", "feed")
        elif "facebook" in lower and "stor" in lower:
            add("facebook", "story")
        elif "facebook" in lower and "reel" in lower:
            add("facebook", "video_feeds")
        elif "instagram" in lower and "feed" in lower:
            add("instagram", "stream")
        elif "instagram" in lower and "stor" in lower:
            add("instagram", "story")
        elif "instagram" in lower and "reel" in lower:
            add("instagram", "reels")
        elif "instagram" in lower and "explore" in lower:
            add("instagram", "explore")
        elif lower == "feed":
            add("facebook", "feed")
            add("instagram", "stream")
        elif lower in ("stories", "story"):
            add("facebook", "story")
            add("instagram", "story")
        elif lower in ("reels", "reel"):
            add("facebook", "video_feeds")
            add("instagram", "reels")
        elif "messenger" in lower:
            add("messenger", "messenger_home")

    out = {k: v for k, v in result.items() if v}
    out["device_platforms"] = ["mobile", "desktop"]
    return out


_NUMERIC_ID = re.compile(r"^\d+$")


def _interest_objects(interests: List[Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for interest in interests or []:
        if isinstance(interest, dict) and interest.get("id"):
            out.append({"id": str(interest["id"]), "name": interest.get("name")})
        elif isinstance(interest, str) and _NUMERIC_ID.match(interest.strip()):
            out.append({"id": interest.strip()})
    return out


def _geo_entries(items: List[Any]) -> List[Any]:
    return [{"key": item} if isinstance(item, str) else item for item in items]


def build_targeting(
    *,
    age_min: int,
    age_max: int,
    gender: str | None = None,
    countries: List[str] | None = None,
    regions: List[Any] | None = None,
    cities: List[Any] | None = None,
    audience_type: str | None = None,
    interests: List[Any] | None = None,
    custom_audience_id: str | None = None,
    placements: List[str] | None = None,
) -> Dict[str, Any]:
    targeting: Dict[str, Any] = {"age_min": int(age_min), "age_max": int(age_max)}

    if placements:
        targeting.update(map_placements(placements))
    else:
        targeting.update({k: list(v) for k, v in DEFAULT_PLACEMENTS.items()})

    geo: Dict[str, Any] = {}
    if countries:
        geo["countries"] = list(countries)
    if regions:
        geo["regions"] = _geo_entries(regions)
    if cities:
        geo["cities"] = _geo_entries(cities)
    if geo:
        targeting["geo_locations"] = geo

    # Graph gender codes: 1 = male, 2 = female; omitted means all.
    if gender == "Male":
        targeting["genders"] = [1]
    elif gender == "Female":
        targeting["genders"] = [2]

    if audience_type == "INTEREST":
        interest_objs = _interest_objects(interests or [])
        if interest_objs:
            targeting["flexible_spec"] = [{"interests": interest_objs}]
    elif audience_type == "CUSTOM_AUDIENCE" and custom_audience_id:
        targeting["custom_audiences"] = [{"id": custom_audience_id}]

    return targeting


# -----------------------------
# Resolved media (what a creative can reference)
# -----------------------------

@dataclass(frozen=True)
class ImageAsset:
    image_hash: str
    image_id: str | None = None

    @property
    def key(self) -> str:
        return self.image_hash

    @property
    def trace_id(self) -> str:
        # Ad names prefer the library image id over the hash.
        return self.image_id or self.image_hash


@dataclass(frozen=True)
class VideoAsset:
    video_id: str
    thumbnail_url: str | None = None

    @property
    def key(self) -> str:
        return self.video_id

    @property
    def trace_id(self) -> str:
        return self.video_id


MediaAsset = Union[ImageAsset, VideoAsset]


# -----------------------------
# PAC (placement asset customization)
# -----------------------------

def build_asset_customization_rules(*, label_key: str, feed_label: str, story_label: str) -> List[Dict[str, Any]]:
    common = {
        "body_label": {"name": LBL_COMMON},
        "link_url_label": {"name": LBL_COMMON},
        "title_label": {"name": LBL_COMMON},
    }
    return [
        # Stories / reels / search surfaces get the portrait asset.
        {
            "customization_spec": {
                "age_max": 65,
                "age_min": 13,
                "publisher_platforms": list(PUBLISHER_PLATFORMS),
                "facebook_positions": ["story"],
                "instagram_positions": ["ig_search", "story", "reels"],
                "messenger_positions": ["story"],
                "audience_network_positions": ["classic", "rewarded_video"],
            },
            label_key: {"name": story_label},
            **common,
            "priority": 1,
        },
        # Fallback for every other placement.
        {
            "customization_spec": {"age_max": 65, "age_min": 13},
            label_key: {"name": feed_label},
            **common,
            "priority": 2,
        },
    ]


def build_pac_asset_feed_spec(
    *,
    feed: MediaAsset,
    story: MediaAsset,
    primary_text: str,
    headline: str,
    destination_url: str,
    cta: str,
    display_link: str | None = None,
) -> Dict[str, Any]:
    if type(feed) is not type(story):
        raise ValueError("Feed and story assets must be the same media type.")

    spec: Dict[str, Any] = {"ad_formats": ["AUTOMATIC_FORMAT"]}
    if isinstance(feed, VideoAsset):
        label_key, feed_label, story_label = "video_label", "LBL_FEED_VIDEO", "LBL_STORY_VIDEO"
        spec["videos"] = [
            {"video_id": feed.video_id, "adlabels": [{"name": feed_label}]},
            {"video_id": story.video_id, "adlabels": [{"name": story_label}]},
        ]
    else:
        label_key, feed_label, story_label = "image_label", "LBL_FEED_IMG", "LBL_STORY_IMG"
        spec["images"] = [
            {"hash": feed.image_hash, "adlabels": [{"name": feed_label}]},
            {"hash": story.image_hash, "adlabels": [{"name": story_label}]},
        ]

    link_url: Dict[str, Any] = {"website_url": destination_url or ""}
    if display_link:
        link_url["display_link"] = display_link
    link_url["adlabels"] = [{"name": LBL_COMMON}]

    spec.update({
        "bodies": [{"text": primary_text, "adlabels": [{"name": LBL_COMMON}]}],
        "titles": [{"text": headline, "adlabels": [{"name": LBL_COMMON}]}],
        "descriptions": [{"text": ""}],
        "link_urls": [link_url],
        "call_to_action_types": [map_cta(cta)],
        "asset_customization_rules": build_asset_customization_rules(
            label_key=label_key, feed_label=feed_label, story_label=story_label
        ),
        "optimization_type": "PLACEMENT",
        "additional_data": {"multi_share_end_card": False, "is_click_to_message": False},
        "reasons_to_shop": False,
        "shops_bundle": False,
    })
    return spec


# -----------------------------
# Creative variants
# -----------------------------

@dataclass(frozen=True)
class SingleAssetCreative:
    name: str
    object_story_spec: Dict[str, Any]
    asset: MediaAsset
    url_tags: str | None = None

    def payload(self) -> Dict[str, Any]:
        p: Dict[str, Any] = {"name": self.name, "object_story_spec": self.object_story_spec}
        if self.url_tags:
            p["url_tags"] = self.url_tags
        return p


@dataclass(frozen=True)
class PacCreative:
    name: str
    object_story_spec: Dict[str, Any]
    asset_feed_spec: Dict[str, Any]
    feed: MediaAsset
    story: MediaAsset
    url_tags: str | None = None

    def __post_init__(self) -> None:
        if self.feed.key == self.story.key:
            raise ValueError("PAC creative needs two distinct assets.")

    def payload(self) -> Dict[str, Any]:
        p: Dict[str, Any] = {
            "name": self.name,
            "object_story_spec": self.object_story_spec,
            "asset_feed_spec": self.asset_feed_spec,
        }
        if self.url_tags:
            p["url_tags"] = self.url_tags
        return p


CreativeSpec = Union[SingleAssetCreative, PacCreative]


def build_creative(
    *,
    ad_name: str,
    feed: MediaAsset | None,
    story: MediaAsset | None,
    page_id: str,
    primary_text: str,
    headline: str,
    destination: Destination,
    cta: str,
    instagram_user_id: str | None = None,
    display_link: str | None = None,
    url_tags: str | None = None,
) -> CreativeSpec:
    """
    Pick the creative shape for an ad.

    Two distinct feed/story assets produce a PAC creative; a single asset (or the
    same asset in both slots) produces a plain video_data / link_data creative.
    """
    story_spec: Dict[str, Any] = {"page_id": page_id}
    if instagram_user_id:
        story_spec["instagram_user_id"] = instagram_user_id
    name = f"{ad_name} - Creative"

    if feed is not None and story is not None and feed.key != story.key:
        asset_feed_spec = build_pac_asset_feed_spec(
            feed=feed,
            story=story,
            primary_text=primary_text,
            headline=headline,
            destination_url=destination.url,
            cta=cta,
            display_link=display_link,
        )
        return PacCreative(
            name=name,
            object_story_spec=story_spec,
            asset_feed_spec=asset_feed_spec,
            feed=feed,
            story=story,
            url_tags=url_tags,
        )

    asset = feed or story
    if asset is None:
        raise ValueError("No media asset available for creative.")

    call_to_action = build_call_to_action(cta, destination, display_link)
    if isinstance(asset, VideoAsset):
        video_data: Dict[str, Any] = {
            "video_id": asset.video_id,
            "message": primary_text,
            "call_to_action": call_to_action,
        }
        if asset.thumbnail_url:
            video_data["image_url"] = asset.thumbnail_url
        story_spec["video_data"] = video_data
    else:
        link_data: Dict[str, Any] = {
            "link": destination.url or "",
            "message": primary_text,
            "name": headline,
            "call_to_action": call_to_action,
            "image_hash": asset.image_hash,
        }
        if display_link:
            link_data["display_link"] = display_link
        story_spec["link_data"] = link_data

    return SingleAssetCreative(name=name, object_story_spec=story_spec, asset=asset, url_tags=url_tags)


def pick_trace_asset(*assets: MediaAsset | None) -> MediaAsset | None:
    """First asset with an uploaded image id, else the first asset at all (feed before story)."""
    present = [a for a in assets if a is not None]
    for asset in present:
        if isinstance(asset, ImageAsset) and asset.image_id:
            return asset
    return present[0] if present else None


def annotate_ad_name(name: str, asset: MediaAsset | None, label: str | None = None) -> str:
    """'(Static) MyAd [image_id=123]' / '(Video) MyAd [video_id=456]' for traceability in Ads Manager."""
    if asset is None:
        return name
    is_video = isinstance(asset, VideoAsset)
    label = label or ("Video" if is_video else "Static")
    asset_type = "video_id" if is_video else "image_id"
    return f"({label}) {name} [{asset_type}={asset.trace_id}]"
