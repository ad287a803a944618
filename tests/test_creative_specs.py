"""Pure payload builders: promoted object, destinations, placements, targeting, creatives."""

import pytest

from creative_specs import (
    DEFAULT_PLACEMENTS,
    DeeplinkDestination,
    ImageAsset,
    LeadFormDestination,
    PacCreative,
    SingleAssetCreative,
    VideoAsset,
    WebsiteDestination,
    annotate_ad_name,
    build_call_to_action,
    build_creative,
    build_promoted_object,
    build_targeting,
    map_cta,
    map_placements,
    optimization_goal_for,
    parse_destination,
    pick_trace_asset,
    to_minor_units,
)


class TestLookups:
    def test_minor_units(self):
        assert to_minor_units(25.5) == 2550
        assert to_minor_units(0.1) == 10
        assert to_minor_units(19.99) == 1999

    def test_optimization_goal(self):
        assert optimization_goal_for("Landing Page Views") == "LANDING_PAGE_VIEWS"
        assert optimization_goal_for("Leads") == "OFFSITE_CONVERSIONS"
        assert optimization_goal_for("Something new") == "LINK_CLICKS"
        assert optimization_goal_for(None) == "LINK_CLICKS"

    def test_cta_passthrough(self):
        assert map_cta("Sign Up") == "SIGN_UP"
        assert map_cta("ORDER_NOW") == "ORDER_NOW"


class TestPromotedObject:
    def _build(self, **kw):
        args = dict(optimization_goal="LINK_CLICKS", campaign_objective="OUTCOME_TRAFFIC", page_id="p1")
        args.update(kw)
        return build_promoted_object(**args)

    def test_lead_goals_use_page(self):
        assert self._build(optimization_goal="QUALITY_LEAD", pixel_id="px") == {"page_id": "p1"}

    def test_conversions_with_pixel(self):
        obj = self._build(optimization_goal="OFFSITE_CONVERSIONS", pixel_id="px", custom_event_type="PURCHASE")
        assert obj == {"pixel_id": "px", "custom_event_type": "PURCHASE"}

    def test_leads_objective_defaults_event(self):
        obj = self._build(optimization_goal="OFFSITE_CONVERSIONS", campaign_objective="OUTCOME_LEADS", pixel_id="px")
        assert obj == {"pixel_id": "px", "custom_event_type": "LEAD"}

    def test_other_event_carries_custom_string(self):
        obj = self._build(
            optimization_goal="LANDING_PAGE_VIEWS",
            pixel_id="px",
            custom_event_type="OTHER",
            custom_event_str="quiz_done",
            custom_conversion_id="cc1",
        )
        assert obj == {
            "pixel_id": "px",
            "custom_event_type": "OTHER",
            "custom_event_str": "quiz_done",
            "custom_conversion_id": "cc1",
        }

    def test_link_clicks_need_explicit_event(self):
        assert self._build(pixel_id="px") is None
        assert self._build(pixel_id="px", custom_conversion_id="cc1") == {"pixel_id": "px", "custom_conversion_id": "cc1"}

    def test_leads_objective_without_pixel(self):
        assert self._build(campaign_objective="OUTCOME_LEADS") == {"page_id": "p1"}

    def test_nothing_applies(self):
        assert self._build(optimization_goal="REACH") is None


class TestDestinations:
    def test_parse_variants(self):
        assert parse_destination({"url": "https://a"}) == WebsiteDestination(url="https://a")
        assert parse_destination({"type": "LEAD_FORM", "formId": "f1"}) == LeadFormDestination(form_id="f1")
        assert parse_destination({"type": "DEEPLINK", "deeplink": "app://x"}) == DeeplinkDestination(deeplink="app://x")

    def test_missing_required_field(self):
        with pytest.raises(ValueError):
            parse_destination({"type": "LANDING_PAGE"})
        with pytest.raises(ValueError):
            parse_destination({"type": "LEAD_FORM"})

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown destination type"):
            parse_destination({"type": "PHONE"})

    def test_call_to_action_values(self):
        assert build_call_to_action("Learn More", WebsiteDestination(url="https://a"), "a.com") == {
            "type": "LEARN_MORE",
            "value": {"link": "https://a", "link_caption": "a.com"},
        }
        assert build_call_to_action("Sign Up", LeadFormDestination(form_id="f1"))["value"] == {"lead_gen_form_id": "f1"}
        assert build_call_to_action("Download", DeeplinkDestination(deeplink="app://x"))["value"] == {"application": "app://x"}


class TestPlacements:
    def test_generic_labels_expand_to_both_platforms(self):
        out = map_placements(["Feed", "Stories"])
        assert out["publisher_platforms"] == ["facebook", "instagram"]
        assert out["facebook_positions"] == ["feed", "story"]
        assert out["instagram_positions"] == ["stream", "story"]
        assert out["device_platforms"] == ["mobile", "desktop"]

    def test_case_insensitive_and_deduplicated(self):
        out = map_placements(["INSTAGRAM REELS", "instagram reels", "Facebook Feed"])
        assert out["instagram_positions"] == ["reels"]
        assert out["facebook_positions"] == ["feed"]

    def test_empty_lists_dropped(self):
        out = map_placements(["Instagram Explore"])
        assert "facebook_positions" not in out
        assert "messenger_positions" not in out

    def test_targeting_uses_defaults_without_placements(self):
        t = build_targeting(age_min=18, age_max=65)
        for key, value in DEFAULT_PLACEMENTS.items():
            assert t[key] == value


class TestTargeting:
    def test_geo_and_gender(self):
        t = build_targeting(age_min=21, age_max=40, gender="Male", countries=["US"], regions=["3847"], cities=[{"key": "777", "radius": 10}])
        assert t["geo_locations"] == {"countries": ["US"], "regions": [{"key": "3847"}], "cities": [{"key": "777", "radius": 10}]}
        assert t["genders"] == [1]

    def test_all_genders_omitted(self):
        assert "genders" not in build_targeting(age_min=18, age_max=65, gender="All")

    def test_interests_keep_only_ids(self):
        t = build_targeting(
            age_min=18, age_max=65, audience_type="INTEREST", interests=["6003", "Running", {"id": 42, "name": "Yoga"}]
        )
        assert t["flexible_spec"] == [{"interests": [{"id": "6003"}, {"id": "42", "name": "Yoga"}]}]

    def test_custom_audience(self):
        t = build_targeting(age_min=18, age_max=65, audience_type="CUSTOM_AUDIENCE", custom_audience_id="ca1")
        assert t["custom_audiences"] == [{"id": "ca1"}]
        assert "flexible_spec" not in t


def _creative(feed, story, **kw):
    args = dict(
        ad_name="Hero",
        feed=feed,
        story=story,
        page_id="p1",
        primary_text="Body",
        headline="Title",
        destination=WebsiteDestination(url="https://shop.example"),
        cta="Shop Now",
    )
    args.update(kw)
    return build_creative(**args)


class TestBuildCreative:
    def test_single_image(self):
        creative = _creative(ImageAsset("h1", "i1"), None, display_link="shop.example", url_tags="utm=1")
        assert isinstance(creative, SingleAssetCreative)
        payload = creative.payload()
        assert payload["name"] == "Hero - Creative"
        assert payload["url_tags"] == "utm=1"
        link_data = payload["object_story_spec"]["link_data"]
        assert link_data["image_hash"] == "h1"
        assert link_data["display_link"] == "shop.example"
        assert link_data["call_to_action"]["type"] == "SHOP_NOW"

    def test_single_video_uses_thumbnail(self):
        payload = _creative(VideoAsset("v1", "https://t"), None).payload()
        video_data = payload["object_story_spec"]["video_data"]
        assert video_data["video_id"] == "v1"
        assert video_data["image_url"] == "https://t"

    def test_video_without_thumbnail(self):
        payload = _creative(VideoAsset("v1"), None).payload()
        assert "image_url" not in payload["object_story_spec"]["video_data"]

    def test_same_asset_twice_is_not_pac(self):
        creative = _creative(ImageAsset("h1"), ImageAsset("h1"))
        assert isinstance(creative, SingleAssetCreative)

    def test_instagram_account_on_story_spec(self):
        payload = _creative(ImageAsset("h1"), None, instagram_user_id="ig1").payload()
        assert payload["object_story_spec"]["instagram_user_id"] == "ig1"

    def test_pac_images(self):
        creative = _creative(ImageAsset("feed_h"), ImageAsset("story_h"), display_link="shop.example")
        assert isinstance(creative, PacCreative)
        spec = creative.payload()["asset_feed_spec"]
        assert spec["images"] == [
            {"hash": "feed_h", "adlabels": [{"name": "LBL_FEED_IMG"}]},
            {"hash": "story_h", "adlabels": [{"name": "LBL_STORY_IMG"}]},
        ]
        assert spec["call_to_action_types"] == ["SHOP_NOW"]
        assert spec["link_urls"][0]["website_url"] == "https://shop.example"
        assert spec["link_urls"][0]["display_link"] == "shop.example"
        rules = spec["asset_customization_rules"]
        assert [r["priority"] for r in rules] == [1, 2]
        assert rules[0]["image_label"] == {"name": "LBL_STORY_IMG"}
        assert rules[1]["image_label"] == {"name": "LBL_FEED_IMG"}
        assert "link_data" not in creative.payload()["object_story_spec"]

    def test_pac_videos(self):
        spec = _creative(VideoAsset("fv"), VideoAsset("sv")).payload()["asset_feed_spec"]
        assert [v["video_id"] for v in spec["videos"]] == ["fv", "sv"]
        assert spec["asset_customization_rules"][0]["video_label"] == {"name": "LBL_STORY_VIDEO"}

    def test_pac_rejects_equal_keys(self):
        with pytest.raises(ValueError):
            PacCreative(name="x", object_story_spec={}, asset_feed_spec={}, feed=ImageAsset("h"), story=ImageAsset("h"))

    def test_no_media(self):
        with pytest.raises(ValueError):
            _creative(None, None)


class TestAnnotateAdName:
    def test_image_prefers_library_id(self):
        assert annotate_ad_name("Hero", ImageAsset("h1", "i1")) == "(Static) Hero [image_id=i1]"
        assert annotate_ad_name("Hero", ImageAsset("h1")) == "(Static) Hero [image_id=h1]"

    def test_uploaded_story_beats_library_feed(self):
        feed, story = ImageAsset("h_feed"), ImageAsset("h_story", "i_story")
        assert pick_trace_asset(feed, story) is story
        assert annotate_ad_name("Hero", pick_trace_asset(feed, story)) == "(Static) Hero [image_id=i_story]"

    def test_trace_asset_falls_back_to_feed(self):
        feed, story = ImageAsset("h_feed"), ImageAsset("h_story")
        assert pick_trace_asset(feed, story) is feed
        assert pick_trace_asset(None, story) is story
        assert pick_trace_asset(None, None) is None
        assert pick_trace_asset(VideoAsset("v1"), None) == VideoAsset("v1")

    def test_video_and_custom_label(self):
        assert annotate_ad_name("Hero", VideoAsset("v1")) == "(Video) Hero [video_id=v1]"
        assert annotate_ad_name("Hero", VideoAsset("v1"), "UGC") == "(UGC) Hero [video_id=v1]"
