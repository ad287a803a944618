"""Adapter factory, dry-run adapter and Meta adapter."""

import pytest

from blueprints import Budget
from graph_client import MetaAPIError
from providers import (
    AdCreativeInput,
    AdInput,
    AdSetInput,
    AuthError,
    CampaignInput,
    DryRunAdapter,
    MetaAdapter,
    MetricsScope,
    PlatformNotImplementedError,
    create_adapter,
    derive_metrics,
    is_platform_supported,
    supported_platforms,
)


class TestFactory:
    def test_supported_platforms(self):
        assert supported_platforms() == ["META", "GOOGLE", "LINKEDIN", "SNAP"]
        assert is_platform_supported("meta")
        assert not is_platform_supported("tiktok")

    def test_dry_run_wins_for_any_platform(self):
        adapter = create_adapter("linkedin", dry_run=True)
        assert isinstance(adapter, DryRunAdapter)
        assert adapter.name == "LINKEDIN"

    def test_meta_needs_a_client(self, graph):
        assert isinstance(create_adapter("META", client=graph), MetaAdapter)
        with pytest.raises(ValueError):
            create_adapter("META")

    @pytest.mark.parametrize("platform", ["GOOGLE", "LINKEDIN", "SNAP"])
    def test_known_platforms_without_adapter_fail_fast(self, platform):
        with pytest.raises(PlatformNotImplementedError, match="not implemented"):
            create_adapter(platform)

    def test_unknown_platform(self):
        with pytest.raises(PlatformNotImplementedError, match="Unsupported platform: TIKTOK"):
            create_adapter("tiktok")


class TestInputs:
    def test_adset_requires_campaign(self):
        with pytest.raises(ValueError):
            AdSetInput(campaign_id="", name="x")

    def test_ad_requires_adset(self):
        with pytest.raises(ValueError):
            AdInput(adset_id="", name="x", creative=AdCreativeInput(title="t", body="b"))


class TestDryRunAdapter:
    def test_ids_and_operation_log(self):
        adapter = DryRunAdapter("META")
        res = adapter.create_campaign(CampaignInput(name="C", objective="CONVERSIONS"))
        assert res["id"].startswith("dryrun_campaign_")
        assert res["platform"] == "META"
        assert res["name"] == "C"
        assert [op["type"] for op in adapter.operations] == ["create_campaign"]

    def test_ids_are_unique(self):
        adapter = DryRunAdapter("META")
        ids = {adapter.create_adset(AdSetInput(campaign_id="c", name=str(i)))["id"] for i in range(20)}
        assert len(ids) == 20

    def test_reset_clears_log(self):
        adapter = DryRunAdapter("META")
        adapter.create_campaign(CampaignInput(name="C", objective="CONVERSIONS"))
        adapter.reset()
        assert adapter.operations == []

    def test_sample_metrics(self):
        metrics = DryRunAdapter("META").get_metrics(MetricsScope(campaign_id="c"), "2024-01-01", "2024-01-31")
        assert metrics[0]["impressions"] == 10000
        assert metrics[0]["clicks"] == 500
        assert metrics[0]["ctr"] == pytest.approx(5.0)
        assert metrics[0]["cpc"] == pytest.approx(0.2)
        assert metrics[0]["cpm"] == pytest.approx(10.0)


class TestDeriveMetrics:
    def test_zero_denominators(self):
        m = derive_metrics(0, 0, 0)
        assert (m["ctr"], m["cpc"], m["cpm"]) == (0.0, 0.0, 0.0)


class TestMetaAdapter:
    def test_ensure_auth_without_token(self, graph):
        graph.cfg.access_token = ""
        with pytest.raises(AuthError, match="No access token"):
            MetaAdapter(graph).ensure_auth("org", "conn")

    def test_ensure_auth_wraps_graph_errors(self, graph):
        graph.fail["whoami"] = MetaAPIError("bad token", http_status=401)
        with pytest.raises(AuthError, match="bad token"):
            MetaAdapter(graph).ensure_auth("org", "conn")

    def test_adset_carries_budget_when_campaign_has_none(self, graph):
        adapter = MetaAdapter(graph)
        campaign = adapter.create_campaign(CampaignInput(name="C", objective="CONVERSIONS"))
        adapter.create_adset(AdSetInput(campaign_id=campaign["id"], name="S", budget=Budget(amount=12.5)))
        payload = graph.calls_to("create_adset")[0][1][0]
        assert payload["daily_budget"] == 1250
        assert payload["bid_strategy"] == "LOWEST_COST_WITHOUT_CAP"

    def test_lifetime_budget_field(self, graph):
        MetaAdapter(graph).create_campaign(
            CampaignInput(name="C", objective="CONVERSIONS", budget=Budget(amount=100, type="LIFETIME"))
        )
        payload = graph.calls_to("create_campaign")[0][1][0]
        assert payload["lifetime_budget"] == 10000
        assert "daily_budget" not in payload

    def test_create_ad_builds_link_creative(self, graph):
        adapter = MetaAdapter(graph)
        adapter.create_ad(AdInput(
            adset_id="as_1",
            name="My Ad",
            creative=AdCreativeInput(
                title="T", body="B", image_url="https://cdn.example/i.jpg", call_to_action="Shop Now", link="https://x.example"
            ),
        ))
        creative = graph.calls_to("create_adcreative")[0][1][0]
        link_data = creative["object_story_spec"]["link_data"]
        assert creative["object_story_spec"]["page_id"] == "page_1"
        assert link_data["call_to_action"] == {"type": "SHOP_NOW", "value": {"link": "https://x.example"}}
        assert link_data["image_hash"].startswith("hash_")
        ad = graph.calls_to("create_ad")[0][1][0]
        assert ad["creative"]["creative_id"].startswith("cr_")

    def test_create_ad_requires_page(self, graph):
        graph.cfg.page_id = None
        with pytest.raises(ValueError, match="META_PAGE_ID"):
            MetaAdapter(graph).create_ad(
                AdInput(adset_id="as_1", name="A", creative=AdCreativeInput(title="T", body="B", link="https://x"))
            )

    def test_metrics_count_conversions(self, graph):
        graph.insights_by_campaign["c1"] = [{
            "impressions": "2000",
            "clicks": "40",
            "spend": "20.0",
            "actions": [
                {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "3"},
                {"action_type": "lead", "value": "2"},
                {"action_type": "link_click", "value": "40"},
            ],
        }]
        metrics = MetaAdapter(graph).get_metrics(MetricsScope(campaign_id="c1"), "2024-01-01", "2024-01-31")
        assert metrics[0]["conversions"] == 5
        assert metrics[0]["ctr"] == pytest.approx(2.0)
        assert metrics[0]["cpc"] == pytest.approx(0.5)
