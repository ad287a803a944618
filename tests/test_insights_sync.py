"""Insight sync: parallel accounts, settled saves."""

from unittest.mock import patch

import pytest

from insights_sync import InsightSyncError, sync_insights


@pytest.fixture
def two_accounts(store, graph):
    store.put_ad_account("acc_2", "act_222", name="Second", user_id="user_1")
    graph.campaigns_by_account = {
        "act_111": [{"id": "c1", "name": "One", "status": "ACTIVE"}, {"id": "c2", "name": "Two", "status": "PAUSED"}],
        "act_222": [{"id": "c3", "name": "Three", "status": "ACTIVE"}],
    }
    graph.insights_by_campaign = {
        "c1": [{"date_start": "2024-01-01", "date_stop": "2024-01-31", "impressions": "100", "clicks": "5", "spend": "2.5"}],
        "c2": [],
        "c3": [{"date_start": "2024-01-01", "date_stop": "2024-01-31", "impressions": "7", "clicks": "1", "spend": "0.5"}],
    }
    return graph


def _sync(store, graph, **kw):
    return sync_insights("user_1", store=store, client_factory=lambda cfg: graph, **kw)


class TestSyncInsights:
    def test_saves_rows_for_every_account(self, store, two_accounts):
        report = _sync(store, two_accounts)
        data = report.as_dict()

        assert data["success"] is True
        assert [a["adAccountId"] for a in data["accounts"]] == ["acc_1", "acc_2"]
        assert [a["campaigns"] for a in data["accounts"]] == [2, 1]
        assert [a["insightsSaved"] for a in data["accounts"]] == [1, 1]
        assert store.list_campaign_insights("c1")[0]["impressions"] == 100
        assert store.get("c3").ad_account_id == "acc_2"

    def test_date_preset_is_forwarded(self, store, two_accounts):
        _sync(store, two_accounts, date_preset="last_7d")
        assert {c[2]["date_preset"] for c in two_accounts.calls_to("get_insights")} == {"last_7d"}

    def test_failing_account_does_not_block_others(self, store, two_accounts):
        two_accounts.fail_when["list_campaigns"] = lambda acct: acct == "act_111"
        report = _sync(store, two_accounts)

        first, second = report.accounts
        assert not first.ok
        assert "list_campaigns rejected" in first.errors[0]
        assert second.ok
        assert second.insights_saved == 1

    def test_failing_campaign_fetch_is_settled(self, store, two_accounts):
        two_accounts.fail_when["get_insights"] = lambda object_id, **kw: object_id == "c2"
        report = _sync(store, two_accounts)

        acc_1 = report.accounts[0]
        assert acc_1.insights_saved == 1
        assert acc_1.errors == ["fetch c2: get_insights rejected"]
        assert report.as_dict()["success"] is False

    def test_failing_save_is_settled(self, store, two_accounts):
        original = store.upsert_campaign_insight

        def flaky(campaign_id, row):
            if campaign_id == "c1":
                raise RuntimeError("disk full")
            return original(campaign_id, row)

        with patch.object(store, "upsert_campaign_insight", side_effect=flaky):
            report = _sync(store, two_accounts)

        assert report.accounts[0].errors == ["save c1: disk full"]
        assert report.accounts[1].insights_saved == 1

    def test_missing_token(self, store, graph):
        with pytest.raises(InsightSyncError):
            sync_insights("nobody", store=store, client_factory=lambda cfg: graph)

    def test_no_accounts(self, store, graph):
        report = sync_insights("user_without_accounts", store=_store_with_token(store), client_factory=lambda cfg: graph)
        assert report.accounts == []
        assert report.as_dict()["success"] is True


def _store_with_token(store):
    store.put_credential("user_without_accounts", "tok")
    return store
