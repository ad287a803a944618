"""
Shared fixtures: an in-memory Graph fake, a temporary SQLite store and sample inputs.
"""

import base64
import io
import sys
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

repo_root = Path(__file__).resolve().parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from graph_client import MetaAPIError  # noqa: E402
from launch_store import LaunchStore  # noqa: E402
from media_upload import MediaUploader, RetryPolicy  # noqa: E402


class FakeGraph:
    """Stands in for MetaClient: records calls and hands out sequential ids."""

    def __init__(self, *, access_token: str = "tok", page_id: Optional[str] = "page_1", ad_account_id: str = "act_1"):
        self.cfg = SimpleNamespace(access_token=access_token, page_id=page_id, ad_account_id=ad_account_id)
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.fail_when: Dict[str, Any] = {}
        self.video_statuses: List[dict] = []
        self.thumbnails: List[dict] = [{"uri": "https://cdn.example/thumb.jpg", "is_preferred": True}]
        self.campaigns_by_account: Dict[str, List[dict]] = {}
        self.insights_by_campaign: Dict[str, List[dict]] = {}
        self._lock = threading.Lock()
        self._n = 0

    def _next(self, prefix: str) -> str:
        with self._lock:
            self._n += 1
            return f"{prefix}_{self._n}"

    def _call(self, name: str, /, *args, **kwargs) -> None:
        with self._lock:
            self.calls.append((name, args, kwargs))
        if name in self.fail:
            raise self.fail[name]
        predicate = self.fail_when.get(name)
        if predicate is not None and predicate(*args, **kwargs):
            raise MetaAPIError(f"{name} rejected", http_status=400, error={"message": f"{name} rejected"})

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    # ---- auth / reads ----

    def whoami(self) -> dict:
        self._call("whoami")
        return {"id": "me_1", "name": "Tester"}

    def list_campaigns(self, ad_account_id=None, *, limit=100):
        self._call("list_campaigns", ad_account_id)
        return list(self.campaigns_by_account.get(ad_account_id, []))

    def get_insights(self, object_id, **kwargs):
        self._call("get_insights", object_id, **kwargs)
        return list(self.insights_by_campaign.get(object_id, []))

    # ---- creates ----

    def create_campaign(self, payload, *, ad_account_id=None):
        self._call("create_campaign", payload)
        return {"id": self._next("cmp")}

    def create_adset(self, payload, *, ad_account_id=None):
        self._call("create_adset", payload)
        return {"id": self._next("as")}

    def create_adcreative(self, payload, *, ad_account_id=None):
        self._call("create_adcreative", payload)
        return {"id": self._next("cr")}

    def create_ad(self, payload, *, ad_account_id=None):
        self._call("create_ad", payload)
        return {"id": self._next("ad")}

    # ---- media ----

    def upload_image_bytes(self, content, *, filename="image.jpg", mime_type="image/jpeg", name=None, ad_account_id=None):
        self._call("upload_image_bytes", content, filename=filename, mime_type=mime_type, name=name)
        n = self._next("img")
        return {"hash": f"hash_{n}", "id": n}

    def upload_image_url(self, url, *, name=None, ad_account_id=None):
        self._call("upload_image_url", url, name=name)
        n = self._next("img")
        return {"hash": f"hash_{n}", "id": n}

    def start_video_upload(self, file_size, *, title=None, ad_account_id=None):
        self._call("start_video_upload", file_size, title=title)
        return {"video_id": self._next("vid"), "upload_session_id": "sess_1"}

    def transfer_video_chunk(self, upload_session_id, start_offset, chunk, *, ad_account_id=None):
        self._call("transfer_video_chunk", upload_session_id, start_offset, chunk)
        return {"start_offset": str(start_offset + len(chunk))}

    def finish_video_upload(self, upload_session_id, *, title=None, ad_account_id=None):
        self._call("finish_video_upload", upload_session_id, title=title)
        return {"success": True}

    def upload_video_url(self, file_url, *, title=None, ad_account_id=None):
        self._call("upload_video_url", file_url, title=title)
        return self._next("vid")

    def get_video_status(self, video_id):
        self._call("get_video_status", video_id)
        with self._lock:
            if len(self.video_statuses) > 1:
                return self.video_statuses.pop(0)
            if self.video_statuses:
                return self.video_statuses[0]
        return {"video_status": "ready", "processing_phase": {"status": "complete"}}

    def list_video_thumbnails(self, video_id, *, limit=10):
        self._call("list_video_thumbnails", video_id)
        return list(self.thumbnails)


def png_bytes(color=(255, 0, 0), size=(4, 4)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_url(color=(255, 0, 0)) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(color)).decode("ascii")


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def fast_uploader(graph):
    return MediaUploader(
        graph,
        "act_1",
        ready_policy=RetryPolicy(max_attempts=3, delay_s=0),
        thumbnail_policy=RetryPolicy(max_attempts=2, delay_s=0),
    )


@pytest.fixture
def store(tmp_path):
    s = LaunchStore(tmp_path / "launch.db")
    s.put_credential("user_1", "stored_token")
    s.put_ad_account("acc_1", "act_111", name="Main", user_id="user_1")
    return s


@pytest.fixture
def blueprint_data() -> dict:
    return {
        "id": "bp_1",
        "name": "Spring Sale",
        "platform": "meta",
        "config": {
            "budget": 50,
            "targetAudience": {
                "age": {"min": 25, "max": 45},
                "locations": ["US", "CA"],
                "interests": ["6003139266461"],
            },
            "creative": {
                "headline": "Save 20%",
                "description": "All shoes on sale",
                "imageUrl": "https://cdn.example/shoe.jpg",
                "callToAction": "Shop Now",
                "linkUrl": "https://shop.example",
            },
        },
    }


@pytest.fixture
def bulk_request_data() -> dict:
    return {
        "campaign": {
            "name": "Launch Q3",
            "objective": "OUTCOME_TRAFFIC",
            "budgetMode": "CBO",
            "budget": 25.5,
            "budgetType": "daily",
            "startDate": "NOW",
            "urlTags": "utm_source=meta",
        },
        "adSets": [
            {
                "name": "US Broad",
                "geoLocations": {"countries": ["US"]},
                "demographics": {"ageMin": 21, "ageMax": 55, "gender": "Female"},
                "optimizationEvent": "Link Clicks",
                "ads": [
                    {
                        "name": "Hero",
                        "format": "Image",
                        "creativeUrl": "fb-image-hash:abc123",
                        "headline": "Hello",
                        "primaryText": "Try it today",
                        "cta": "Learn More",
                        "destination": {"type": "LANDING_PAGE", "url": "https://shop.example"},
                    }
                ],
            }
        ],
        "facebookPageId": "page_9",
        "instagramAccountId": "ig_7",
    }
