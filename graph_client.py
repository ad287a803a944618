"""
Graph API client used by the launch orchestrator
================================================

Thin REST wrapper (requests) around the versioned Meta Graph API:

- GET / POST with the access token passed as a query parameter
- Batch calls (several sub-requests packed into one POST)
- Multipart image upload to the ad account media library
- The three resumable video upload phases (start / transfer / finish)
- Raw create calls for campaigns, ad sets, ad creatives and ads
- Object reads (video status, thumbnails, insights, media library listings)

Nested payload fields (targeting, promoted_object, object_story_spec, ...) are
sent the way Graph expects form fields: JSON-encoded strings.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v24.0"


# -----------------------------
# Exceptions
# -----------------------------

class MetaAPIError(RuntimeError):
    def __init__(self, message: str, *, http_status: int | None = None, error: dict | None = None):
        super().__init__(message)
        self.http_status = http_status
        self.error = error or {}


# -----------------------------
# Config
# -----------------------------

@dataclass(frozen=True)
class MetaConfig:
    access_token: str
    ad_account_id: str = ""
    api_version: str = DEFAULT_API_VERSION
    app_secret: str | None = None
    page_id: str | None = None
    timeout_s: int = 30

    @staticmethod
    def from_env() -> "MetaConfig":
        """Loads config from environment variables (optionally via .env)."""
        load_dotenv(override=False)

        account_id = os.getenv("META_AD_ACCOUNT_ID", "").strip()
        api_version = os.getenv("META_API_VERSION", DEFAULT_API_VERSION).strip() or DEFAULT_API_VERSION
        app_secret = os.getenv("META_APP_SECRET", "").strip() or None
        page_id = os.getenv("META_PAGE_ID", "").strip() or None
        timeout_s = int((os.getenv("META_TIMEOUT_S", "30") or "30").strip() or "30")

        token_source = os.getenv("META_TOKEN_SOURCE", "").strip().lower()
        database_url = os.getenv("DATABASE_URL", "").strip()

        if token_source == "db":
            if not database_url:
                raise ValueError("META_TOKEN_SOURCE=db but DATABASE_URL is not set.")
            from launch_store_pg import LaunchStorePG

            user_id = os.getenv("META_TOKEN_USER_ID", "default").strip() or "default"
            token = LaunchStorePG(database_url).get_valid_access_token(user_id)
        else:
            token = os.getenv("META_ACCESS_TOKEN", "").strip()

        if not token:
            raise ValueError(
                "Missing access token. Set META_ACCESS_TOKEN or set META_TOKEN_SOURCE=db with a stored credential."
            )

        return MetaConfig(
            access_token=token,
            ad_account_id=normalize_ad_account_id(account_id) if account_id else "",
            api_version=api_version,
            app_secret=app_secret,
            page_id=page_id,
            timeout_s=timeout_s,
        )


def normalize_ad_account_id(ad_account_id: str) -> str:
    """
    Graph endpoints use act_<AD_ACCOUNT_ID>.
    Accept either 'act_123' or '123'.
    """
    ad_account_id = (ad_account_id or "").strip()
    if ad_account_id.startswith("act_"):
        return ad_account_id
    if ad_account_id.isdigit():
        return f"act_{ad_account_id}"
    return ad_account_id


def encode_form(data: Dict[str, Any]) -> Dict[str, str]:
    """Encode a payload dict as Graph form fields (nested values as JSON, bools as 'true'/'false')."""
    out: Dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            out[key] = json.dumps(value)
        else:
            out[key] = str(value)
    return out


# -----------------------------
# Graph client (REST via requests)
# -----------------------------

class MetaClient:
    def __init__(self, cfg: MetaConfig, *, session: requests.Session | None = None):
        self.cfg = cfg
        self.session = session or requests.Session()
        self.base_url = f"https://graph.facebook.com/{cfg.api_version}"
        self.video_base_url = f"https://graph-video.facebook.com/{cfg.api_version}"

    def _account(self, ad_account_id: str | None) -> str:
        acct = normalize_ad_account_id(ad_account_id or self.cfg.ad_account_id)
        if not acct:
            raise ValueError("No ad account id configured for this request.")
        return acct

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        max_retries: int = 2,
        use_video: bool = False,
    ) -> Any:
        base = self.video_base_url if use_video else self.base_url
        url = base + "/" + path.lstrip("/") if path.strip("/") else base
        params = dict(params or {})
        params.setdefault("access_token", self.cfg.access_token)

        # appsecret_proof is required when "App Secret Proof for Server API calls" is enabled.
        if self.cfg.app_secret:
            params.setdefault(
                "appsecret_proof",
                hmac.new(
                    self.cfg.app_secret.encode("utf-8"),
                    self.cfg.access_token.encode("utf-8"),
                    hashlib.sha256,
                ).hexdigest(),
            )

        last_err: Optional[Exception] = None
        for attempt in range(max_retries + 1):
            try:
                resp = self.session.request(
                    method=method.upper(),
                    url=url,
                    params=params,
                    data=data or None,
                    files=files,
                    timeout=self.cfg.timeout_s,
                )
                # Graph often returns JSON even for errors.
                try:
                    payload = resp.json()
                except ValueError:
                    payload = {"raw": resp.text}

                if resp.status_code >= 400 or (isinstance(payload, dict) and "error" in payload):
                    error_obj = payload.get("error", {}) if isinstance(payload, dict) else {}
                    msg = (
                        error_obj.get("error_user_msg")
                        or error_obj.get("message")
                        or payload.get("raw")
                        or "Unknown Graph API error"
                    )
                    raise MetaAPIError(
                        f"Graph API error ({resp.status_code}): {msg}",
                        http_status=resp.status_code,
                        error=error_obj,
                    )
                return payload
            except MetaAPIError as e:
                # Retry only for transient server errors / rate limits.
                last_err = e
                is_retryable = e.http_status in {500, 502, 503, 504, 429}
                if attempt < max_retries and is_retryable:
                    logger.warning("%s %s failed (%s), retrying", method.upper(), path, e.http_status)
                    time.sleep(1.5 * (attempt + 1))
                    continue
                logger.error("Graph API error [%s %s]: %s", method.upper(), path, e.error or e)
                raise
            except requests.RequestException as e:
                last_err = e
                if attempt < max_retries:
                    time.sleep(1.5 * (attempt + 1))
                    continue
                raise MetaAPIError(f"Network error calling Graph API: {e}") from e

        raise MetaAPIError(f"Graph API request failed after retries: {last_err}")

    def get(self, path: str, *, params: Optional[dict] = None, max_retries: int = 2) -> Any:
        return self._request("GET", path, params=params, max_retries=max_retries)

    def post(self, path: str, *, data: Optional[dict] = None, max_retries: int = 0) -> Any:
        return self._request("POST", path, data=encode_form(data or {}), max_retries=max_retries)

    def batch(self, requests_spec: List[Dict[str, Any]]) -> List[Any]:
        """Run several sub-requests in one POST.

        Each sub-response is `{code, body}`; non-200 codes are logged, never raised.
        Bodies are returned parsed (None when a sub-response has no body).
        """
        response = self._request("POST", "/", data={"batch": json.dumps(requests_spec)}, max_retries=0)
        out: List[Any] = []
        for item in response or []:
            if item is None:
                out.append(None)
                continue
            code = item.get("code")
            body = item.get("body")
            if code != 200:
                logger.warning("Batch sub-request failed with code %s: %s", code, body)
            try:
                out.append(json.loads(body) if body else None)
            except ValueError:
                out.append({"raw": body})
        return out

    # -----------------------------
    # Diagnostics / discovery
    # -----------------------------

    def whoami(self) -> dict:
        return self.get("/me", params={"fields": "id,name"})

    def get_object(self, object_id: str, fields: str) -> dict:
        return self.get(f"/{object_id}", params={"fields": fields})

    def list_campaigns(self, ad_account_id: str | None = None, *, limit: int = 100) -> List[dict]:
        acct = self._account(ad_account_id)
        payload = self.get(
            f"/{acct}/campaigns",
            params={
                "fields": "id,name,status,objective,daily_budget,lifetime_budget,bid_strategy,start_time,stop_time",
                "limit": str(limit),
            },
        )
        data = payload.get("data") or []
        return data if isinstance(data, list) else []

    def get_insights(
        self,
        object_id: str,
        *,
        date_preset: str | None = "last_30d",
        time_range: Dict[str, str] | None = None,
        level: str | None = None,
        fields: str = "impressions,clicks,spend,reach,actions",
    ) -> List[dict]:
        params: Dict[str, Any] = {"fields": fields}
        if time_range:
            params["time_range"] = json.dumps(time_range)
        elif date_preset:
            params["date_preset"] = date_preset
        if level:
            params["level"] = level
        payload = self.get(f"/{object_id}/insights", params=params)
        data = payload.get("data") or []
        return data if isinstance(data, list) else []

    def list_ad_images(self, ad_account_id: str | None = None, *, limit: int = 50) -> List[dict]:
        acct = self._account(ad_account_id)
        payload = self.get(
            f"/{acct}/adimages",
            params={"fields": "hash,permalink_url,width,height,name,created_time", "limit": str(limit)},
        )
        return payload.get("data") or []

    def list_ad_videos(self, ad_account_id: str | None = None, *, limit: int = 50) -> List[dict]:
        acct = self._account(ad_account_id)
        payload = self.get(
            f"/{acct}/advideos",
            params={"fields": "id,title,length,thumbnails,created_time,status", "limit": str(limit)},
        )
        videos = []
        for v in payload.get("data") or []:
            thumbs = ((v.get("thumbnails") or {}).get("data") or [])
            videos.append({
                "id": v.get("id"),
                "title": v.get("title"),
                "length": v.get("length"),
                "thumbnail_url": thumbs[0].get("uri") if thumbs else None,
                "status": v.get("status"),
            })
        return videos

    # -----------------------------
    # Media library uploads
    # -----------------------------

    def upload_image_bytes(
        self,
        content: bytes,
        *,
        filename: str = "image.jpg",
        mime_type: str = "image/jpeg",
        name: str | None = None,
        ad_account_id: str | None = None,
    ) -> dict:
        """Multipart upload to /adimages. Returns {'hash', 'id'}."""
        acct = self._account(ad_account_id)
        files = {"filename": (filename, content, mime_type)}
        data = {"name": name} if name else {}
        payload = self._request("POST", f"/{acct}/adimages", data=data, files=files, max_retries=0)
        return _parse_image_upload(payload)

    def upload_image_url(self, url: str, *, name: str | None = None, ad_account_id: str | None = None) -> dict:
        """Register a remote image URL in the media library. Returns {'hash', 'id'}."""
        acct = self._account(ad_account_id)
        data: Dict[str, Any] = {"url": url}
        if name:
            data["name"] = name
        payload = self.post(f"/{acct}/adimages", data=data)
        return _parse_image_upload(payload)

    def start_video_upload(self, file_size: int, *, title: str | None = None, ad_account_id: str | None = None) -> dict:
        acct = self._account(ad_account_id)
        data: Dict[str, Any] = {"upload_phase": "start", "file_size": int(file_size)}
        if title:
            data["title"] = title
        return self._request("POST", f"/{acct}/advideos", data=encode_form(data), max_retries=0, use_video=True)

    def transfer_video_chunk(
        self,
        upload_session_id: str,
        start_offset: int,
        chunk: bytes,
        *,
        ad_account_id: str | None = None,
    ) -> dict:
        # Re-sending the same offset is safe, so the transfer phase may retry.
        acct = self._account(ad_account_id)
        data = {
            "upload_phase": "transfer",
            "upload_session_id": upload_session_id,
            "start_offset": str(int(start_offset)),
        }
        files = {"video_file_chunk": ("chunk.mp4", chunk, "application/octet-stream")}
        return self._request("POST", f"/{acct}/advideos", data=data, files=files, max_retries=2, use_video=True)

    def finish_video_upload(
        self,
        upload_session_id: str,
        *,
        title: str | None = None,
        ad_account_id: str | None = None,
    ) -> dict:
        acct = self._account(ad_account_id)
        data: Dict[str, Any] = {"upload_phase": "finish", "upload_session_id": upload_session_id}
        if title:
            data["title"] = title
        return self._request("POST", f"/{acct}/advideos", data=encode_form(data), max_retries=0, use_video=True)

    def upload_video_url(self, file_url: str, *, title: str | None = None, ad_account_id: str | None = None) -> str:
        acct = self._account(ad_account_id)
        data: Dict[str, Any] = {"file_url": file_url}
        if title:
            data["title"] = title
        payload = self._request("POST", f"/{acct}/advideos", data=encode_form(data), max_retries=0, use_video=True)
        video_id = str(payload.get("id") or "").strip()
        if not video_id:
            raise MetaAPIError(f"Video upload did not return id. Response: {payload}")
        return video_id

    def get_video_status(self, video_id: str) -> dict:
        obj = self.get_object(str(video_id), fields="status")
        status = obj.get("status")
        return status if isinstance(status, dict) else {}

    def list_video_thumbnails(self, video_id: str, *, limit: int = 10) -> List[dict]:
        """Return available thumbnails for a video (each item typically includes 'uri')."""
        vid = (video_id or "").strip()
        if not vid:
            return []
        payload = self.get(
            f"/{vid}/thumbnails",
            params={"fields": "id,uri,is_preferred,width,height", "limit": str(limit)},
        )
        data = payload.get("data") or []
        return data if isinstance(data, list) else []

    # -----------------------------
    # Create calls (never retried: a replay would create a duplicate)
    # -----------------------------

    def create_campaign(self, payload: Dict[str, Any], *, ad_account_id: str | None = None) -> dict:
        acct = self._account(ad_account_id)
        return self.post(f"/{acct}/campaigns", data=payload)

    def create_adset(self, payload: Dict[str, Any], *, ad_account_id: str | None = None) -> dict:
        acct = self._account(ad_account_id)
        logger.info("Creating ad set with payload: %s", json.dumps(payload, default=str))
        return self.post(f"/{acct}/adsets", data=payload)

    def create_adcreative(self, payload: Dict[str, Any], *, ad_account_id: str | None = None) -> dict:
        acct = self._account(ad_account_id)
        return self.post(f"/{acct}/adcreatives", data=payload)

    def create_ad(self, payload: Dict[str, Any], *, ad_account_id: str | None = None) -> dict:
        acct = self._account(ad_account_id)
        return self.post(f"/{acct}/ads", data=payload)


def _parse_image_upload(payload: dict) -> dict:
    images = payload.get("images") or {}
    if not images:
        raise MetaAPIError(f"Upload did not return images. Response: {payload}")
    first_key = next(iter(images.keys()))
    img_obj = images[first_key] or {}
    image_hash = img_obj.get("hash") or first_key
    if not image_hash:
        raise MetaAPIError(f"Could not parse image_hash from response: {payload}")
    return {"hash": image_hash, "id": img_obj.get("id")}
