"""
Media upload pipeline
=====================

Turns a creative media reference into something a creative can point at:

- images: multipart upload (or URL registration) to the ad account library -> ImageAsset
- videos: resumable start / transfer / finish upload -> video id, then readiness
  polling and thumbnail lookup driven by a RetryPolicy

References arrive as strings from the wizard and are parsed once, at the boundary,
into AssetReference variants; nothing past parse_asset_reference looks at prefixes.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TypeVar, Union

from dotenv import load_dotenv
from PIL import Image, UnidentifiedImageError

from creative_specs import ImageAsset, MediaAsset, VideoAsset
from graph_client import MetaAPIError, MetaClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHUNK_SIZE = 10 * 1024 * 1024  # 10 MiB per transfer call

IMAGE_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

LIBRARY_IMAGE_PREFIX = "fb-image-hash:"
LIBRARY_VIDEO_PREFIX = "fb-video-id:"
HOSTED_IMAGE_PREFIX = "https://facebook.com/image/"
HOSTED_VIDEO_PREFIX = "https://facebook.com/video/"


class UnsupportedAssetError(ValueError):
    """Media reference that cannot be resolved server-side."""


# -----------------------------
# Asset references
# -----------------------------

@dataclass(frozen=True)
class UploadedAsset:
    content: bytes = field(repr=False)
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class RemoteUrlAsset:
    url: str


@dataclass(frozen=True)
class AlreadyHostedAsset:
    asset_id: str


@dataclass(frozen=True)
class LibraryAsset:
    asset_id: str


AssetReference = Union[UploadedAsset, RemoteUrlAsset, AlreadyHostedAsset, LibraryAsset]


def _decode_data_url(raw: str) -> UploadedAsset:
    header, _, data = raw.partition(",")
    if not data:
        raise UnsupportedAssetError("Invalid base64 data URL: missing data part")
    mime_type = header[len("data:"):].split(";")[0].strip() or "application/octet-stream"
    try:
        content = base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise UnsupportedAssetError(f"Invalid base64 data URL: {e}") from e
    if not content:
        raise UnsupportedAssetError("Invalid base64 data URL: empty payload")
    return UploadedAsset(content=content, mime_type=mime_type)


def parse_asset_reference(raw: str, *, kind: str) -> AssetReference:
    """
    Parse a wizard media reference for `kind` ('image' or 'video').

    fb-image-hash:<hash> / fb-video-id:<id>     -> LibraryAsset
    https://facebook.com/{image,video}/<id>     -> AlreadyHostedAsset
    data:<mime>;base64,<payload>                -> UploadedAsset
    http(s)://...                               -> RemoteUrlAsset
    blob:...                                    -> rejected
    """
    if kind not in ("image", "video"):
        raise ValueError(f"Unknown media kind: {kind}")
    ref = (raw or "").strip()
    if not ref:
        raise UnsupportedAssetError(f"Empty {kind} reference")

    library_prefix = LIBRARY_IMAGE_PREFIX if kind == "image" else LIBRARY_VIDEO_PREFIX
    hosted_prefix = HOSTED_IMAGE_PREFIX if kind == "image" else HOSTED_VIDEO_PREFIX

    if ref.startswith(library_prefix):
        asset_id = ref[len(library_prefix):].strip()
        if not asset_id:
            raise UnsupportedAssetError(f"Invalid library {kind} reference: {ref}")
        return LibraryAsset(asset_id=asset_id)
    if ref.startswith(hosted_prefix):
        asset_id = ref[len(hosted_prefix):].strip("/").split("/")[-1]
        if not asset_id:
            raise UnsupportedAssetError(f"Invalid {kind} URL format: {ref}")
        return AlreadyHostedAsset(asset_id=asset_id)
    if ref.startswith("blob:"):
        raise UnsupportedAssetError(f"Blob URLs are not supported. Send the {kind} as a base64 data URL.")
    if ref.startswith("data:"):
        return _decode_data_url(ref)
    if ref.startswith(("http://", "https://")):
        return RemoteUrlAsset(url=ref)
    raise UnsupportedAssetError(f"Unsupported {kind} reference: {ref[:40]}")


def image_extension(mime_type: str) -> str:
    return IMAGE_EXTENSIONS.get((mime_type or "").lower(), ".jpg")


def verify_image_bytes(content: bytes) -> None:
    """Raise UnsupportedAssetError unless Pillow recognizes the bytes as an image."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise UnsupportedAssetError(f"Decoded bytes are not a valid image: {e}") from e


# -----------------------------
# Bounded, cancellable retry
# -----------------------------

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 20
    delay_s: float = 3.0
    backoff: float = 1.0
    cancel_event: Optional[threading.Event] = field(default=None, compare=False, repr=False)

    @staticmethod
    def from_env(prefix: str, default_attempts: int, default_delay_s: float) -> "RetryPolicy":
        load_dotenv(override=False)
        attempts = int(os.getenv(f"{prefix}_MAX_ATTEMPTS", str(default_attempts)) or default_attempts)
        delay_s = float(os.getenv(f"{prefix}_DELAY_S", str(default_delay_s)) or default_delay_s)
        return RetryPolicy(max_attempts=max(1, attempts), delay_s=max(0.0, delay_s))

    def delay_for(self, attempt: int) -> float:
        return self.delay_s * (self.backoff ** max(0, attempt - 1))

    def _sleep(self, seconds: float) -> bool:
        """Sleep between attempts; returns False when cancelled."""
        if self.cancel_event is not None:
            return not self.cancel_event.wait(seconds)
        if seconds > 0:
            time.sleep(seconds)
        return True

    def poll(self, step: Callable[[int], Optional[T]], *, default: Optional[T] = None) -> Optional[T]:
        """
        Call step(attempt) until it returns a non-None value or attempts run out.

        Returns `default` on exhaustion or cancellation; exceptions from step propagate.
        """
        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_event is not None and self.cancel_event.is_set():
                return default
            result = step(attempt)
            if result is not None:
                return result
            if attempt < self.max_attempts and not self._sleep(self.delay_for(attempt)):
                return default
        return default


DEFAULT_READY_POLICY = RetryPolicy(max_attempts=20, delay_s=3.0)
DEFAULT_THUMBNAIL_POLICY = RetryPolicy(max_attempts=3, delay_s=2.0)


# -----------------------------
# Video state
# -----------------------------

@dataclass
class UploadSession:
    video_id: str
    upload_session_id: str
    offset: int
    total_size: int

    @property
    def done(self) -> bool:
        return self.offset >= self.total_size


@dataclass(frozen=True)
class VideoReadiness:
    video_status: str | None = None
    uploading_phase: str | None = None
    processing_phase: str | None = None
    publishing_phase: str | None = None

    @staticmethod
    def from_status(status: dict) -> "VideoReadiness":
        def phase(name: str) -> str | None:
            p = status.get(name)
            return p.get("status") if isinstance(p, dict) else None

        return VideoReadiness(
            video_status=status.get("video_status"),
            uploading_phase=phase("uploading_phase"),
            processing_phase=phase("processing_phase"),
            publishing_phase=phase("publishing_phase"),
        )

    def verdict(self) -> Optional[bool]:
        """True = usable, False = failed for good, None = keep polling."""
        if self.video_status == "error":
            return False
        if self.uploading_phase and self.uploading_phase != "complete":
            return None
        if self.video_status == "ready" and self.processing_phase == "complete":
            return True
        return None


@dataclass(frozen=True)
class UploadProgress:
    phase: str  # starting | transferring | finalizing | processing | ready
    label: str
    bytes_sent: int = 0
    total_bytes: int = 0
    video_id: str | None = None

    @property
    def percent(self) -> int:
        if not self.total_bytes:
            return 0
        return min(100, int(self.bytes_sent * 100 / self.total_bytes))


ProgressCallback = Callable[[UploadProgress], None]


def pick_thumbnail_uri(thumbnails: List[dict]) -> Optional[str]:
    """Preferred thumbnail first, else the first one with a uri."""
    for t in thumbnails or []:
        if t.get("is_preferred") and (t.get("uri") or "").strip():
            return str(t["uri"]).strip()
    for t in thumbnails or []:
        uri = (t.get("uri") or "").strip()
        if uri:
            return uri
    return None


# -----------------------------
# Pipeline
# -----------------------------

class MediaUploader:
    def __init__(
        self,
        client: MetaClient,
        ad_account_id: str | None = None,
        *,
        ready_policy: RetryPolicy | None = None,
        thumbnail_policy: RetryPolicy | None = None,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.client = client
        self.ad_account_id = ad_account_id
        self.ready_policy = ready_policy or DEFAULT_READY_POLICY
        self.thumbnail_policy = thumbnail_policy or DEFAULT_THUMBNAIL_POLICY
        self.chunk_size = int(chunk_size)

    @staticmethod
    def from_env(client: MetaClient, ad_account_id: str | None = None) -> "MediaUploader":
        return MediaUploader(
            client,
            ad_account_id,
            ready_policy=RetryPolicy.from_env("VIDEO_READY", 20, 3.0),
            thumbnail_policy=RetryPolicy.from_env("VIDEO_THUMBNAIL", 3, 2.0),
        )

    # ---- images ----

    def upload_image(self, ref: AssetReference, *, name: str | None = None) -> ImageAsset:
        if isinstance(ref, (LibraryAsset, AlreadyHostedAsset)):
            logger.info("Using existing image hash %s", ref.asset_id)
            return ImageAsset(image_hash=ref.asset_id)

        if isinstance(ref, RemoteUrlAsset):
            logger.info("Registering image from URL: %s", ref.url)
            result = self.client.upload_image_url(ref.url, name=name, ad_account_id=self.ad_account_id)
            return ImageAsset(image_hash=result["hash"], image_id=result.get("id"))

        verify_image_bytes(ref.content)
        ext = image_extension(ref.mime_type)
        filename = f"{name}{ext}" if name else f"image{ext}"
        logger.info("Uploading image %r (%s, %d bytes)", filename, ref.mime_type, ref.size)
        result = self.client.upload_image_bytes(
            ref.content,
            filename=filename,
            mime_type=ref.mime_type,
            name=name,
            ad_account_id=self.ad_account_id,
        )
        logger.info("Image uploaded: id=%s hash=%s", result.get("id"), result["hash"])
        return ImageAsset(image_hash=result["hash"], image_id=result.get("id"))

    # ---- videos ----

    def upload_video(
        self,
        ref: AssetReference,
        *,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Dict[str, Optional[str]]:
        """
        Upload (or reference) a video. Returns {'video_id', 'thumbnail_url': None}.

        Readiness and thumbnail are resolved by the caller through
        wait_for_video_ready / get_video_thumbnail.
        """
        if isinstance(ref, (LibraryAsset, AlreadyHostedAsset)):
            logger.info("Using existing video id %s", ref.asset_id)
            return {"video_id": ref.asset_id, "thumbnail_url": None}

        if isinstance(ref, RemoteUrlAsset):
            logger.info("Registering video from URL: %s", ref.url)
            video_id = self.client.upload_video_url(ref.url, title=title, ad_account_id=self.ad_account_id)
            return {"video_id": video_id, "thumbnail_url": None}

        return {"video_id": self._resumable_upload(ref, title=title, on_progress=on_progress), "thumbnail_url": None}

    def _resumable_upload(
        self,
        ref: UploadedAsset,
        *,
        title: str | None,
        on_progress: ProgressCallback | None,
    ) -> str:
        label = title or "Video"
        total = ref.size

        def emit(phase: str, sent: int, video_id: str | None = None) -> None:
            if on_progress is not None:
                on_progress(UploadProgress(phase=phase, label=label, bytes_sent=sent, total_bytes=total, video_id=video_id))

        emit("starting", 0)
        started = self.client.start_video_upload(total, title=title, ad_account_id=self.ad_account_id)
        video_id = str(started.get("video_id") or started.get("id") or "").strip()
        session_id = str(started.get("upload_session_id") or "").strip()
        if not video_id or not session_id:
            raise RuntimeError(f"Resumable upload start did not return a session. Response: {started}")

        session = UploadSession(video_id=video_id, upload_session_id=session_id, offset=0, total_size=total)
        logger.info("Video upload session %s started for %s (%d bytes)", session_id, video_id, total)

        while not session.done:
            chunk = ref.content[session.offset:session.offset + self.chunk_size]
            self.client.transfer_video_chunk(
                session.upload_session_id,
                session.offset,
                chunk,
                ad_account_id=self.ad_account_id,
            )
            session.offset += len(chunk)
            logger.info("Video %s: %d/%d bytes transferred", video_id, session.offset, total)
            emit("transferring", session.offset, video_id)

        emit("finalizing", total, video_id)
        self.client.finish_video_upload(session.upload_session_id, title=title, ad_account_id=self.ad_account_id)
        logger.info("Video %s upload finished; transcoding started", video_id)
        emit("processing", total, video_id)
        return video_id

    def wait_for_video_ready(self, video_id: str, *, on_progress: ProgressCallback | None = None) -> bool:
        """Poll status until usable. Exhausted attempts return False, not an error."""
        max_attempts = self.ready_policy.max_attempts

        def check(attempt: int) -> Optional[bool]:
            try:
                status = self.client.get_video_status(video_id)
            except MetaAPIError as e:
                # Subcode 1885252 means still processing; any failed status read just costs an attempt.
                subcode = e.error.get("error_subcode")
                logger.warning(
                    "Status read for video %s failed (attempt %d/%d, subcode=%s): %s",
                    video_id, attempt, max_attempts, subcode, e,
                )
                return None
            readiness = VideoReadiness.from_status(status)
            logger.info(
                "Video %s status (attempt %d/%d): video=%s uploading=%s processing=%s publishing=%s",
                video_id,
                attempt,
                max_attempts,
                readiness.video_status,
                readiness.uploading_phase,
                readiness.processing_phase,
                readiness.publishing_phase,
            )
            return readiness.verdict()

        ready = self.ready_policy.poll(check, default=False)
        if ready:
            if on_progress is not None:
                on_progress(UploadProgress(phase="ready", label=video_id, video_id=video_id))
        else:
            logger.warning("Video %s not ready after %d attempts", video_id, max_attempts)
        return bool(ready)

    def get_video_thumbnail(self, video_id: str) -> Optional[str]:
        """Preferred thumbnail uri, or None if none shows up in time."""

        def check(attempt: int) -> Optional[str]:
            try:
                return pick_thumbnail_uri(self.client.list_video_thumbnails(video_id))
            except MetaAPIError as e:
                # Thumbnails can 400 while the video is still processing.
                logger.warning("Thumbnail lookup for %s failed (attempt %d): %s", video_id, attempt, e)
                return None

        uri = self.thumbnail_policy.poll(check, default=None)
        if uri is None:
            logger.warning("No thumbnail found for video %s", video_id)
        return uri

    def resolve(
        self,
        raw: str,
        *,
        kind: str,
        name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> MediaAsset:
        """Parse a reference and return a creative-ready asset (videos are ready + thumbnailed)."""
        ref = parse_asset_reference(raw, kind=kind)
        if kind == "image":
            return self.upload_image(ref, name=name)

        uploaded = self.upload_video(ref, title=name, on_progress=on_progress)
        video_id = uploaded["video_id"]
        if not self.wait_for_video_ready(video_id, on_progress=on_progress):
            raise RuntimeError(f"Video {video_id} is not ready")
        return VideoAsset(video_id=video_id, thumbnail_url=self.get_video_thumbnail(video_id))
