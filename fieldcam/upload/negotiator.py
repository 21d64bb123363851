# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Upload of finished artifacts to the media backend.

The artifact kind picks both the multipart field and the endpoint:

    Image -> field "photo", image endpoint (capture-image)
    Video -> field "video", video endpoint (merge-with-intro-outro)

The backend answers with either a JSON descriptor ({fileName, message?}),
which resolves to a download URL, or the processed media itself, which is
kept in a transient local file for preview. Anything else is a protocol
error.
"""

import asyncio
import json
import logging
import mimetypes
import shutil
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import aiohttp

from fieldcam.config import ClientContext, Settings, get_settings
from fieldcam.errors import NetworkError, ProtocolError, UploadInProgressError
from fieldcam.models.media import ArtifactKind, RecordedArtifact, UploadResult

logger = logging.getLogger(__name__)

FIELD_NAMES = {
    ArtifactKind.IMAGE: "photo",
    ArtifactKind.VIDEO: "video",
}


class UploadNegotiator:
    """Submits artifacts and resolves the backend's response.

    Usage:
        negotiator = UploadNegotiator(ClientContext(auth_token=token))
        result = await negotiator.submit(artifact, subject_id="42")
        print(result.resolved)
        await negotiator.close()
    """

    def __init__(
        self,
        context: ClientContext,
        settings: Optional[Settings] = None,
    ):
        """Initialize upload negotiator.

        Args:
            context: Auth token and uploader identity for requests
            settings: Client settings (uses global if not provided)
        """
        self.context = context
        self.settings = settings or get_settings()

        self._session: Optional[aiohttp.ClientSession] = None
        self._in_flight = False
        self._media_dir: Optional[Path] = None
        self._media_count = 0

    @property
    def busy(self) -> bool:
        """True while a submission is in flight (the upload control is disabled)."""
        return self._in_flight

    @property
    def base_url(self) -> str:
        return self.settings.upload.base_url.rstrip("/")

    def field_for(self, kind: ArtifactKind) -> str:
        return FIELD_NAMES[kind]

    def endpoint_for(self, kind: ArtifactKind) -> str:
        upload = self.settings.upload
        path = upload.image_endpoint if kind == ArtifactKind.IMAGE else upload.video_endpoint
        return f"{self.base_url}{path}"

    def media_base_for(self, kind: ArtifactKind) -> str:
        upload = self.settings.upload
        path = upload.image_media_path if kind == ArtifactKind.IMAGE else upload.video_media_path
        return f"{self.base_url}{path}"

    def download_url(self, kind: ArtifactKind, file_name: str) -> str:
        """Download URL for a file name returned by the backend."""
        return f"{self.media_base_for(kind)}/{quote(file_name)}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.upload.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session and drop transient media."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self.release_media()

    def build_form(self, artifact: RecordedArtifact, subject_id: str) -> aiohttp.FormData:
        upload = self.settings.upload
        form = aiohttp.FormData()
        form.add_field(upload.subject_field, str(subject_id))
        if self.context.uploaded_by:
            form.add_field(upload.uploaded_by_field, str(self.context.uploaded_by))
        form.add_field(
            self.field_for(artifact.kind),
            artifact.payload,
            filename=artifact.filename,
            content_type=artifact.mime_type,
        )
        return form

    async def submit(self, artifact: RecordedArtifact, subject_id: str) -> UploadResult:
        """Upload an artifact and resolve the response.

        Raises:
            UploadInProgressError: Another submission is in flight
            NetworkError: Transport failure or non-success status
            ProtocolError: Response is neither a JSON descriptor nor media
        """
        if self._in_flight:
            raise UploadInProgressError("An upload is already in progress")

        self._in_flight = True
        url = self.endpoint_for(artifact.kind)
        try:
            logger.info(
                f"Uploading {artifact.kind.value} {artifact.filename} "
                f"({artifact.size_bytes / 1024:.1f} KB) to {url}"
            )
            session = await self._get_session()
            form = self.build_form(artifact, subject_id)
            async with session.post(url, data=form, headers=self.context.auth_headers()) as resp:
                body = await resp.read()
                if resp.status >= 400:
                    raise NetworkError(f"Upload failed: HTTP {resp.status}", status=resp.status)
                content_type = resp.content_type

        except asyncio.TimeoutError as e:
            raise NetworkError("Upload timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Connection error: {e}") from e
        finally:
            self._in_flight = False

        return self.interpret(content_type, body, artifact.kind)

    def interpret(self, content_type: Optional[str], body: bytes, kind: ArtifactKind) -> UploadResult:
        """Classify a successful response by its declared content type."""
        content_type = (content_type or "").lower()

        if content_type == "application/json" or content_type.endswith("+json"):
            try:
                data = json.loads(body)
            except ValueError as e:
                raise ProtocolError("Malformed JSON response", content_type) from e

            file_name = data.get("fileName") if isinstance(data, dict) else None
            if not isinstance(file_name, str) or not file_name:
                raise ProtocolError("JSON response has no fileName", content_type)

            message = data.get("message")
            if message is not None and not isinstance(message, str):
                message = str(message)
            url = self.download_url(kind, file_name)
            logger.info(f"Upload resolved to {url}")
            return UploadResult(
                resolved=url,
                message=message,
                succeeded=True,
                content_type=content_type,
            )

        if content_type.startswith("video/") or content_type.startswith("image/"):
            path = self._store_media(body, content_type)
            logger.info(f"Upload returned {content_type} ({len(body) / 1024:.1f} KB)")
            return UploadResult(
                resolved=path.as_uri(),
                message="Upload successful",
                succeeded=True,
                content_type=content_type,
                local_path=path,
            )

        raise ProtocolError(
            f"Unexpected response from server ({content_type or 'no content type'})",
            content_type,
        )

    def _store_media(self, body: bytes, content_type: str) -> Path:
        """Keep returned media in a transient file until release_media()."""
        if self._media_dir is None:
            self._media_dir = Path(tempfile.mkdtemp(prefix="fieldcam-media-"))
        self._media_count += 1
        ext = mimetypes.guess_extension(content_type) or ".bin"
        path = self._media_dir / f"media_{self._media_count}{ext}"
        path.write_bytes(body)
        return path

    def release_media(self) -> None:
        """Delete transient media handles. Idempotent."""
        media_dir, self._media_dir = self._media_dir, None
        if media_dir is not None:
            shutil.rmtree(media_dir, ignore_errors=True)
