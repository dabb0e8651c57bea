"""Remote REST conversion provider backend (RapidAPI youtube-mp36)."""

from typing import Any

from asyncio_throttle.throttler import Throttler
import httpx
import structlog

from converter_api.conversion.backends.base import (
    ConversionBackend,
    ConversionResult,
    PerformanceProfile,
    ProgressCallback,
)
from converter_api.conversion.failure_classifier import FailureClass, error_for
from converter_api.core.errors import (
    ConfigurationError,
    PermanentBackendError,
    TransientBackendError,
)

logger = structlog.get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_TITLE = "YouTube Audio"


class RemoteApiBackend(ConversionBackend):
    """
    Ask the provider for a download link, then fetch the MP3 it points to.

    Provider calls share a Throttler so every attempt, retries included,
    stays under the configured requests-per-minute limit.
    """

    name = "remote_api"

    def __init__(
        self,
        api_key: str,
        api_host: str = "youtube-mp36.p.rapidapi.com",
        rate_limit_per_minute: int = 50,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.api_host = api_host
        self.base_url = f"https://{api_host}"
        self.throttler = Throttler(rate_limit=rate_limit_per_minute, period=60)
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    async def attempt_conversion(
        self,
        video_id: str,
        *,
        profile: PerformanceProfile,
        progress: ProgressCallback | None = None,
    ) -> ConversionResult:
        if not self.api_key:
            raise ConfigurationError("Remote provider API key is not configured")

        if progress:
            await progress(20)

        payload = await self._request_link(video_id, profile)
        link = self._extract_link(payload, video_id)
        title = payload.get("title") or DEFAULT_TITLE

        if progress:
            await progress(60)

        audio = await self._download(link, profile)

        if progress:
            await progress(90)

        logger.info(
            "Remote conversion completed",
            video_id=video_id,
            profile=profile.name,
            size_bytes=len(audio),
        )
        return ConversionResult(audio_bytes=audio, title=title)

    async def _request_link(self, video_id: str, profile: PerformanceProfile) -> dict[str, Any]:
        headers = {
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": self.api_host,
        }
        try:
            async with self.throttler:
                response = await self._client.get(
                    f"{self.base_url}/dl",
                    params={"id": video_id},
                    headers=headers,
                    timeout=profile.http_timeout_seconds,
                )
        except httpx.HTTPError as e:
            raise TransientBackendError(
                f"Provider request failed: {e}", reason_code="network"
            ) from e

        self._raise_for_status(response, "Provider")

        try:
            data = response.json()
        except ValueError as e:
            raise TransientBackendError(
                "Provider returned a non-JSON response", reason_code="bad_response"
            ) from e
        if not isinstance(data, dict):
            raise TransientBackendError(
                "Provider returned an unexpected payload", reason_code="bad_response"
            )

        logger.debug("Provider response", video_id=video_id, provider_status=data.get("status"))
        return data

    @staticmethod
    def _extract_link(data: dict[str, Any], video_id: str) -> str:
        status = str(data.get("status", "")).lower()
        message = str(data.get("msg") or data.get("message") or "")

        if status in ("ok", "success"):
            link = data.get("link") or data.get("url") or data.get("download_url")
            if not link:
                raise TransientBackendError(
                    "Provider response did not include a download link",
                    reason_code="missing_link",
                )
            return link

        if status == "processing":
            raise TransientBackendError(
                f"Provider is still processing {video_id}", reason_code="provider_processing"
            )

        if status == "fail":
            raise error_for(
                message or f"Provider failed to convert {video_id}",
                default=FailureClass.PERMANENT,
            )

        raise TransientBackendError(
            f"Unexpected provider status: {status or 'missing'}", reason_code="bad_response"
        )

    async def _download(self, link: str, profile: PerformanceProfile) -> bytes:
        try:
            response = await self._client.get(link, timeout=profile.http_timeout_seconds)
        except httpx.HTTPError as e:
            raise TransientBackendError(
                f"Audio download failed: {e}", reason_code="network"
            ) from e

        self._raise_for_status(response, "Audio download")

        if not response.content:
            raise TransientBackendError("Downloaded audio is empty", reason_code="empty_audio")
        return response.content

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        code = response.status_code
        if code < 400:
            return
        detail = f"{what} returned HTTP {code}: {response.text[:200]}"
        if code in (401, 403) and what == "Provider":
            raise ConfigurationError(detail)
        if code == 429 or code >= 500 or code == 408:
            raise TransientBackendError(detail, reason_code=f"http_{code}")
        raise PermanentBackendError(detail, reason_code=f"http_{code}")

    async def health(self) -> dict[str, Any]:
        return {
            "status": "configured" if self.api_key else "missing_api_key",
            "backend": self.name,
            "provider_host": self.api_host,
        }

    async def aclose(self) -> None:
        await self._client.aclose()
