"""
Home Assistant TTS Service

Converte texto em um arquivo WAV local que o baresip consegue tocar
(módulo aufile: mono, 8 kHz, 16 bit).

References:
- https://www.home-assistant.io/integrations/tts/#rest-api
"""

import hashlib
import os
from typing import Any, Dict, Optional

import aiohttp

from voip.core.errors import SynthesisError
from voip.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TTS_URL = "http://hassio/homeassistant/api/tts_get_url"
DEFAULT_CACHE_DIR = "/share/voip-client"
LOCAL_TESTING_AUDIO_FILE = "/usr/share/baresip/test-message.wav"

# O aufile do baresip só toca WAV mono 8 kHz 16 bit
TTS_OPTIONS = {
    "preferred_format": "wav",
    "preferred_sample_rate": "8000",
    "preferred_sample_channels": "1",
    "preferred_sample_bytes": "2",
}

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class TTSService:
    """Client for the Home Assistant TTS REST API with a local file cache."""

    def __init__(
        self,
        platform: str,
        cache_dir: Optional[str] = None,
        timeout: float = 10.0,
        tts_url: str = DEFAULT_TTS_URL,
        token: Optional[str] = None,
        local_testing: Optional[bool] = None,
    ):
        """
        Initialize the TTS service.

        Args:
            platform: TTS platform configured in Home Assistant (e.g. google_translate)
            cache_dir: Directory for synthesized files (default: $TTS_CACHE_DIR or /share/voip-client)
            timeout: Timeout of each HTTP request in seconds
            token: Supervisor token (default: $HASSIO_TOKEN)
            local_testing: Skip Home Assistant (default: $LOCAL_TESTING is set)
        """
        self.platform = platform
        self.cache_dir = cache_dir or os.getenv("TTS_CACHE_DIR", DEFAULT_CACHE_DIR)
        self.timeout = timeout
        self.tts_url = tts_url
        self._token = token if token is not None else os.getenv("HASSIO_TOKEN", "")
        if local_testing is None:
            local_testing = bool(os.getenv("LOCAL_TESTING"))
        self.local_testing = local_testing
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def get_output_filepath(self, message: str) -> str:
        digest = hashlib.sha256(message.encode("utf-8")).hexdigest()
        return os.path.join(self.cache_dir, f"tts_{digest}.wav")

    async def get_audio_file(self, message: str) -> str:
        """
        Return the path of a WAV file with the spoken message.

        Raises:
            SynthesisError: Home Assistant unreachable, error response or download failure
        """
        if self.local_testing:
            logger.info("tts_local_testing", path=LOCAL_TESTING_AUDIO_FILE)
            return LOCAL_TESTING_AUDIO_FILE

        out_path = self.get_output_filepath(message)
        if os.path.exists(out_path):
            logger.info("tts_cache_hit", path=out_path)
            return out_path

        try:
            os.makedirs(self.cache_dir, exist_ok=True)
        except OSError as e:
            raise SynthesisError(f"cannot create TTS cache directory {self.cache_dir}: {e}") from e

        tts_response = await self._get_tts_url(message)
        await self._download(tts_response["url"], out_path)

        logger.info("tts_audio_ready", path=out_path, platform=self.platform)
        return out_path

    async def _get_tts_url(self, message: str) -> Dict[str, Any]:
        if not self._token:
            raise SynthesisError("HASSIO_TOKEN environment variable is not set")

        payload = {
            "message": message,
            "platform": self.platform,
            "options": TTS_OPTIONS,
        }

        logger.info("requesting_tts_url", tts_url=self.tts_url, platform=self.platform)

        try:
            session = await self._get_session()
            async with session.post(
                self.tts_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"}
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error("tts_request_failed", status=response.status, response=body[:200])
                    raise SynthesisError(f"error response from TTS service ({response.status}): {body[:200]}")

                data = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            logger.error("tts_request_error", error=str(e))
            raise SynthesisError(f"error requesting TTS URL: {e}") from e
        except TimeoutError as e:
            logger.error("tts_request_timeout", timeout=self.timeout)
            raise SynthesisError(f"TTS service did not answer within {self.timeout}s") from e
        except ValueError as e:
            raise SynthesisError(f"invalid JSON from TTS service: {e}") from e

        if not isinstance(data, dict) or not data.get("url"):
            raise SynthesisError("TTS service returned empty URL")

        return data

    async def _download(self, url: str, out_path: str) -> None:
        """Stream the audio into the cache; partial files never stay in place."""
        tmp_path = f"{out_path}.part"
        logger.info("downloading_tts_audio", url=url)

        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    raise SynthesisError(f"error downloading TTS audio ({response.status})")

                with open(tmp_path, "wb") as out:
                    async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        out.write(chunk)

            os.replace(tmp_path, out_path)

        except aiohttp.ClientError as e:
            logger.error("tts_download_error", error=str(e))
            raise SynthesisError(f"error downloading audio file: {e}") from e
        except TimeoutError as e:
            raise SynthesisError(f"audio download did not finish within {self.timeout}s") from e
        except OSError as e:
            raise SynthesisError(f"cannot write audio file {out_path}: {e}") from e
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
