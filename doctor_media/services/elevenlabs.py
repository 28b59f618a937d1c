"""ElevenLabs voice cloning and speech-to-speech client."""

import json
import logging
from typing import Optional

import httpx

from doctor_media.config import get_settings
from doctor_media.errors import ProviderError

settings = get_settings()
logger = logging.getLogger(__name__)

PROVIDER = "elevenlabs"


class ElevenLabsClient:
    """Thin async wrapper over the ElevenLabs REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key
        self.base_url = (base_url or settings.elevenlabs_base_url).rstrip("/")
        self.timeout = timeout or settings.elevenlabs_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"xi-api-key": self.api_key},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.api_key:
            raise ProviderError(PROVIDER, "ElevenLabs API key is not configured")
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:500]
            logger.error(f"ElevenLabs {method} {path} failed: {e.response.status_code} {detail}")
            raise ProviderError(
                PROVIDER,
                f"ElevenLabs returned {e.response.status_code}: {detail}",
                provider_status=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"ElevenLabs {method} {path} request error: {e}")
            raise ProviderError(PROVIDER, f"ElevenLabs request failed: {e}") from e

    async def clone_voice(
        self,
        name: str,
        samples: list[tuple[str, bytes, str]],
        description: Optional[str] = None,
        labels: Optional[dict] = None,
    ) -> str:
        """
        Create an instant voice clone from voice samples.

        Args:
            name: Voice name shown in the provider console
            samples: (filename, content, content_type) per sample
            description: Optional voice description
            labels: Optional labels stored with the voice

        Returns:
            The provider voice id
        """
        data = {"name": name}
        if description:
            data["description"] = description
        if labels:
            data["labels"] = json.dumps(labels)
        files = [("files", sample) for sample in samples]

        response = await self._request("POST", "/voices/add", data=data, files=files)
        voice_id = response.json().get("voice_id")
        if not voice_id:
            raise ProviderError(PROVIDER, "ElevenLabs response did not include a voice_id")
        logger.info(f"Cloned voice {voice_id} ({name})")
        return voice_id

    async def delete_voice(self, voice_id: str) -> bool:
        """Delete a voice. Returns False if the provider no longer had it."""
        try:
            await self._request("DELETE", f"/voices/{voice_id}")
        except ProviderError as e:
            if e.provider_status == 404:
                logger.info(f"Voice {voice_id} was already deleted at the provider")
                return False
            raise
        logger.info(f"Deleted voice {voice_id}")
        return True

    async def speech_to_speech(
        self,
        voice_id: str,
        audio: bytes,
        filename: str,
        model_id: str,
        voice_settings: dict,
    ) -> tuple[bytes, Optional[str]]:
        """
        Re-voice an audio clip with a cloned voice.

        Returns:
            (mp3 bytes, provider request id if present)
        """
        response = await self._request(
            "POST",
            f"/speech-to-speech/{voice_id}",
            data={"model_id": model_id, "voice_settings": json.dumps(voice_settings)},
            files={"audio": (filename, audio, "audio/mpeg")},
            headers={"Accept": "audio/mpeg"},
        )
        return response.content, response.headers.get("request-id")

    async def list_voices(self) -> list[dict]:
        response = await self._request("GET", "/voices")
        return response.json().get("voices", [])

    async def get_subscription(self) -> dict:
        response = await self._request("GET", "/user/subscription")
        return response.json()


elevenlabs_client = ElevenLabsClient()
