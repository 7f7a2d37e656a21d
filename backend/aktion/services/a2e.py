"""
A2E video/avatar generation client

A2E wraps every response in {"code": 0, "data": ..., "message": ...};
any code other than 0 is a failure even when the HTTP status is 200.
"""

import asyncio
import logging
from typing import Any

import httpx

from aktion.services.providers import (
    TRANSIENT_POLL_ERRORS,
    ProviderClient,
    ProviderEnvelopeError,
    ProviderTaskFailed,
    ProviderTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "en-US-JennyNeural"
DEFAULT_NEGATIVE_PROMPT = "blurry, low quality, distorted, deformed"
TALKING_PHOTO_PROMPT = (
    "speaking, looking at the camera, detailed eyes, clear teeth, static view point, "
    "still background, elegant, clear facial features, stable camera"
)
TALKING_PHOTO_NEGATIVE_PROMPT = "blurry, distorted, low quality, flickering, static, motionless"


class A2EClient(ProviderClient):
    name = "A2E"

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        poll_interval: float = 5.0,
        poll_max_attempts: int = 180,
    ):
        super().__init__(http, api_key, base_url)
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-lang"] = "en-US"
        return headers

    async def call(
        self, method: str, path: str, *, json: Any = None, params: dict | None = None
    ) -> Any:
        """Send a request and return the envelope's data payload."""
        response = await self._send(method, path, json=json, params=params)
        envelope = self._json(response, self.name)

        if not isinstance(envelope, dict) or envelope.get("code") != 0:
            message = envelope.get("message") if isinstance(envelope, dict) else None
            raise ProviderEnvelopeError(self.name, message)

        return envelope.get("data")

    # =====================================================
    # Avatars
    # =====================================================
    async def list_characters(self, type_: str = "") -> list:
        params = {"type": type_} if type_ else None
        return await self.call("GET", "/anchor/character_list", params=params) or []

    async def get_avatar(self, avatar_id: str) -> dict:
        return await self.call("GET", f"/userVideoTwin/{avatar_id}") or {}

    async def remove_avatar(self, avatar_id: str) -> None:
        await self.call("POST", "/userVideoTwin/remove", json={"_id": avatar_id})

    # =====================================================
    # Backgrounds
    # =====================================================
    async def list_backgrounds(self) -> list:
        return await self.call("POST", "/custom_back/allBackground") or []

    async def add_background(self, img_url: str) -> dict:
        return await self.call("POST", "/custom_back/add", json={"img_url": img_url})

    async def delete_background(self, background_id: str) -> None:
        await self.call("POST", "/custom_back/del", json={"_id": background_id})

    # =====================================================
    # Voices
    # =====================================================
    async def list_voices(self, country: str, region: str, voice_map_type: str) -> list:
        params = {"country": country, "region": region, "voice_map_type": voice_map_type}
        return await self.call("GET", "/anchor/voice_list", params=params) or []

    async def list_voice_clones(self) -> list:
        return await self.call("GET", "/userVoice/completedRecord") or []

    async def train_voice(
        self, name: str, audio_url: str, description: str | None, model: str
    ) -> dict:
        body = {
            "name": name,
            "audio_url": audio_url,
            "description": description,
            "model": model,
        }
        return await self.call("POST", "/userVoice/training", json=body) or {}

    async def send_tts(self, body: dict) -> dict:
        return await self.call("POST", "/video/send_tts", json=body) or {}

    # =====================================================
    # Face library
    # =====================================================
    async def add_face(self, face_url: str) -> Any:
        return await self.call("POST", "/userFaceSwapImage/add", json={"face_url": face_url})

    async def list_faces(self) -> list:
        return await self.call("GET", "/userFaceSwapImage/records") or []

    async def delete_face(self, face_id: str) -> None:
        await self.call("DELETE", f"/userFaceSwapImage/{face_id}")

    # =====================================================
    # Avatar training
    # =====================================================
    async def start_avatar_training(self, body: dict) -> str | None:
        data = await self.call("POST", "/userVideoTwin/startTraining", json=body)
        # Returned either as a list of avatars or a single object
        if isinstance(data, list):
            data = data[0] if data else {}
        return (data or {}).get("_id")

    async def continue_avatar_training(self, avatar_id: str) -> None:
        # Path is spelled this way upstream
        await self.call("POST", "/userVideoTwin/continueTranining", json={"_id": avatar_id})

    # =====================================================
    # Generation tasks
    # =====================================================
    async def start_task(self, path: str, body: dict) -> str:
        """Start a generation task and return its id for wait_for_task."""
        data = await self.call("POST", path, json=body)
        if not data or not data.get("_id"):
            raise ProviderEnvelopeError(self.name, "No task id returned")
        return data["_id"]

    async def start_text2video(self, prompt: str, negative_prompt: str | None) -> str:
        return await self.start_task(
            "/userText2Video/start",
            {
                "name": "Text to Video",
                "prompt": prompt,
                "negative_prompt": negative_prompt or DEFAULT_NEGATIVE_PROMPT,
            },
        )

    async def start_talking_photo(
        self,
        image_url: str,
        audio_url: str,
        *,
        name: str = "Talking Photo",
        duration: int = 3,
        prompt: str | None = None,
        negative_prompt: str | None = None,
    ) -> str:
        return await self.start_task(
            "/talkingPhoto/start",
            {
                "name": name,
                "image_url": image_url,
                "audio_url": audio_url,
                "duration": duration,
                "prompt": prompt or TALKING_PHOTO_PROMPT,
                "negative_prompt": negative_prompt or TALKING_PHOTO_NEGATIVE_PROMPT,
            },
        )

    async def start_talking_video(
        self, video_url: str, audio_url: str, duration: int = 5, prompt: str | None = None
    ) -> str:
        return await self.start_task(
            "/talkingVideo/start",
            {
                "name": "Action dialogue",
                "video_url": video_url,
                "audio_url": audio_url,
                "duration": duration,
                "prompt": prompt or "character speaking with emotion, natural lip sync",
                "negative_prompt": "blurry, distorted, unnatural movement",
            },
        )

    async def start_face_swap(self, face_url: str, video_url: str, name: str) -> str:
        return await self.start_task(
            "/userFaceSwapTask/add",
            {"name": name, "face_url": face_url, "video_url": video_url},
        )

    async def start_dubbing(
        self,
        source_url: str,
        target_lang: str,
        *,
        name: str = "Dubbing Task",
        source_lang: str = "auto",
        num_speakers: int = 1,
        drop_background_audio: bool = False,
    ) -> str:
        return await self.start_task(
            "/userDubbing/startDubbing",
            {
                "name": name,
                "source_url": source_url,
                "source_lang": source_lang,
                "target_lang": target_lang,
                "num_speakers": num_speakers,
                "drop_background_audio": drop_background_audio,
            },
        )

    async def wait_for_task(self, resource: str, task_id: str) -> str:
        """Poll /{resource}/{task_id} until it completes and return its result URL."""
        for attempt in range(1, self.poll_max_attempts + 1):
            await asyncio.sleep(self.poll_interval)

            try:
                data = await self.call("GET", f"/{resource}/{task_id}") or {}
            except TRANSIENT_POLL_ERRORS as e:
                logger.warning(f"{resource} {task_id} poll {attempt} failed, retrying: {e}")
                continue

            status = data.get("current_status")
            logger.info(f"{resource} {task_id} poll {attempt}: {status}")

            if status == "completed" and data.get("result_url"):
                return data["result_url"]
            if status == "failed":
                # A2E spells the field both ways depending on the task type
                reason = data.get("failed_message") or data.get("faild_message")
                raise ProviderTaskFailed(
                    self.name, f"Generation failed: {reason or 'Unknown error'}"
                )

        timeout_seconds = int(self.poll_interval * self.poll_max_attempts)
        raise ProviderTimeout(
            self.name,
            f"Generation timed out after {timeout_seconds} seconds. Please try again.",
        )
