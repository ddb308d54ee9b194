"""Gemini generateContent wire format and client."""

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from voice_shortcut._types import SynthesizedAudio
from voice_shortcut.cancellation import CancellationToken, check
from voice_shortcut.config import ApiConfig, ChunkingConfig, TtsConfig
from voice_shortcut.errors import EmptyInputError, UnexpectedResponseShapeError
from voice_shortcut.executor import (
    ApiRequest,
    RateLimitCallback,
    RequestExecutor,
    RetryCallback,
)
from voice_shortcut.upload import ResumableUploader

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mp3",
    ".aiff": "audio/aiff",
    ".aif": "audio/aiff",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".webm": "audio/webm",
}
DEFAULT_AUDIO_MIME_TYPE = "audio/wav"
DEFAULT_PCM_RATE = 24000

_RATE_RE = re.compile(r"rate=(\d+)")


def mime_type_for(path: Path) -> str:
    """MIME type for an audio file, falling back to WAV for unknown extensions."""
    return AUDIO_MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_AUDIO_MIME_TYPE)


@dataclass
class Part:
    """One part of a content turn: text, inline bytes or an uploaded file."""

    text: str | None = None
    mime_type: str | None = None
    data: str | None = None
    file_uri: str | None = None

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "Part":
        return cls(mime_type=mime_type, data=base64.b64encode(data).decode("ascii"))

    @classmethod
    def from_file_uri(cls, file_uri: str, mime_type: str) -> "Part":
        return cls(mime_type=mime_type, file_uri=file_uri)

    @property
    def inline_bytes(self) -> bytes | None:
        if self.data is None:
            return None
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise UnexpectedResponseShapeError(f"inlineData.data is not valid base64: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        if self.text is not None:
            return {"text": self.text}
        if self.file_uri is not None:
            return {"fileData": {"mimeType": self.mime_type, "fileUri": self.file_uri}}
        if self.data is not None:
            return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}
        raise ValueError("Part has no text, inline data or file reference")

    @classmethod
    def from_dict(cls, raw: Any) -> "Part":
        if not isinstance(raw, dict):
            raise UnexpectedResponseShapeError(f"part must be an object, got {type(raw).__name__}")
        text = raw.get("text")
        if text is not None and not isinstance(text, str):
            raise UnexpectedResponseShapeError("part.text must be a string")
        inline = raw.get("inlineData")
        if inline is None:
            return cls(text=text)
        if not isinstance(inline, dict):
            raise UnexpectedResponseShapeError("part.inlineData must be an object")
        mime_type = inline.get("mimeType")
        data = inline.get("data")
        if not isinstance(mime_type, str) or not isinstance(data, str):
            raise UnexpectedResponseShapeError("inlineData needs string mimeType and data")
        return cls(text=text, mime_type=mime_type, data=data)


@dataclass
class Content:
    """A conversation turn."""

    role: str
    parts: list[Part]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [p.to_dict() for p in self.parts]}


@dataclass
class GenerateRequest:
    """Body of a generateContent call."""

    contents: list[Content]
    system_instruction: str | None = None
    generation_config: dict[str, Any] | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [c.to_dict() for c in self.contents]}
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        if self.generation_config:
            body["generationConfig"] = self.generation_config
        if self.model:
            body["model"] = self.model
        return body


@dataclass
class Candidate:
    parts: list[Part] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass
class GenerateResponse:
    """Decoded generateContent response."""

    candidates: list[Candidate]

    @property
    def text(self) -> str:
        """Concatenated text of the first candidate (empty if none)."""
        if not self.candidates:
            return ""
        return "".join(p.text for p in self.candidates[0].parts if p.text)

    def first_audio(self) -> Part | None:
        for candidate in self.candidates:
            for part in candidate.parts:
                if part.data is not None:
                    return part
        return None


def decode_generate_response(response: httpx.Response) -> GenerateResponse:
    """Strictly decode a generateContent response body.

    Raises:
        UnexpectedResponseShapeError: If the JSON does not match the documented shape
    """
    try:
        data = response.json()
    except ValueError as e:
        raise UnexpectedResponseShapeError(f"Response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise UnexpectedResponseShapeError("Response must be a JSON object")

    raw_candidates = data.get("candidates", [])
    if not isinstance(raw_candidates, list):
        raise UnexpectedResponseShapeError("candidates must be a list")

    candidates = []
    for raw in raw_candidates:
        if not isinstance(raw, dict):
            raise UnexpectedResponseShapeError("candidate must be an object")
        content = raw.get("content")
        parts: list[Part] = []
        # A candidate blocked by safety filters has no content
        if content is not None:
            if not isinstance(content, dict):
                raise UnexpectedResponseShapeError("candidate.content must be an object")
            raw_parts = content.get("parts", [])
            if not isinstance(raw_parts, list):
                raise UnexpectedResponseShapeError("content.parts must be a list")
            parts = [Part.from_dict(p) for p in raw_parts]
        finish_reason = raw.get("finishReason")
        candidates.append(
            Candidate(parts=parts, finish_reason=finish_reason if isinstance(finish_reason, str) else None)
        )
    return GenerateResponse(candidates=candidates)


def sample_rate_from_mime(mime_type: str, default: int = DEFAULT_PCM_RATE) -> int:
    """Parse ``rate=NNNN`` out of an ``audio/L16;codec=pcm;rate=24000`` MIME type."""
    match = _RATE_RE.search(mime_type or "")
    return int(match.group(1)) if match else default


def speech_generation_config(voice: str) -> dict[str, Any]:
    return {
        "responseModalities": ["AUDIO"],
        "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
    }


class GeminiClient:
    """Issues transcription, prompt and speech requests against Gemini.

    Audio up to ``inline_size_threshold`` bytes is sent inline as base64;
    anything larger goes through the resumable upload first.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        api: ApiConfig | None = None,
        chunking: ChunkingConfig | None = None,
        uploader: ResumableUploader | None = None,
        tts: TtsConfig | None = None,
    ):
        """Initialize client.

        Args:
            executor: RequestExecutor shared by all calls
            api: Endpoint and model settings
            chunking: Provides the inline-vs-upload threshold
            uploader: Optional uploader (created from the executor otherwise)
            tts: Provides the sample rate assumed when a speech response omits it
        """
        self.executor = executor
        self.api = api or ApiConfig()
        self.chunking = chunking or ChunkingConfig()
        self.uploader = uploader or ResumableUploader(executor, self.api)
        self.tts = tts or TtsConfig()

    def endpoint(self, model: str) -> str:
        return f"{self.api.base_url.rstrip('/')}/models/{model}:generateContent"

    async def audio_part(
        self, path: Path, *, token: CancellationToken | None = None
    ) -> Part:
        """Build the part carrying an audio file, uploading it when too large."""
        path = Path(path)
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, path.read_bytes)
        check(token)
        if not data:
            raise EmptyInputError(f"Audio file is empty: {path.name}")

        mime_type = mime_type_for(path)
        if len(data) <= self.chunking.inline_size_threshold:
            logger.debug("Sending %s inline (%d bytes)", path.name, len(data))
            return Part.from_bytes(data, mime_type)

        logger.info(
            "Audio %s is %d bytes (> %d), using Files API",
            path.name,
            len(data),
            self.chunking.inline_size_threshold,
        )
        uri = await self.uploader.upload(data, mime_type, token=token)
        return Part.from_file_uri(uri, mime_type)

    async def generate(
        self,
        model: str,
        request: GenerateRequest,
        *,
        token: CancellationToken | None = None,
        allow_retry: bool = True,
        on_retry: RetryCallback | None = None,
        on_rate_limit: RateLimitCallback | None = None,
        label: str = "GEMINI",
    ) -> GenerateResponse:
        """Send a generateContent request and decode the response."""
        api_request = ApiRequest(
            method="POST",
            url=self.endpoint(model),
            json=request.to_dict(),
            label=label,
        )
        return await self.executor.execute(
            api_request,
            decode_generate_response,
            allow_retry=allow_retry,
            token=token,
            on_retry=on_retry,
            on_rate_limit=on_rate_limit,
        )

    async def transcribe_audio(
        self,
        path: Path,
        prompt: str,
        *,
        model: str | None = None,
        token: CancellationToken | None = None,
        on_retry: RetryCallback | None = None,
        on_rate_limit: RateLimitCallback | None = None,
    ) -> str:
        """Transcribe a single audio file and return the raw text."""
        audio = await self.audio_part(path, token=token)
        request = GenerateRequest(
            contents=[Content(role="user", parts=[Part.from_text(prompt), audio])]
        )
        response = await self.generate(
            model or self.api.transcription_model,
            request,
            token=token,
            on_retry=on_retry,
            on_rate_limit=on_rate_limit,
            label="TRANSCRIBE",
        )
        return response.text

    async def synthesize_speech(
        self,
        text: str,
        *,
        voice: str | None = None,
        model: str | None = None,
        token: CancellationToken | None = None,
        on_retry: RetryCallback | None = None,
        on_rate_limit: RateLimitCallback | None = None,
    ) -> SynthesizedAudio:
        """Synthesize ``text`` and return raw PCM audio.

        Raises:
            UnexpectedResponseShapeError: If the response carries no audio
        """
        model = model or self.api.tts_model
        request = GenerateRequest(
            contents=[Content(role="user", parts=[Part.from_text(text)])],
            generation_config=speech_generation_config(voice or self.api.tts_voice),
            model=model,
        )
        response = await self.generate(
            model,
            request,
            token=token,
            on_retry=on_retry,
            on_rate_limit=on_rate_limit,
            label="TTS",
        )
        part = response.first_audio()
        if part is None:
            raise UnexpectedResponseShapeError("Speech response contains no audio data")
        pcm = part.inline_bytes or b""
        if not pcm:
            raise UnexpectedResponseShapeError("Speech response audio is empty")
        rate = sample_rate_from_mime(part.mime_type or "", default=self.tts.sample_rate)
        logger.debug("Synthesized %d bytes of audio at %d Hz", len(pcm), rate)
        return SynthesizedAudio(pcm=pcm, sample_rate=rate, mime_type=part.mime_type or "")
