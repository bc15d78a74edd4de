"""Voice notes: transcribe a recording and keep the audio privately."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .api import JournalAPI
from .errors import ApiError
from .models import UploadFile


TRANSCRIPTION_FALLBACK = "Transcription failed. Please try again."


@dataclass
class VoiceNoteResult:
    transcript: str
    transcribed: bool
    audio_path: Optional[str] = None

    @property
    def audio_stored(self) -> bool:
        return self.audio_path is not None


class VoiceNoteService:
    """
    Turns one recording into a transcript plus a stored audio object.

    The two steps are independent: a failed transcription still stores the
    audio, and a failed upload still returns the transcript. The audio is
    never finalized, so it stays private to its owner.
    """

    def __init__(self, api: JournalAPI, chunk_size: int = 64 * 1024):
        self.api = api
        self.chunk_size = chunk_size

    async def process(
        self,
        audio: bytes,
        filename: str = "recording.wav",
        mime_type: str = "audio/wav",
    ) -> VoiceNoteResult:
        transcript, transcribed = await self._transcribe(audio, filename, mime_type)
        audio_path = await self._store(audio, filename, mime_type)
        return VoiceNoteResult(transcript=transcript, transcribed=transcribed, audio_path=audio_path)

    async def _transcribe(self, audio: bytes, filename: str, mime_type: str):
        try:
            text = await self.api.transcribe(audio, filename=filename, mime_type=mime_type)
        except ApiError as e:
            logger.warning(f"Transcription failed: {e.message}")
            return TRANSCRIPTION_FALLBACK, False
        return text, True

    async def _store(self, audio: bytes, filename: str, mime_type: str) -> Optional[str]:
        file = UploadFile.from_bytes(audio, filename, mime_type)
        try:
            destination = await self.api.request_upload_destination()
            await self.api.put_object(destination.upload_url, file, chunk_size=self.chunk_size)
        except ApiError as e:
            logger.warning(f"Audio upload failed: {e.message}")
            return None
        logger.info(f"Stored voice note at {destination.object_path}")
        return destination.object_path
