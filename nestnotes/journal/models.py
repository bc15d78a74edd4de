"""Data models for the journal client."""

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiofiles

from .errors import RejectionReason, UploadStage


class Privacy(Enum):
    PRIVATE = "private"
    SHARED = "shared"
    PUBLIC = "public"


class UploadStatus(Enum):
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class UploadFile:
    """
    A file selected or captured for upload.

    Bytes come either from a path on disk (read lazily with aiofiles) or
    from memory, e.g. a camera frame or a voice recording.
    """
    name: str
    mime_type: str
    size: int
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "UploadFile":
        path = Path(path)
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            mime_type=mime_type or "application/octet-stream",
            size=path.stat().st_size,
            path=path,
        )

    @classmethod
    def from_bytes(cls, data: bytes, name: str, mime_type: Optional[str] = None) -> "UploadFile":
        if mime_type is None:
            mime_type, _ = mimetypes.guess_type(name)
        return cls(
            name=name,
            mime_type=mime_type or "application/octet-stream",
            size=len(data),
            data=data,
        )

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        if self.data is not None:
            for start in range(0, len(self.data), chunk_size):
                yield self.data[start:start + chunk_size]
            return

        async with aiofiles.open(self.path, 'rb') as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk


@dataclass
class UploadTask:
    """Tracks one accepted file through destination, transfer and finalize."""
    index: int
    file: UploadFile
    progress: int = 0
    status: UploadStatus = UploadStatus.UPLOADING
    path: Optional[str] = None
    mime_type: Optional[str] = None
    original_name: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[UploadStage] = None
    finalized: bool = False

    def __post_init__(self):
        if self.mime_type is None:
            self.mime_type = self.file.mime_type
        if self.original_name is None:
            self.original_name = self.file.name

    def advance(self, percent: int) -> bool:
        """
        Move progress forward while bytes are in flight.

        Capped at 99 until the storage service confirms the transfer.
        Returns True if progress actually changed.
        """
        percent = max(0, min(int(percent), 99))
        if self.status is not UploadStatus.UPLOADING or percent <= self.progress:
            return False
        self.progress = percent
        return True

    def mark_transferred(self, path: str) -> None:
        self.progress = 100
        self.status = UploadStatus.COMPLETED
        self.path = path

    def mark_finalized(self, path: Optional[str], mime_type: Optional[str], original_name: Optional[str]) -> None:
        self.finalized = True
        if path:
            self.path = path
        if mime_type:
            self.mime_type = mime_type
        if original_name:
            self.original_name = original_name

    def fail(self, stage: UploadStage, message: str) -> None:
        self.stage = stage
        self.error = message
        # A finalize failure keeps the completed transfer
        if stage is not UploadStage.FINALIZE:
            self.status = UploadStatus.ERROR

    @property
    def is_settled(self) -> bool:
        return self.status is not UploadStatus.UPLOADING


@dataclass
class UploadedMedia:
    """A stored and finalized media object attached to an entry."""
    path: str
    mime_type: str
    original_name: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {"url": self.path, "mimeType": self.mime_type}
        if self.original_name:
            payload["originalName"] = self.original_name
        return payload


@dataclass
class Rejection:
    name: str
    reason: RejectionReason
    message: str


@dataclass
class UploadBatchResult:
    """Outcome of one upload batch once every task has settled."""
    tasks: List[UploadTask] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)

    @property
    def uploaded_paths(self) -> List[str]:
        return [
            t.path for t in self.tasks
            if t.status is UploadStatus.COMPLETED and t.path
        ]

    @property
    def media(self) -> List[UploadedMedia]:
        return [
            UploadedMedia(path=t.path, mime_type=t.mime_type, original_name=t.original_name)
            for t in self.tasks
            if t.status is UploadStatus.COMPLETED and t.finalized and t.path
        ]

    @property
    def failed(self) -> List[UploadTask]:
        return [t for t in self.tasks if t.error is not None]

    @property
    def all_succeeded(self) -> bool:
        return not self.rejected and all(
            t.status is UploadStatus.COMPLETED and t.finalized for t in self.tasks
        )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class JournalEntry:
    """A full journal entry as returned by the entries endpoints."""
    id: str
    content: str = ""
    title: Optional[str] = None
    user_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    privacy: Privacy = Privacy.PRIVATE
    media_urls: List[str] = field(default_factory=list)
    media: List[UploadedMedia] = field(default_factory=list)
    audio_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "JournalEntry":
        try:
            privacy = Privacy(record.get("privacy") or "private")
        except ValueError:
            privacy = Privacy.PRIVATE
        media = [
            UploadedMedia(
                path=m.get("url", ""),
                mime_type=m.get("mimeType", ""),
                original_name=m.get("originalName"),
            )
            for m in record.get("mediaObjects") or []
            if isinstance(m, dict)
        ]
        return cls(
            id=str(record["id"]),
            content=record.get("content") or "",
            title=record.get("title"),
            user_id=record.get("userId"),
            tags=list(record.get("tags") or []),
            privacy=privacy,
            media_urls=list(record.get("mediaUrls") or []),
            media=media,
            audio_url=record.get("audioUrl"),
            created_at=_parse_timestamp(record.get("createdAt")),
            updated_at=_parse_timestamp(record.get("updatedAt")),
            raw=record,
        )

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"


@dataclass
class EntryDraft:
    """A new entry assembled on the client before it is created."""
    content: str
    title: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    privacy: Privacy = Privacy.PRIVATE
    shared_with: List[str] = field(default_factory=list)
    media: List[UploadedMedia] = field(default_factory=list)
    audio_url: Optional[str] = None
    audio_playable: bool = False

    def __post_init__(self):
        if not self.content.strip() and not self.media and not self.audio_url:
            raise ValueError("An entry needs content, media or audio")
        if self.privacy is Privacy.SHARED and not self.shared_with:
            raise ValueError("Shared entries need at least one recipient")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "tags": self.tags,
            "privacy": self.privacy.value,
            "sharedWith": self.shared_with if self.privacy is Privacy.SHARED else [],
            "mediaUrls": [m.path for m in self.media],
            "mediaObjects": [m.to_payload() for m in self.media],
            "audioUrl": self.audio_url,
            "audioPlayable": self.audio_playable,
        }


@dataclass
class SearchResult:
    """A ranked hit from the semantic search endpoint."""
    entry_id: str
    similarity: float
    snippet: str
    title: Optional[str] = None
    match_reason: str = ""

    @classmethod
    def from_api(cls, record: Dict[str, Any]) -> "SearchResult":
        return cls(
            entry_id=str(record["entryId"]),
            similarity=float(record.get("similarity") or 0.0),
            snippet=record.get("snippet") or "",
            title=record.get("title"),
            match_reason=record.get("matchReason") or "",
        )


class SearchStatus(Enum):
    RESULTS = "results"
    EMPTY = "empty"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass
class Citation:
    """Links a conversational answer to the entry it drew on."""
    entry_id: str
    similarity: float
    snippet: str
    entry: Optional[JournalEntry] = None


@dataclass
class SearchOutcome:
    """What a search session shows the user after one request settles."""
    status: SearchStatus
    query: str
    results: List[SearchResult] = field(default_factory=list)
    entries: List[JournalEntry] = field(default_factory=list)
    answer: Optional[str] = None
    confidence: Optional[float] = None
    citations: List[Citation] = field(default_factory=list)
    error: Optional[str] = None
    execution_ms: Optional[float] = None

    @property
    def can_retry(self) -> bool:
        return self.status is SearchStatus.FAILED
