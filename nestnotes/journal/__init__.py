"""Journal client core: uploads, camera capture, search and voice notes."""

from .api import JournalAPI
from .bus import Event, EventBus
from .camera import CameraAdapter, CameraState
from .config import Config
from .media import MediaKind, classify
from .search import SearchOrchestrator, hydrate
from .uploader import UploadOrchestrator
from .voice import VoiceNoteService

__all__ = [
    "CameraAdapter",
    "CameraState",
    "Config",
    "Event",
    "EventBus",
    "JournalAPI",
    "MediaKind",
    "SearchOrchestrator",
    "UploadOrchestrator",
    "VoiceNoteService",
    "classify",
    "hydrate",
]
