from .config import PortalConfig, load_config
from .recording_store import InMemoryRecordingStore
from .user_registry import InMemoryUserRegistry

__all__ = ["PortalConfig", "load_config", "InMemoryRecordingStore", "InMemoryUserRegistry"]
