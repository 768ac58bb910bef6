"""I/O boundary adapters (object storage, text sources, TTS providers)."""

from .object_store import ObjectStore
from .text_source import InlineTextSource, ObjectStoreTextSource, TextSource
from .tts import SynthesisProvider, create_provider

__all__ = [
    "InlineTextSource",
    "ObjectStore",
    "ObjectStoreTextSource",
    "SynthesisProvider",
    "TextSource",
    "create_provider",
]
