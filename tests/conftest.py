"""Shared fakes and fixtures for ttschunker tests."""

import io
import sys
import threading
import time
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from ttschunker.infrastructure.tts.base import SynthesisProvider  # noqa: E402
from ttschunker.models import VoiceConfig  # noqa: E402


def client_error(code: str, status: int, operation: str = "PutObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def fake_audio(text: str, size: int = 10) -> bytes:
    """Deterministic fixed-size audio stand-in derived from *text*."""
    return text.encode("utf-8").ljust(size, b"_")[:size]


class FakeProvider(SynthesisProvider):
    """Synchronous provider that records calls and peak concurrency."""

    def __init__(self, *, delay=0.0, fail_on=(), empty_on=(), ssml=False, size=10):
        self.delay = delay
        self.fail_on = set(fail_on)
        self.empty_on = set(empty_on)
        self.ssml = ssml
        self.size = size
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "fake"

    @property
    def supports_ssml(self) -> bool:
        return self.ssml

    def synthesize(self, *, text, config, is_ssml=False, timeout=None):
        with self._lock:
            self.calls.append({"text": text, "is_ssml": is_ssml, "config": config})
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if any(marker in text for marker in self.fail_on):
                raise RuntimeError(f"provider rejected {text!r}")
            if any(marker in text for marker in self.empty_on):
                return b""
            return fake_audio(text, self.size)
        finally:
            with self._lock:
                self.in_flight -= 1


class InMemoryObjectStore:
    """Stands in for ObjectStore; ``failures`` are raised by successive put_object calls."""

    def __init__(self, objects=None, failures=None, base_url="https://cdn.example.com"):
        self.objects = dict(objects or {})
        self.failures = list(failures or [])
        self.base_url = base_url
        self.put_calls = []
        self.metadata = {}
        self.bucket = "test-bucket"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    async def put_object(self, key, data, content_type="audio/mpeg", metadata=None):
        self.put_calls.append((key, content_type))
        self.metadata[key] = dict(metadata or {})
        if self.failures:
            raise self.failures.pop(0)
        self.objects[key] = data
        return self.public_url(key)

    async def get_bytes(self, key):
        if key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        return self.objects[key]

    async def get_text(self, key):
        return (await self.get_bytes(key)).decode("utf-8")

    async def list_keys(self, prefix):
        return [key for key in self.objects if key.startswith(prefix)]

    def describe(self):
        return {"bucket": self.bucket, "endpoint": None, "public_base_url": self.base_url}


async def no_sleep(delay):
    return None


def wav_bytes(duration_ms: int, freq: int = 440) -> bytes:
    from pydub.generators import Sine

    buf = io.BytesIO()
    Sine(freq).to_audio_segment(duration=duration_ms).export(buf, format="wav")
    return buf.getvalue()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def pcm_config():
    return VoiceConfig(audioEncoding="PCM")
