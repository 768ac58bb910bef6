"""Speech synthesis provider implementations (Google, OpenAI)."""

from .base import SynthesisProvider

__all__ = [
    "SynthesisProvider",
    "create_provider",
]


def create_provider(name: str, **kwargs) -> SynthesisProvider:
    """Build a provider by short-name; SDK imports are deferred to the chosen one."""
    name = name.lower()
    if name == "google":
        from .google_provider import GoogleTTSProvider

        return GoogleTTSProvider(**kwargs)
    if name == "openai":
        from .openai_provider import OpenAIProvider

        return OpenAIProvider(**kwargs)
    raise ValueError(f"Unsupported TTS provider: {name}")
