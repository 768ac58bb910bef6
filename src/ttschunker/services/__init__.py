"""Stateless, testable building blocks of the chunked synthesis pipeline."""

from .audio_assembler import AudioAssembler
from .pipeline import PipelineResult, TTSPipeline
from .segmenter import segment_text
from .synthesis_client import SynthesisClient
from .worker_pool import BoundedWorkerPool
