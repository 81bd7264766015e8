"""Open-vocabulary extraction: adapter contract and concrete adapters."""
from .protocol import ExtractionOutcome, ExtractionRequest, SpanExtractor
from .llm_extractor import LLMSpanExtractor
from .static import NullSpanExtractor, StaticSpanExtractor
from .schema import LabeledSpan, LabelingResponse, validate_response
from .parsing import parse_json_payload
from .chunking import Chunk, split_into_chunks
from .grounding import ground_spans
from .factory import create_extractor, load_labels

__all__ = [
    # Contract
    "SpanExtractor",
    "ExtractionRequest",
    "ExtractionOutcome",
    # Adapters
    "LLMSpanExtractor",
    "NullSpanExtractor",
    "StaticSpanExtractor",
    "create_extractor",
    "load_labels",
    # Response handling
    "LabeledSpan",
    "LabelingResponse",
    "validate_response",
    "parse_json_payload",
    "ground_spans",
    # Chunking
    "Chunk",
    "split_into_chunks",
]
