from .chunking import split_into_chunks
from .engine import AnalysisEngine, CHUNK_MAX_CHARS, SINGLE_ANALYSIS_MAX_CHARS
from .normalizer import normalize_analysis_result
from .prompts import PromptOptions

__all__ = [
    'AnalysisEngine',
    'PromptOptions',
    'normalize_analysis_result',
    'split_into_chunks',
    'CHUNK_MAX_CHARS',
    'SINGLE_ANALYSIS_MAX_CHARS',
]
