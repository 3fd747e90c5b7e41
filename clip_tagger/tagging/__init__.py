"""
Tagging flow: oracle adapter, score blending and the feedback pipeline.
"""

from .oracle import FALLBACK_TAGS, Oracle, classify_clip, downmix_to_mono, process_oracle_results
from .blending_engine import BlendingEngine, events_to_batch, retrain_on_batch
from .pipeline import FeedbackOutcome, TaggingPipeline, TaggingResult

__all__ = [
    "FALLBACK_TAGS",
    "Oracle",
    "classify_clip",
    "downmix_to_mono",
    "process_oracle_results",
    "BlendingEngine",
    "events_to_batch",
    "retrain_on_batch",
    "FeedbackOutcome",
    "TaggingPipeline",
    "TaggingResult",
]
