# Signal processing
from .normalizer import SignalNormalizer, metrics_from_record, to_market_volume
from .scorer import OpportunityScorer, ScoringWeights, CreatorReputation
from .ranker import TargetRanker

__all__ = [
    "SignalNormalizer", "metrics_from_record", "to_market_volume",
    "OpportunityScorer", "ScoringWeights", "CreatorReputation",
    "TargetRanker",
]
