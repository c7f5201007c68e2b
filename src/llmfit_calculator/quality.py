from __future__ import annotations

from .config import Precision
from .report import QualityTier


# Score points lost per weight precision, roughly tracking perplexity.
QUANTIZATION_PENALTY: dict[Precision, float] = {
    Precision.fp32: 0,
    Precision.fp16: 0,
    Precision.bf16: 0.5,
    Precision.q8_0: 1,
    Precision.int8: 1,
    Precision.q6_k: 3,
    Precision.q5_k_m: 5,
    Precision.q4_k_m: 8,
    Precision.q4_0: 10,
    Precision.int4: 10,
    Precision.q3_k_m: 18,
    Precision.q2_k: 35,
}

PERPLEXITY_INCREASE_PCT: dict[Precision, float] = {
    Precision.fp32: 0,
    Precision.fp16: 0,
    Precision.bf16: 0.2,
    Precision.q8_0: 0.5,
    Precision.int8: 0.8,
    Precision.q6_k: 2.5,
    Precision.q5_k_m: 4.5,
    Precision.q4_k_m: 8.0,
    Precision.q4_0: 10.0,
    Precision.int4: 10.0,
    Precision.q3_k_m: 18.0,
    Precision.q2_k: 38.0,
}

DEFAULT_PENALTY = 10
INT8_KV_CACHE_PENALTY = 2
INT8_KV_CACHE_PERPLEXITY_PCT = 0.5
FLASH_ATTENTION_PENALTY = 0.5
LONG_CONTEXT_TOKENS = 32000
LONG_CONTEXT_PENALTY = 2

# (min score, tier, description), highest first.
QUALITY_TIERS = (
    (98, "Perfect", "Near-zero quality loss"),
    (95, "Excellent", "Imperceptible quality loss"),
    (90, "Very Good", "Minimal quality loss (<5%)"),
    (85, "Good", "Minor quality loss (5-10%)"),
    (75, "Acceptable", "Noticeable loss (10-20%)"),
    (60, "Fair", "Moderate loss (20-35%)"),
)
LOWEST_TIER = ("Poor", "Significant quality degradation (>35%)")


def quality_score(
    precision: Precision,
    kv_cache_precision: Precision = Precision.fp16,
    flash_attention: bool = False,
    context_length: int = 4096,
) -> float:
    """0-100 output quality estimate; 100 is unquantized fp32/fp16."""
    score = 100.0
    score -= QUANTIZATION_PENALTY.get(precision, DEFAULT_PENALTY)
    if kv_cache_precision == Precision.int8:
        score -= INT8_KV_CACHE_PENALTY
    if flash_attention:
        score -= FLASH_ATTENTION_PENALTY
    if context_length > LONG_CONTEXT_TOKENS:
        score -= LONG_CONTEXT_PENALTY
    return max(0.0, min(100.0, score))


def quality_tier(score: float) -> QualityTier:
    for threshold, tier, description in QUALITY_TIERS:
        if score >= threshold:
            return QualityTier(tier=tier, description=description)
    tier, description = LOWEST_TIER
    return QualityTier(tier=tier, description=description)


def perplexity_increase(precision: Precision, kv_cache_precision: Precision = Precision.fp16) -> float:
    increase = float(PERPLEXITY_INCREASE_PCT.get(precision, DEFAULT_PENALTY))
    if kv_cache_precision == Precision.int8:
        increase += INT8_KV_CACHE_PERPLEXITY_PCT
    return increase
