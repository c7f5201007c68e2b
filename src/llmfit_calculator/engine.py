"""Closed-form estimation engine.

Every function here is pure: scalar inputs in, scalar (or a fresh list) out.
The constants below are calibration values, not physical laws; output parity
depends on them being reproduced exactly.
"""

from __future__ import annotations

from math import floor

from .report import QuantizationPoint


KV_CACHE_GB_PER_PARAM_TOKEN = 0.000002
ACTIVATION_OVERHEAD_RATIO = 0.05

MAX_TOKENS_PER_SECOND = 1000.0
MIN_TOKENS_PER_SECOND = 0.0

# AMD Zen 1..5
ZEN_GENERATIONS = (1, 5)
ZEN_BASE_FACTORS = {5: 0.45, 4: 0.40, 3: 0.35, 2: 0.28}
ZEN_FALLBACK_FACTOR = 0.22

# Intel 10th..15th gen
INTEL_GENERATIONS = (10, 15)
INTEL_BASE_FACTORS = ((13, 0.42), (12, 0.38))
INTEL_FALLBACK_FACTOR = 0.30

UNKNOWN_CPU_BASE_FACTOR = 0.15

# Highest matching tier only.
CORE_COUNT_BONUSES = ((16, 0.10), (12, 0.07), (8, 0.05), (6, 0.03))
HIGH_END_SKU_BONUS = 0.05

MIN_CPU_FACTOR = 0.1
MAX_CPU_FACTOR = 1.0

# Absorbs representation error in (max - min) / step before flooring.
SWEEP_COUNT_TOLERANCE = 1e-9


def weights_size_gb(param_count: float, bits_per_weight: float) -> float:
    return param_count * bits_per_weight / 8.0


def kv_cache_gb(param_count: float, context_length: int, batch_size: int) -> float:
    return param_count * float(context_length) * float(batch_size) * KV_CACHE_GB_PER_PARAM_TOKEN


def calculate_vram(param_count: float, bits_per_weight: float, context_length: int, batch_size: int) -> float:
    """Weights + KV cache + activation overhead, in GB.

    The KV term is a flat per-parameter approximation, not derived from the
    layer or hidden-dimension counts of any particular architecture.
    """
    model_size = weights_size_gb(param_count, bits_per_weight)
    kv_cache = kv_cache_gb(param_count, context_length, batch_size)
    activations = model_size * ACTIVATION_OVERHEAD_RATIO
    return model_size + kv_cache + activations


def calculate_performance(bandwidth: float, model_size_gb: float, cpu_factor: float) -> float:
    """Memory-bandwidth-bound decode throughput in tokens/s, clamped to [0, 1000]."""
    if model_size_gb <= 0.0:
        return 0.0

    tps = bandwidth / model_size_gb
    if cpu_factor < 1.0:
        tps *= cpu_factor

    return max(MIN_TOKENS_PER_SECOND, min(MAX_TOKENS_PER_SECOND, tps))


def _sweep_count(min_bits: float, max_bits: float, step: float) -> int:
    if max_bits < min_bits:
        return 0
    return floor((max_bits - min_bits) / step + SWEEP_COUNT_TOLERANCE) + 1


def batch_calculate_performance(
    bandwidth: float,
    param_count: float,
    min_bits: float,
    max_bits: float,
    step: float,
) -> list[QuantizationPoint]:
    """GPU-only throughput for each quantization level in [min_bits, max_bits].

    Bits are derived from an integer step counter (``min_bits + i * step``),
    so the sequence never drifts from repeated float addition and the upper
    bound is included whenever it lies on the grid.
    """
    if step <= 0.0:
        raise ValueError(f"step must be > 0 (got {step})")

    points: list[QuantizationPoint] = []
    for i in range(_sweep_count(min_bits, max_bits, step)):
        bits = min_bits + i * step
        model_size = weights_size_gb(param_count, bits)
        points.append(
            QuantizationPoint(
                bits=bits,
                model_size_gb=model_size,
                tokens_per_second=calculate_performance(bandwidth, model_size, 1.0),
            )
        )
    return points


def calculate_offload_bandwidth(
    gpu_bandwidth: float,
    ram_bandwidth: float,
    gpu_layers: int,
    total_layers: int,
) -> float:
    """Effective bandwidth of a model split between VRAM and system RAM.

    Layers run as a pipeline, so the split is a harmonic mean weighted by the
    share of layers on each device: the slower device dominates.
    """
    if total_layers <= 0:
        return gpu_bandwidth
    if gpu_layers >= total_layers:
        return gpu_bandwidth
    if gpu_layers <= 0:
        return ram_bandwidth

    # A stalled device stalls the whole pipeline.
    if gpu_bandwidth <= 0.0 or ram_bandwidth <= 0.0:
        return 0.0

    gpu_ratio = float(gpu_layers) / float(total_layers)
    ram_ratio = 1.0 - gpu_ratio
    return 1.0 / (gpu_ratio / gpu_bandwidth + ram_ratio / ram_bandwidth)


def is_out_of_memory(model_size_gb: float, vram_gb: float, system_ram_gb: float, allow_offload: bool) -> bool:
    if model_size_gb <= vram_gb:
        return False
    if allow_offload and model_size_gb <= vram_gb + system_ram_gb:
        return False
    return True


def _base_cpu_factor(generation: int) -> float:
    lo, hi = ZEN_GENERATIONS
    if lo <= generation <= hi:
        return ZEN_BASE_FACTORS.get(generation, ZEN_FALLBACK_FACTOR)

    lo, hi = INTEL_GENERATIONS
    if lo <= generation <= hi:
        for threshold, factor in INTEL_BASE_FACTORS:
            if generation >= threshold:
                return factor
        return INTEL_FALLBACK_FACTOR

    return UNKNOWN_CPU_BASE_FACTOR


def _core_count_bonus(core_count: int) -> float:
    for threshold, bonus in CORE_COUNT_BONUSES:
        if core_count >= threshold:
            return bonus
    return 0.0


def get_cpu_factor(generation: int, core_count: int, is_high_end: bool) -> float:
    """Relative CPU speed for offloaded layers, in [0.1, 1.0].

    ``generation`` 1-5 selects the AMD Zen table, 10-15 the Intel table;
    anything else is treated as old, slow hardware.
    """
    factor = _base_cpu_factor(generation) + _core_count_bonus(core_count)
    if is_high_end:
        factor += HIGH_END_SKU_BONUS
    return max(MIN_CPU_FACTOR, min(MAX_CPU_FACTOR, factor))
