from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from .backends import backend_recommendation
from .config import HardwareConfig, InputPaths, MemoryTopology, ModelConfig, SplitMode, SweepRange
from .engine import (
    ACTIVATION_OVERHEAD_RATIO,
    batch_calculate_performance,
    calculate_offload_bandwidth,
    calculate_performance,
    calculate_vram,
    get_cpu_factor,
    is_out_of_memory,
    kv_cache_gb,
    weights_size_gb,
)
from .layers import per_gpu_usage, split_gpu_layers
from .penalties import (
    context_penalty,
    memory_overhead_gb,
    offload_speed_factor,
    performance_multiplier,
    ram_overflow_penalty,
    vram_overflow_penalty,
)
from .quality import perplexity_increase, quality_score, quality_tier
from .report import (
    Advisory,
    MemoryEstimate,
    Penalties,
    PerformanceEstimate,
    Quality,
    Report,
)


logger = logging.getLogger(__name__)


def resolve_gpu_layers(model: ModelConfig, hardware: HardwareConfig) -> int:
    """Layers resident in the fast pool.

    Discrete hardware with no VRAM runs everything from system RAM, whatever
    ``gpu_layers`` says. Otherwise an explicit ``gpu_layers`` wins, then the
    split mode decides: unified memory holds every layer unless the mode is
    ``cpuOnly``.
    """
    if hardware.topology == MemoryTopology.discrete and hardware.total_vram_gb <= 0:
        if model.gpu_layers:
            logger.warning("gpu_layers=%d ignored: no GPU VRAM configured", model.gpu_layers)
        return 0
    if model.gpu_layers is not None:
        return model.gpu_layers
    if hardware.topology == MemoryTopology.unified:
        return 0 if model.mode == SplitMode.cpu_only else model.num_layers
    return split_gpu_layers(model, hardware.gpus, hardware.enforce_constraints)


def estimate_memory(model: ModelConfig, hardware: HardwareConfig) -> MemoryEstimate:
    bits = model.effective_bits
    weights = weights_size_gb(model.param_count, bits)
    kv_cache = kv_cache_gb(model.param_count, model.context_length, model.batch_size)
    total = calculate_vram(model.param_count, bits, model.context_length, model.batch_size)

    oom = is_out_of_memory(total, hardware.vram_pool_gb, hardware.offload_pool_gb, hardware.allow_offload)
    if oom:
        logger.warning(
            "%.2f GB does not fit in %.2f GB VRAM + %.2f GB offload (allow_offload=%s)",
            total,
            hardware.vram_pool_gb,
            hardware.offload_pool_gb,
            hardware.allow_offload,
        )

    return MemoryEstimate(
        weights_gb=weights,
        kv_cache_gb=kv_cache,
        activations_gb=weights * ACTIVATION_OVERHEAD_RATIO,
        total_gb=total,
        vram_pool_gb=hardware.vram_pool_gb,
        offload_pool_gb=hardware.offload_pool_gb,
        os_overhead_gb=memory_overhead_gb(hardware.system_ram_gb, hardware.operating_system),
        out_of_memory=oom,
    )


def estimate_penalties(
    model: ModelConfig,
    hardware: HardwareConfig,
    memory: MemoryEstimate,
    gpu_layers: int,
) -> Penalties:
    if hardware.topology == MemoryTopology.unified:
        used_ram = memory.total_gb
    else:
        used_ram = max(0.0, memory.total_gb - hardware.total_vram_gb)
    used_ram += memory.os_overhead_gb

    cpu = hardware.cpu
    multiplier = performance_multiplier(
        len(hardware.gpus),
        hardware.topology == MemoryTopology.unified,
        hardware.operating_system,
        hardware.chip_type,
        cpu_cores=cpu.core_count,
        cpu_threads=cpu.threads if cpu.threads is not None else cpu.core_count * 2,
        total_vram_gb=hardware.vram_pool_gb,
        inference_software=hardware.inference_software,
    )

    offload_speed = 1.0
    if gpu_layers < model.num_layers:
        offload_speed = offload_speed_factor(
            hardware.ram_speed_mts,
            hardware.ram_cl,
            hardware.storage_type,
            hardware.detailed_specs,
        )

    return Penalties(
        vram_overflow=vram_overflow_penalty(memory.total_gb, hardware.total_vram_gb),
        ram_overflow=ram_overflow_penalty(used_ram, hardware.system_ram_gb),
        context=context_penalty([model.context_length]),
        hardware_multiplier=multiplier,
        offload_speed=offload_speed,
    )


def estimate_performance(
    model: ModelConfig,
    hardware: HardwareConfig,
    penalties: Penalties,
    gpu_layers: int,
) -> PerformanceEstimate:
    model_size = weights_size_gb(model.param_count, model.effective_bits)

    if hardware.topology == MemoryTopology.unified:
        bandwidth = hardware.gpu_bandwidth_gbs
    else:
        bandwidth = calculate_offload_bandwidth(
            hardware.gpu_bandwidth_gbs,
            hardware.ram_bandwidth_gbs,
            gpu_layers,
            model.num_layers,
        )

    if gpu_layers < model.num_layers:
        cpu = hardware.cpu
        cpu_factor = get_cpu_factor(cpu.generation, cpu.core_count, cpu.is_high_end)
    else:
        cpu_factor = 1.0

    tps = calculate_performance(bandwidth, model_size, cpu_factor)
    logger.debug(
        "gpu_layers=%d/%d bandwidth=%.1f GB/s cpu_factor=%.2f tps=%.2f",
        gpu_layers,
        model.num_layers,
        bandwidth,
        cpu_factor,
        tps,
    )

    return PerformanceEstimate(
        gpu_layers=gpu_layers,
        total_layers=model.num_layers,
        effective_bandwidth_gbs=bandwidth,
        cpu_factor=cpu_factor,
        tokens_per_second=tps,
        adjusted_tokens_per_second=tps * penalties.combined,
    )


def estimate_advisory(model: ModelConfig, hardware: HardwareConfig, penalties: Penalties, gpu_layers: int) -> Advisory:
    score = quality_score(model.precision, model.kv_cache_precision, model.flash_attention, model.context_length)
    placed = model.model_copy(update={"gpu_layers": gpu_layers})
    return Advisory(
        penalties=penalties,
        quality=Quality(
            score=score,
            tier=quality_tier(score),
            perplexity_increase_pct=perplexity_increase(model.precision, model.kv_cache_precision),
        ),
        backend=hardware.gpu_backend.value,
        backend_note=backend_recommendation(hardware.gpu_backend, hardware.operating_system, hardware.chip_type),
        gpu_usage=per_gpu_usage([placed], hardware.gpus),
    )


def estimate(
    model: ModelConfig,
    hardware: HardwareConfig,
    sweep: SweepRange | None = None,
    paths: dict[str, str] | None = None,
) -> Report:
    sweep = sweep or SweepRange()
    paths_obj = None
    if paths is not None:
        paths_obj = InputPaths(**paths)

    memory = estimate_memory(model, hardware)
    gpu_layers = resolve_gpu_layers(model, hardware)
    penalties = estimate_penalties(model, hardware, memory, gpu_layers)
    performance = estimate_performance(model, hardware, penalties, gpu_layers)
    advisory = estimate_advisory(model, hardware, penalties, performance.gpu_layers)

    points = batch_calculate_performance(
        hardware.gpu_bandwidth_gbs,
        model.param_count,
        sweep.min_bits,
        sweep.max_bits,
        sweep.step,
    )
    logger.debug("quantization sweep produced %d points", len(points))

    model_knobs: dict[str, Any] = {
        "name": model.name,
        "param_count": model.param_count,
        "precision": model.precision.value,
        "bits_per_weight": model.effective_bits,
        "context_length": model.context_length,
        "batch_size": model.batch_size,
        "num_layers": model.num_layers,
        "mode": model.mode.value,
    }
    hardware_knobs: dict[str, Any] = {
        "topology": hardware.topology.value,
        "gpu_bandwidth_gbs": hardware.gpu_bandwidth_gbs,
        "ram_bandwidth_gbs": hardware.ram_bandwidth_gbs,
        "total_vram_gb": hardware.total_vram_gb,
        "system_ram_gb": hardware.system_ram_gb,
        "allow_offload": hardware.allow_offload,
        "inference_software": hardware.inference_software.value,
        "cpu": hardware.cpu.model_dump(mode="json"),
    }

    return Report(
        generated_at=datetime.now(timezone.utc).isoformat(),
        model_knobs=model_knobs,
        hardware_knobs=hardware_knobs,
        paths=paths_obj,
        memory=memory,
        performance=performance,
        advisory=advisory,
        sweep=points,
        notes=[
            "Closed-form approximation: decode is assumed memory-bandwidth bound.",
            "KV cache scales with parameter count, not with the model's real layer/hidden sizes.",
            "Sweep throughput is GPU-only (no CPU factor).",
        ],
    )
