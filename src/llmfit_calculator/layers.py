"""Per-layer memory accounting and sequential placement of layers on GPUs.

Sizes here are GiB (1024**3 bytes), matching what llama.cpp style loaders
report per device.
"""

from __future__ import annotations

from math import floor
from typing import Sequence

from .config import GpuConfig, ModelConfig, SplitMode
from .report import GpuUsage


GIB = 1024**3
RESERVED_VRAM_PER_GPU_GB = 0.5
ACTIVATION_BYTES = 4
ACTIVATION_OVERHEAD_FACTOR = 4


def layer_size_gb(model: ModelConfig) -> float:
    total_weights = (model.param_count * 1e9 * (model.effective_bits / 8)) / GIB
    return total_weights / model.num_layers


def kv_cache_per_layer_gb(model: ModelConfig) -> float:
    kv_bytes = model.kv_cache_bits / 8
    return (2 * model.context_length * model.hidden_size * model.batch_size * kv_bytes) / GIB


def activation_per_layer_gb(model: ModelConfig) -> float:
    return (model.batch_size * model.hidden_size * ACTIVATION_BYTES * ACTIVATION_OVERHEAD_FACTOR) / GIB


def vram_per_layer_gb(model: ModelConfig) -> float:
    return layer_size_gb(model) + kv_cache_per_layer_gb(model) + activation_per_layer_gb(model)


def fit_gpu_layers(
    model: ModelConfig,
    gpus: Sequence[GpuConfig],
    reserved_per_gpu_gb: float = RESERVED_VRAM_PER_GPU_GB,
) -> int:
    """Number of whole layers that fit when each GPU is filled in turn."""
    per_layer = vram_per_layer_gb(model)
    fitting = 0
    for gpu in gpus:
        available = max(0.0, gpu.vram_gb - reserved_per_gpu_gb)
        fitting += floor(available / per_layer)
    return min(model.num_layers, fitting)


def split_gpu_layers(model: ModelConfig, gpus: Sequence[GpuConfig], enforce_constraints: bool = False) -> int:
    """GPU layer count for the model's split mode.

    ``gpuOnly`` asks for every layer; with ``enforce_constraints`` it is cut
    back to what the pooled VRAM can hold. ``cpuOnly`` keeps nothing on the
    GPU, and ``hybrid`` fills each GPU in turn.
    """
    if model.mode == SplitMode.cpu_only:
        return 0
    if model.mode == SplitMode.gpu_only:
        if not enforce_constraints:
            return model.num_layers
        pooled = sum(max(0.0, gpu.vram_gb - RESERVED_VRAM_PER_GPU_GB) for gpu in gpus)
        return min(model.num_layers, floor(pooled / vram_per_layer_gb(model)))
    return fit_gpu_layers(model, gpus)


def per_gpu_usage(models: Sequence[ModelConfig], gpus: Sequence[GpuConfig]) -> list[GpuUsage]:
    """Allocate each model's GPU layers across ``gpus`` first-fit, in order.

    Layers that do not fit anywhere are left unallocated; callers compare the
    allocated total against ``effective_gpu_layers`` to spot the shortfall.
    """
    usage = [GpuUsage(name=gpu.name, vram_gb=gpu.vram_gb) for gpu in gpus]

    for model in models:
        layer_gb = layer_size_gb(model)
        kv_gb = kv_cache_per_layer_gb(model)
        act_gb = activation_per_layer_gb(model)
        per_layer = layer_gb + kv_gb + act_gb

        remaining = model.effective_gpu_layers
        for i, gpu in enumerate(usage):
            if remaining <= 0:
                break
            available = max(0.0, gpu.vram_gb - gpu.used_gb - RESERVED_VRAM_PER_GPU_GB)
            to_alloc = min(remaining, floor(available / per_layer))
            if to_alloc > 0:
                usage[i] = gpu.allocate(to_alloc, layer_gb, kv_gb, act_gb)
                remaining -= to_alloc

    return usage
