"""Slow-down factors applied on top of the bandwidth-bound throughput.

All factors are multiplicative; 1.0 means no change. The overflow and context
penalties lie in (0, 1]. The hardware multiplier and offload speed factor can
exceed 1 for setups faster than the reference single-GPU desktop.
"""

from __future__ import annotations

from typing import Iterable

from .config import ChipType, InferenceSoftware, OperatingSystem, StorageType


VRAM_OVERFLOW_TIERS = ((1.3, 0.5), (1.8, 0.2), (2.5, 0.1))
VRAM_OVERFLOW_FLOOR = 0.05

RAM_OVERFLOW_TIERS = ((1.2, 1.0), (1.5, 0.5), (2.0, 0.1))
RAM_OVERFLOW_FLOOR = 0.01

DEFAULT_CONTEXT_LENGTH = 2048
CONTEXT_SCALE = 10000.0
CONTEXT_EXPONENT = 1.2
CONTEXT_PENALTY_FLOOR = 0.15

REFERENCE_RAM_SPEED_MTS = 3200.0
REFERENCE_CL = 16.0
MAX_CL_ADJUSTMENT = 1.2

STORAGE_SPEED_FACTORS = {
    StorageType.hdd: 0.1,
    StorageType.sata: 0.5,
    StorageType.nvme_gen3: 0.8,
    StorageType.nvme_gen4: 1.0,
    StorageType.nvme_gen5: 1.3,
    StorageType.microsd: 0.05,
}

# CPU-only decode relative to a single discrete GPU.
CPU_ONLY_BASE_MULTIPLIER = 0.1
CPU_ONLY_ARM_MULTIPLIER = 0.02
CPU_ONLY_X86_TIERS = ((16, 0.2), (12, 0.15))
CPU_ONLY_FLOOR = 0.01
OPTIMAL_THREADS_PER_CORE = 1.5

APPLE_UNIFIED_MULTIPLIER = 1.2
DUAL_GPU_MULTIPLIER = 1.8
MULTI_GPU_BASE = 1.7
MULTI_GPU_STEP = 0.3

SOFTWARE_MULTIPLIERS = {
    InferenceSoftware.vllm: 1.2,
    InferenceSoftware.lmstudio: 0.95,
}
WINDOWS_GPU_MULTIPLIER = 0.9


def _tiered(ratio: float, tiers: tuple[tuple[float, float], ...], floor: float) -> float:
    for upper, factor in tiers:
        if ratio < upper:
            return factor
    return floor


def vram_overflow_penalty(used_vram_gb: float, total_vram_gb: float) -> float:
    """PCIe transfer penalty once the working set spills out of VRAM."""
    if total_vram_gb <= 0 or used_vram_gb <= total_vram_gb:
        return 1.0
    return _tiered(used_vram_gb / total_vram_gb, VRAM_OVERFLOW_TIERS, VRAM_OVERFLOW_FLOOR)


def ram_overflow_penalty(used_ram_gb: float, total_ram_gb: float) -> float:
    """Disk swap penalty once the working set spills out of system RAM."""
    if used_ram_gb <= total_ram_gb:
        return 1.0
    if total_ram_gb <= 0:
        return RAM_OVERFLOW_FLOOR
    return _tiered(used_ram_gb / total_ram_gb, RAM_OVERFLOW_TIERS, RAM_OVERFLOW_FLOOR)


def context_penalty(context_lengths: Iterable[int | None]) -> float:
    """Attention slow-down for the longest context among the loaded models.

    A model with no context length counts as 2048 tokens.
    """
    lengths = [DEFAULT_CONTEXT_LENGTH if c is None or c == 0 else c for c in context_lengths]
    if not lengths:
        return 1.0
    penalty = 1.0 / (1.0 + (max(lengths) / CONTEXT_SCALE) ** CONTEXT_EXPONENT)
    return max(CONTEXT_PENALTY_FLOOR, penalty)


def memory_overhead_gb(system_ram_gb: float, operating_system: OperatingSystem) -> float:
    if operating_system == OperatingSystem.windows:
        return 2.5 + system_ram_gb * 0.05
    if operating_system == OperatingSystem.macos:
        return 3.0 + system_ram_gb * 0.02
    return 0.8 + system_ram_gb * 0.01


def offload_speed_factor(
    ram_speed_mts: float,
    ram_cl: float,
    storage: StorageType | str,
    detailed: bool,
) -> float:
    """Speed of the offload path relative to DDR4-3200 CL16 on a Gen4 NVMe.

    Only applies when the caller supplied detailed memory specs. A latency of
    zero or less is treated as the best case.
    """
    if not detailed:
        return 1.0
    if ram_cl <= 0:
        cl_adjustment = MAX_CL_ADJUSTMENT
    else:
        cl_adjustment = min(MAX_CL_ADJUSTMENT, REFERENCE_CL / ram_cl)
    ram_factor = (ram_speed_mts / REFERENCE_RAM_SPEED_MTS) * cl_adjustment
    return ram_factor * STORAGE_SPEED_FACTORS.get(storage, 1.0)


def _cpu_only_multiplier(operating_system: OperatingSystem, chip: ChipType, cpu_cores: int, cpu_threads: int) -> float:
    thread_efficiency = min(1.0, cpu_cores * OPTIMAL_THREADS_PER_CORE / max(1, cpu_threads))

    base = CPU_ONLY_BASE_MULTIPLIER
    if chip == ChipType.arm64 and operating_system != OperatingSystem.macos:
        base = CPU_ONLY_ARM_MULTIPLIER
    elif chip in (ChipType.intel, ChipType.amd):
        for cores, multiplier in CPU_ONLY_X86_TIERS:
            if cpu_cores >= cores:
                base = multiplier
                break

    return max(CPU_ONLY_FLOOR, base * thread_efficiency)


def performance_multiplier(
    num_gpus: int,
    unified: bool,
    operating_system: OperatingSystem,
    chip: ChipType,
    cpu_cores: int = 8,
    cpu_threads: int = 16,
    total_vram_gb: float = 0.0,
    inference_software: InferenceSoftware = InferenceSoftware.ollama,
) -> float:
    """Hardware and runtime scaling relative to one discrete GPU under ollama.

    With no VRAM at all the CPU-only table is used and the software and OS
    adjustments are skipped.
    """
    if total_vram_gb <= 0:
        return _cpu_only_multiplier(operating_system, chip, cpu_cores, cpu_threads)

    multiplier = 1.0
    if unified:
        if operating_system == OperatingSystem.macos and chip == ChipType.apple_silicon:
            multiplier = APPLE_UNIFIED_MULTIPLIER
    elif num_gpus == 2:
        multiplier = DUAL_GPU_MULTIPLIER
    elif num_gpus >= 3:
        multiplier = MULTI_GPU_BASE + (num_gpus - 2) * MULTI_GPU_STEP

    multiplier *= SOFTWARE_MULTIPLIERS.get(inference_software, 1.0)
    if operating_system == OperatingSystem.windows:
        multiplier *= WINDOWS_GPU_MULTIPLIER
    return multiplier
