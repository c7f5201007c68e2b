from __future__ import annotations

from .config import ChipType, GpuBackend, OperatingSystem


def backend_recommendation(backend: GpuBackend, operating_system: OperatingSystem, chip: ChipType) -> str:
    """Advisory text for a llama.cpp GPU backend choice.

    Display metadata only: nothing in the estimate depends on the backend.
    """
    intel_mac = operating_system == OperatingSystem.macos and chip == ChipType.intel

    if backend == GpuBackend.auto:
        if operating_system == OperatingSystem.macos and chip == ChipType.apple_silicon:
            return "Will use Metal (optimal for Apple Silicon)"
        if intel_mac:
            return "Will likely use CPU or Vulkan (if AMD eGPU)"
        if operating_system == OperatingSystem.linux:
            return "Will detect CUDA/ROCm/Vulkan"
        return "Will auto-detect best backend"
    if backend == GpuBackend.cuda:
        return "NVIDIA GPUs on Linux/Windows. ~10% faster than Vulkan."
    if backend == GpuBackend.metal:
        if chip == ChipType.apple_silicon:
            return "Optimal for M1/M2/M3/M4 chips"
        if intel_mac:
            return "Poor performance on Intel Macs. Use Vulkan."
        return "macOS only"
    if backend == GpuBackend.vulkan:
        if intel_mac:
            return "Best for Intel Mac with AMD eGPU"
        return "Works on NVIDIA/AMD/Intel GPUs. Universal compatibility."
    if backend == GpuBackend.rocm:
        return "AMD GPUs on Linux. Optimal for RDNA3 (RX 7000)."
    if backend == GpuBackend.sycl:
        return "Intel GPUs. Requires Intel oneAPI toolkit."
    raise ValueError(f"Unsupported gpu backend: {backend}")
