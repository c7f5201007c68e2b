from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import ValidationError
from pydantic import BaseModel, Field, field_validator, model_validator

from .io import load_mapping


class Precision(str, Enum):
    fp32 = "fp32"
    fp16 = "fp16"
    bf16 = "bf16"
    q8_0 = "q8_0"
    q6_k = "q6_k"
    q5_k_m = "q5_k_m"
    q4_k_m = "q4_k_m"
    q4_0 = "q4_0"
    q3_k_m = "q3_k_m"
    q2_k = "q2_k"
    int8 = "int8"
    int4 = "int4"


# GGUF k-quant sizes include their block scales.
PRECISION_BITS: dict[Precision, float] = {
    Precision.fp32: 32,
    Precision.fp16: 16,
    Precision.bf16: 16,
    Precision.q8_0: 8.5,
    Precision.q6_k: 6.6,
    Precision.q5_k_m: 5.7,
    Precision.q4_k_m: 4.8,
    Precision.q4_0: 4.5,
    Precision.q3_k_m: 3.9,
    Precision.q2_k: 2.6,
    Precision.int8: 8,
    Precision.int4: 4,
}


class MemoryTopology(str, Enum):
    unified = "unified"
    discrete = "discrete"


class GpuBackend(str, Enum):
    auto = "auto"
    cuda = "cuda"
    metal = "metal"
    vulkan = "vulkan"
    rocm = "rocm"
    sycl = "sycl"


class OperatingSystem(str, Enum):
    linux = "linux"
    windows = "windows"
    macos = "macos"


class ChipType(str, Enum):
    intel = "intel"
    amd = "amd"
    apple_silicon = "appleSilicon"
    arm64 = "arm64"


class SplitMode(str, Enum):
    gpu_only = "gpuOnly"
    cpu_only = "cpuOnly"
    hybrid = "hybrid"


class InferenceSoftware(str, Enum):
    ollama = "ollama"
    llama_cpp = "llama.cpp"
    lmstudio = "lmstudio"
    vllm = "vllm"


class StorageType(str, Enum):
    hdd = "HDD"
    sata = "SATA"
    nvme_gen3 = "NVMeGen3"
    nvme_gen4 = "NVMeGen4"
    nvme_gen5 = "NVMeGen5"
    microsd = "MicroSD"


class ModelConfig(BaseModel):
    name: str | None = None
    param_count: float = Field(..., gt=0.0, description="Billions of parameters")
    precision: Precision = Precision.q4_k_m
    bits_per_weight: float | None = Field(default=None, gt=0.0)
    context_length: int = Field(4096, ge=0)
    batch_size: int = Field(1, ge=0)
    num_layers: int = Field(32, ge=1)
    gpu_layers: int | None = Field(default=None, ge=0)
    hidden_size: int = Field(4096, ge=1)
    kv_cache_precision: Precision = Precision.fp16
    flash_attention: bool = False
    mode: SplitMode = SplitMode.hybrid

    @field_validator("gpu_layers")
    @classmethod
    def _validate_gpu_layers(cls, v: int | None, info):  # noqa: ANN001
        num_layers = info.data.get("num_layers")
        if v is None or num_layers is None:
            return v
        if v > num_layers:
            raise ValueError(f"gpu_layers ({v}) must not exceed num_layers ({num_layers})")
        return v

    @property
    def effective_bits(self) -> float:
        if self.bits_per_weight is not None:
            return self.bits_per_weight
        return float(PRECISION_BITS[self.precision])

    @property
    def kv_cache_bits(self) -> float:
        return float(PRECISION_BITS[self.kv_cache_precision])

    @property
    def effective_gpu_layers(self) -> int:
        if self.gpu_layers is None:
            return self.num_layers
        return self.gpu_layers

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ModelConfig":
        data = load_mapping(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid model config: {path}\n{exc}") from exc


class CpuConfig(BaseModel):
    generation: int = Field(4, description="1-5 AMD Zen, 10-15 Intel Core")
    core_count: int = Field(8, ge=1)
    threads: int | None = Field(default=None, ge=1)
    is_high_end: bool = False


class GpuConfig(BaseModel):
    name: str = "GPU"
    vram_gb: float = Field(..., ge=0.0)


class HardwareConfig(BaseModel):
    topology: MemoryTopology = MemoryTopology.discrete
    gpu_bandwidth_gbs: float = Field(..., gt=0.0)
    ram_bandwidth_gbs: float = Field(..., gt=0.0)
    gpus: list[GpuConfig] = Field(default_factory=list)
    system_ram_gb: float = Field(32, ge=8, le=512)
    allow_offload: bool = True
    gpu_backend: GpuBackend = GpuBackend.auto
    operating_system: OperatingSystem = OperatingSystem.linux
    chip_type: ChipType = ChipType.amd
    inference_software: InferenceSoftware = InferenceSoftware.ollama
    enforce_constraints: bool = False
    ram_speed_mts: float = Field(3200, gt=0.0)
    ram_cl: float = Field(16, gt=0.0)
    storage_type: StorageType = StorageType.nvme_gen4
    detailed_specs: bool = False
    cpu: CpuConfig = Field(default_factory=CpuConfig)

    @field_validator("system_ram_gb")
    @classmethod
    def _validate_system_ram(cls, v: float) -> float:
        if v % 4 != 0:
            raise ValueError(f"system_ram_gb must be a multiple of 4 GB (got {v})")
        return v

    @model_validator(mode="after")
    def _validate_topology(self) -> "HardwareConfig":
        if self.topology == MemoryTopology.unified and self.gpus:
            raise ValueError("unified topology shares system RAM; do not list discrete gpus")
        return self

    @property
    def total_vram_gb(self) -> float:
        return sum(gpu.vram_gb for gpu in self.gpus)

    @property
    def vram_pool_gb(self) -> float:
        if self.topology == MemoryTopology.unified:
            return self.system_ram_gb
        return self.total_vram_gb

    @property
    def offload_pool_gb(self) -> float:
        if self.topology == MemoryTopology.unified:
            return 0.0
        return self.system_ram_gb

    @classmethod
    def from_yaml(cls, path: str | Path) -> "HardwareConfig":
        data = load_mapping(path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid hardware config: {path}\n{exc}") from exc


# Largest sweep accepted from config or the CLI.
MAX_SWEEP_POINTS = 1000


class SweepRange(BaseModel):
    min_bits: float = Field(2.0, gt=0.0)
    max_bits: float = Field(16.0, gt=0.0)
    step: float = Field(0.5, gt=0.0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "SweepRange":
        if self.max_bits < self.min_bits:
            raise ValueError(f"max_bits ({self.max_bits}) must be >= min_bits ({self.min_bits})")
        if (self.max_bits - self.min_bits) / self.step >= MAX_SWEEP_POINTS:
            raise ValueError(f"step {self.step} yields more than {MAX_SWEEP_POINTS} sweep points")
        return self


class InputPaths(BaseModel):
    model: str
    hardware: str
