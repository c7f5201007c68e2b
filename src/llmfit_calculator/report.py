from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import InputPaths


class QuantizationPoint(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    bits: float
    model_size_gb: float
    tokens_per_second: float


class MemoryEstimate(BaseModel):
    weights_gb: float = Field(..., ge=0.0)
    kv_cache_gb: float = Field(..., ge=0.0)
    activations_gb: float = Field(..., ge=0.0)
    total_gb: float = Field(..., ge=0.0)
    vram_pool_gb: float = Field(..., ge=0.0)
    offload_pool_gb: float = Field(..., ge=0.0)
    os_overhead_gb: float = Field(..., ge=0.0)
    out_of_memory: bool


class PerformanceEstimate(BaseModel):
    gpu_layers: int = Field(..., ge=0)
    total_layers: int = Field(..., ge=1)
    effective_bandwidth_gbs: float = Field(..., ge=0.0)
    cpu_factor: float = Field(..., gt=0.0, le=1.0)
    tokens_per_second: float = Field(..., ge=0.0)
    adjusted_tokens_per_second: float = Field(..., ge=0.0)


class Penalties(BaseModel):
    vram_overflow: float = Field(..., gt=0.0, le=1.0)
    ram_overflow: float = Field(..., gt=0.0, le=1.0)
    context: float = Field(..., gt=0.0, le=1.0)
    hardware_multiplier: float = Field(1.0, gt=0.0)
    offload_speed: float = Field(1.0, gt=0.0)

    @property
    def combined(self) -> float:
        return self.vram_overflow * self.ram_overflow * self.context * self.hardware_multiplier * self.offload_speed


class QualityTier(BaseModel):
    tier: str
    description: str


class Quality(BaseModel):
    score: float = Field(..., ge=0.0, le=100.0)
    tier: QualityTier
    perplexity_increase_pct: float = Field(..., ge=0.0)


class GpuUsage(BaseModel):
    name: str
    vram_gb: float = Field(..., ge=0.0)
    used_gb: float = 0.0
    layers: int = 0
    weights_gb: float = 0.0
    kv_cache_gb: float = 0.0
    activations_gb: float = 0.0

    def allocate(self, layers: int, layer_gb: float, kv_gb: float, act_gb: float) -> "GpuUsage":
        return self.model_copy(
            update={
                "layers": self.layers + layers,
                "weights_gb": self.weights_gb + layers * layer_gb,
                "kv_cache_gb": self.kv_cache_gb + layers * kv_gb,
                "activations_gb": self.activations_gb + layers * act_gb,
                "used_gb": self.used_gb + layers * (layer_gb + kv_gb + act_gb),
            }
        )


class Advisory(BaseModel):
    penalties: Penalties
    quality: Quality
    backend: str
    backend_note: str
    gpu_usage: list[GpuUsage] = Field(default_factory=list)


class Report(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    generated_at: str
    model_knobs: dict[str, Any] = Field(default_factory=dict)
    hardware_knobs: dict[str, Any] = Field(default_factory=dict)
    paths: InputPaths | None = None
    memory: MemoryEstimate
    performance: PerformanceEstimate
    advisory: Advisory
    sweep: list[QuantizationPoint]
    notes: list[str] = Field(default_factory=list)
