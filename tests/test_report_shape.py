import pytest

from llmfit_calculator.config import HardwareConfig, ModelConfig, SweepRange
from llmfit_calculator.engine import calculate_offload_bandwidth, calculate_performance, get_cpu_factor
from llmfit_calculator.estimator import estimate, resolve_gpu_layers
from llmfit_calculator.penalties import context_penalty


DISCRETE_HARDWARE = {
    "topology": "discrete",
    "gpu_bandwidth_gbs": 1008,
    "ram_bandwidth_gbs": 83,
    "gpus": [{"name": "RTX 4090", "vram_gb": 24}],
    "system_ram_gb": 64,
    "gpu_backend": "cuda",
    "cpu": {"generation": 4, "core_count": 16, "is_high_end": True},
}

UNIFIED_HARDWARE = {
    "topology": "unified",
    "gpu_bandwidth_gbs": 400,
    "ram_bandwidth_gbs": 400,
    "system_ram_gb": 64,
    "allow_offload": False,
    "gpu_backend": "metal",
    "operating_system": "macos",
    "chip_type": "appleSilicon",
}


def test_model_fully_on_gpu() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m", "context_length": 8192})
    hardware = HardwareConfig.model_validate(DISCRETE_HARDWARE)

    report = estimate(model=model, hardware=hardware)
    payload = report.model_dump(mode="json")

    memory = payload["memory"]
    assert memory["weights_gb"] == pytest.approx(4.8)
    assert memory["kv_cache_gb"] == pytest.approx(0.131072)
    assert memory["activations_gb"] == pytest.approx(0.24)
    assert memory["total_gb"] == pytest.approx(4.8 + 0.131072 + 0.24)
    assert memory["out_of_memory"] is False

    perf = payload["performance"]
    assert perf["gpu_layers"] == 32
    assert perf["effective_bandwidth_gbs"] == 1008
    assert perf["cpu_factor"] == 1.0
    assert perf["tokens_per_second"] == pytest.approx(210.0)
    assert perf["adjusted_tokens_per_second"] == pytest.approx(210.0 * context_penalty([8192]))

    advisory = payload["advisory"]
    assert advisory["penalties"]["vram_overflow"] == 1.0
    assert advisory["penalties"]["ram_overflow"] == 1.0
    assert advisory["quality"]["score"] == 92.0
    assert advisory["quality"]["tier"]["tier"] == "Very Good"
    assert advisory["backend"] == "cuda"
    assert advisory["gpu_usage"][0]["layers"] == 32

    assert len(payload["sweep"]) == 29
    assert payload["sweep"][0]["bits"] == 2.0
    assert payload["paths"] is None
    assert payload["notes"]


def test_partial_offload_uses_harmonic_bandwidth_and_cpu_factor() -> None:
    model = ModelConfig.model_validate({"param_count": 70, "precision": "q4_k_m", "num_layers": 80, "gpu_layers": 40})
    hardware = HardwareConfig.model_validate(DISCRETE_HARDWARE)

    report = estimate(model=model, hardware=hardware)

    bandwidth = calculate_offload_bandwidth(1008, 83, 40, 80)
    cpu_factor = get_cpu_factor(4, 16, True)
    assert cpu_factor == pytest.approx(0.55)
    assert report.performance.effective_bandwidth_gbs == pytest.approx(bandwidth)
    assert report.performance.cpu_factor == cpu_factor
    assert report.performance.tokens_per_second == pytest.approx(calculate_performance(bandwidth, 42.0, cpu_factor))
    assert report.memory.out_of_memory is False
    assert report.advisory.penalties.vram_overflow == 0.1


def test_offload_disallowed_reports_oom() -> None:
    model = ModelConfig.model_validate({"param_count": 70, "precision": "fp16", "num_layers": 80})
    hardware = HardwareConfig.model_validate({**DISCRETE_HARDWARE, "allow_offload": False})

    report = estimate(model=model, hardware=hardware)
    assert report.memory.out_of_memory is True
    assert report.performance.gpu_layers < 80


def test_no_gpu_runs_from_system_ram() -> None:
    model = ModelConfig.model_validate({"param_count": 3, "precision": "q8_0", "num_layers": 28})
    hardware = HardwareConfig.model_validate({**DISCRETE_HARDWARE, "gpus": []})

    assert resolve_gpu_layers(model, hardware) == 0
    report = estimate(model=model, hardware=hardware)
    assert report.performance.effective_bandwidth_gbs == 83
    assert report.performance.cpu_factor == pytest.approx(0.55)
    assert report.advisory.gpu_usage == []


def test_unified_memory_keeps_every_layer_resident() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m"})
    hardware = HardwareConfig.model_validate(UNIFIED_HARDWARE)

    report = estimate(model=model, hardware=hardware, sweep=SweepRange(min_bits=4, max_bits=8, step=1))
    payload = report.model_dump(mode="json")

    assert payload["hardware_knobs"]["topology"] == "unified"
    assert payload["memory"]["vram_pool_gb"] == 64
    assert payload["memory"]["offload_pool_gb"] == 0
    assert payload["performance"]["gpu_layers"] == 32
    assert payload["performance"]["tokens_per_second"] == pytest.approx(400 / 4.8)
    assert "M1/M2/M3/M4" in payload["advisory"]["backend_note"]
    assert [p["bits"] for p in payload["sweep"]] == [4.0, 5.0, 6.0, 7.0, 8.0]


def test_unified_memory_oom_when_model_exceeds_ram() -> None:
    model = ModelConfig.model_validate({"param_count": 70, "precision": "fp16"})
    hardware = HardwareConfig.model_validate(UNIFIED_HARDWARE)

    report = estimate(model=model, hardware=hardware)
    assert report.memory.out_of_memory is True
    assert report.advisory.penalties.ram_overflow < 1.0


def test_explicit_gpu_layers_without_vram_run_from_system_ram() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m", "num_layers": 32, "gpu_layers": 32})
    hardware = HardwareConfig.model_validate({**DISCRETE_HARDWARE, "gpus": []})

    assert resolve_gpu_layers(model, hardware) == 0
    report = estimate(model=model, hardware=hardware)
    assert report.performance.gpu_layers == 0
    assert report.performance.effective_bandwidth_gbs == 83
    assert report.performance.cpu_factor == pytest.approx(0.55)
    assert report.performance.tokens_per_second == pytest.approx(calculate_performance(83, 4.8, 0.55))
    # 16 cores at the default 32 threads: 0.2 * min(1, 24 / 32)
    assert report.advisory.penalties.hardware_multiplier == pytest.approx(0.15)


def test_detailed_memory_specs_scale_offloaded_throughput() -> None:
    model = ModelConfig.model_validate({"param_count": 70, "precision": "q4_k_m", "num_layers": 80, "gpu_layers": 40})
    plain = estimate(model=model, hardware=HardwareConfig.model_validate(DISCRETE_HARDWARE))
    detailed = estimate(
        model=model,
        hardware=HardwareConfig.model_validate(
            {
                **DISCRETE_HARDWARE,
                "detailed_specs": True,
                "ram_speed_mts": 6400,
                "ram_cl": 32,
                "storage_type": "SATA",
            }
        ),
    )

    assert plain.advisory.penalties.offload_speed == 1.0
    assert detailed.advisory.penalties.offload_speed == pytest.approx(0.5)
    assert detailed.performance.tokens_per_second == pytest.approx(plain.performance.tokens_per_second)
    assert detailed.performance.adjusted_tokens_per_second == pytest.approx(
        plain.performance.adjusted_tokens_per_second * 0.5
    )


def test_detailed_memory_specs_ignored_when_fully_on_gpu() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m"})
    hardware = HardwareConfig.model_validate({**DISCRETE_HARDWARE, "detailed_specs": True, "storage_type": "HDD"})

    report = estimate(model=model, hardware=hardware)
    assert report.performance.gpu_layers == 32
    assert report.advisory.penalties.offload_speed == 1.0


def test_hardware_multiplier_folds_into_adjusted_throughput() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m"})
    report = estimate(model=model, hardware=HardwareConfig.model_validate(UNIFIED_HARDWARE))

    penalties = report.advisory.penalties
    assert penalties.hardware_multiplier == 1.2
    assert penalties.vram_overflow == 1.0
    assert penalties.ram_overflow == 1.0
    assert report.performance.adjusted_tokens_per_second == pytest.approx(
        (400 / 4.8) * 1.2 * context_penalty([4096])
    )


def test_dual_gpu_vllm_multiplier() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m"})
    hardware = HardwareConfig.model_validate(
        {
            **DISCRETE_HARDWARE,
            "gpus": [{"name": "RTX 4090", "vram_gb": 24}, {"name": "RTX 4090", "vram_gb": 24}],
            "inference_software": "vllm",
        }
    )

    report = estimate(model=model, hardware=hardware)
    assert report.advisory.penalties.hardware_multiplier == pytest.approx(1.8 * 1.2)
    assert report.hardware_knobs["inference_software"] == "vllm"


def test_cpu_only_mode_keeps_layers_off_the_gpu() -> None:
    model = ModelConfig.model_validate({"param_count": 8, "precision": "q4_k_m", "mode": "cpuOnly"})
    report = estimate(model=model, hardware=HardwareConfig.model_validate(DISCRETE_HARDWARE))

    assert report.performance.gpu_layers == 0
    assert report.performance.effective_bandwidth_gbs == 83
    assert report.performance.cpu_factor == pytest.approx(0.55)
    assert report.advisory.gpu_usage[0].layers == 0
    assert report.model_knobs["mode"] == "cpuOnly"


def test_gpu_only_mode_with_enforced_constraints() -> None:
    model = ModelConfig.model_validate({"param_count": 70, "precision": "q4_k_m", "num_layers": 80, "mode": "gpuOnly"})

    unconstrained = HardwareConfig.model_validate(DISCRETE_HARDWARE)
    assert resolve_gpu_layers(model, unconstrained) == 80

    enforced = HardwareConfig.model_validate({**DISCRETE_HARDWARE, "enforce_constraints": True})
    assert 0 < resolve_gpu_layers(model, enforced) < 80
