import json

import pytest

import benchmark
from charts import plot_benchmark
from main import DualLogger


def test_amdahl_fraction():
    assert benchmark.amdahl_fraction(1.0, 4) == 0.0
    assert benchmark.amdahl_fraction(4.0, 4) == pytest.approx(1.0)
    assert benchmark.amdahl_fraction(2.0, 4) == pytest.approx(2 / 3)
    assert benchmark.amdahl_fraction(3.0, 1) == 0.0
    assert benchmark.amdahl_fraction(9.0, 4) == 1.0


def test_record_result(capsys):
    results = {}
    benchmark.record_result(results, "windowed", 2, 5.0, 10.0, DualLogger())
    assert results == {"windowed": {2: {"time": 5.0, "speedup": 2.0, "efficiency": 1.0}}}
    assert "Speedup: 2.00x" in capsys.readouterr().out


def test_plot_benchmark_writes_image(tmp_path):
    results = {
        "windowed": {1: {"time": 2.0, "speedup": 1.0, "efficiency": 1.0},
                     2: {"time": 1.2, "speedup": 1.67, "efficiency": 0.83}},
        "tasks": {1: {"time": 2.1, "speedup": 0.95, "efficiency": 0.95},
                  2: {"time": 1.4, "speedup": 1.43, "efficiency": 0.71}},
    }
    path = tmp_path / "chart.png"
    assert plot_benchmark(results, [1, 2], str(path)) == str(path)
    assert path.stat().st_size > 0


def test_benchmark_main_exports_results(corpus, tmp_path):
    out = tmp_path / "bench"
    argv = ["--input-dir", str(corpus), "--output-dir", str(out), "--workers", "1", "2",
            "--strategies", "windowed", "flat", "--no-chart"]
    assert benchmark.main(argv) == 0

    data = json.loads((out / "benchmark_results.json").read_text(encoding="utf-8"))
    assert set(data["results"]) == {"windowed", "flat"}
    assert set(data["results"]["windowed"]) == {"1", "2"}
    assert data["sequential_time"] >= 0
    assert (out / "benchmark_output.txt").exists()
    assert (out / "negated" / "3.png").exists()


def test_benchmark_missing_input(tmp_path):
    assert benchmark.main(["--input-dir", str(tmp_path / "none")]) == 1
