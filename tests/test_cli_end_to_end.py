import json
import os
import subprocess
import sys
from pathlib import Path

import numpy as np
import yaml

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import main as main_module
from geometry.geom_io import load_mesh_json


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _write_params(path: Path, params: dict) -> Path:
    path.write_text(yaml.safe_dump({"global_parameters": params}))
    return path


def test_short_run_writes_csv_and_state(tmp_path):
    csv_path = tmp_path / "map.csv"
    state_path = tmp_path / "state.json"
    code = main_module.main(
        [
            "--resolution",
            "2",
            "--max-steps",
            "3",
            "-o",
            str(csv_path),
            "--state",
            str(state_path),
            "-q",
        ]
    )
    assert code == 0
    lines = csv_path.read_text().splitlines()
    assert lines[0] == "29,48"
    assert len(lines) == 1 + 29 + 48

    state = json.loads(state_path.read_text())
    assert state["finalised"] is True
    assert state["step_count"] == 3
    assert state["global_parameters"]["resolution"] == 2


def test_parameter_file_without_extension(tmp_path):
    _write_params(tmp_path / "params.yaml", {"resolution": 1, "initial_condition": "sinusoidal"})
    state_path = tmp_path / "state.json"
    code = main_module.main(
        ["-i", str(tmp_path / "params"), "--max-steps", "1", "--state", str(state_path), "-q"]
    )
    assert code == 0
    mesh = load_mesh_json(state_path)
    assert mesh.global_parameters.initial_condition == "sinusoidal"
    assert len(mesh.vertices) == 7


def test_weights_file_from_the_command_line(tmp_path):
    weights = tmp_path / "weights.npy"
    np.save(weights, np.full((2, 4), 2.0))
    state_path = tmp_path / "state.json"
    code = main_module.main(
        [
            "--resolution",
            "1",
            "--weights",
            str(weights),
            "--max-steps",
            "1",
            "--state",
            str(state_path),
            "--compact-output-json",
            "-q",
        ]
    )
    assert code == 0
    state = json.loads(state_path.read_text())
    assert {e["weight"] for e in state["elements"]} == {2.0}


def test_resume_continues_from_saved_state(tmp_path):
    first = tmp_path / "first.json"
    second = tmp_path / "second.json"
    assert main_module.main(["--resolution", "1", "--max-steps", "2", "--state", str(first), "-q"]) == 0
    # a finalised state resumes as finished: nothing more happens
    assert main_module.main(["--resume", str(first), "--state", str(second), "-q"]) == 0
    assert json.loads(second.read_text())["step_count"] == 2


def test_bad_parameter_is_reported(tmp_path, caplog):
    path = _write_params(tmp_path / "bad.yaml", {"poisson_ratio": 1.0})
    assert main_module.main(["-i", str(path), "-q"]) == 1
    assert "poisson_ratio" in caplog.text


def test_missing_input_file(tmp_path):
    assert main_module.main(["-i", str(tmp_path / "nowhere"), "-q"]) == 1


def test_plot_is_saved(tmp_path):
    picture = tmp_path / "map.png"
    code = main_module.main(
        ["--resolution", "1", "--max-steps", "1", "--plot-save", str(picture), "-q"]
    )
    assert code == 0
    assert picture.stat().st_size > 0


def test_main_script_smoke(tmp_path):
    config_dir = tmp_path / "mplconfig"
    config_dir.mkdir(parents=True, exist_ok=True)
    env = dict(os.environ)
    env["MPLCONFIGDIR"] = str(config_dir)
    env.setdefault("MPLBACKEND", "Agg")

    out = tmp_path / "map.csv"
    log = tmp_path / "run.log"
    proc = subprocess.run(
        [
            sys.executable,
            str(_repo_root() / "main.py"),
            "--resolution",
            "1",
            "--max-steps",
            "2",
            "-o",
            str(out),
            "--log",
            str(log),
            "-q",
        ],
        cwd=_repo_root(),
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0, proc.stderr
    assert out.read_text().splitlines()[0] == "7,8"
    assert "map-optimizer" in log.read_text()


def test_criteria_weights_are_reported_per_file(tmp_path, caplog):
    land = np.zeros((2, 4))
    land[:, :2] = 1.0
    np.save(tmp_path / "terrestrial.npy", land)
    np.save(tmp_path / "nautical.npy", 1.0 - land)
    code = main_module.main(
        [
            "--resolution",
            "1",
            "--max-steps",
            "2",
            "--criteria-weights",
            str(tmp_path / "terrestrial.npy"),
            "--criteria-weights",
            str(tmp_path / "nautical.npy"),
            "-q",
        ]
    )
    assert code == 0
    assert "The global areal distortion" in caplog.text
    assert "The terrestrial areal distortion" in caplog.text
    assert "The nautical areal distortion" in caplog.text


def test_criteria_weights_of_the_wrong_shape(tmp_path, caplog):
    np.save(tmp_path / "odd.npy", np.ones((3, 3)))
    code = main_module.main(
        ["--resolution", "1", "--criteria-weights", str(tmp_path / "odd.npy"), "-q"]
    )
    assert code == 1
    assert "criteria_weights" in caplog.text


def test_eccentricity_from_the_parameter_file(tmp_path):
    path = _write_params(tmp_path / "params.yaml", {"resolution": 1, "eccentricity": 0.081819})
    state = tmp_path / "state.json"
    assert main_module.main(["-i", str(path), "--max-steps", "1", "--state", str(state), "-q"]) == 0
    assert load_mesh_json(state).global_parameters.eccentricity == 0.081819
