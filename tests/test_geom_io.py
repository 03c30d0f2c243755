import io
import json
import math
import os
import sys

import numpy as np
import pytest
import yaml

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.exceptions import ConfigurationError
from geometry.geom_io import (
    load_data,
    load_grid,
    load_mesh_csv,
    load_mesh_json,
    load_parameters,
    save_mesh_csv,
    save_mesh_json,
)
from geometry.mesh import MeshState
from parameters.global_parameters import GlobalParameters
from sample_meshes import small_globe, stretched_globe


def test_csv_layout():
    mesh = small_globe(2)
    sink = io.StringIO()
    mesh.save(sink)
    lines = sink.getvalue().splitlines()
    assert lines[0] == "29,48"
    assert len(lines) == 1 + 29 + 48

    north = mesh.vertices[0]
    row, phi, lam, x, y = lines[1].split(",")
    assert row == "0"
    assert float(phi) == north.phi
    assert (float(x), float(y)) == (north.x, north.y)
    first = [int(i) for i in lines[30].split(",")]
    assert first == [v.index for v in mesh.elements[0].vertices]


def test_csv_round_trip(tmp_path):
    mesh = small_globe(2)
    path = tmp_path / "out" / "map.csv"
    save_mesh_csv(mesh, path)
    loaded = load_mesh_csv(path)

    assert len(loaded.vertices) == 29
    assert len(loaded.elements) == 48
    np.testing.assert_array_equal(loaded.positions_view(), mesh.positions_view())
    assert [v.index for v in loaded.boundary_loop()] == [
        v.index for v in mesh.boundary_loop()
    ]
    loaded.validate()
    assert loaded.get_total_energy() == pytest.approx(mesh.get_total_energy(), rel=1e-9)


def test_csv_round_trip_of_a_torn_mesh(tmp_path):
    mesh = stretched_globe(2, strength=0.0, tear_length=10.0)
    assert mesh.rupture()
    path = tmp_path / "torn.csv"
    save_mesh_csv(mesh, path)
    loaded = load_mesh_csv(path)
    assert len(loaded.vertices) == 30
    assert len(loaded.boundary_loop()) == 10
    loaded.validate()


def test_malformed_csv(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("3,1\n0,0.0,0.0,0.0,0.0\n")
    with pytest.raises(ConfigurationError):
        load_mesh_csv(path)


def test_json_round_trip(tmp_path):
    mesh = stretched_globe(2, strength=0.0, tear_length=10.0)
    mesh.update()
    mesh.rupture()
    path = tmp_path / "state.json"
    save_mesh_json(mesh, path)
    loaded = load_mesh_json(path)

    assert loaded.global_parameters == mesh.global_parameters
    assert loaded.grid_shape == mesh.grid_shape
    assert loaded.step_count == mesh.step_count
    assert loaded.step_size == mesh.step_size
    assert loaded.tear_budget == mesh.tear_budget
    assert loaded.state is MeshState.TEARING
    np.testing.assert_array_equal(loaded.positions_view(), mesh.positions_view())
    assert [v.index for v in loaded.boundary_loop()] == [
        v.index for v in mesh.boundary_loop()
    ]
    for eid, element in mesh.elements.items():
        other = loaded.elements[eid]
        np.testing.assert_array_equal(other.undeformed_coords, element.undeformed_coords)
        assert other.cell == element.cell
        assert other.default_energy == element.default_energy
    assert loaded.get_total_energy() == mesh.get_total_energy()
    loaded.validate()


def test_json_keeps_infinite_strength(tmp_path):
    mesh = small_globe(1)
    path = tmp_path / "state.json"
    save_mesh_json(mesh, path)
    loaded = load_mesh_json(path)
    assert loaded.global_parameters.strength == math.inf
    assert all(e.strength == math.inf for e in loaded.elements.values())


def test_finalised_state_survives(tmp_path):
    mesh = small_globe(1)
    mesh.finalise()
    path = tmp_path / "done.json"
    save_mesh_json(mesh, path, compact=True)
    assert len(path.read_text().splitlines()) == 1
    loaded = load_mesh_json(path)
    assert loaded.finalised
    assert loaded.state is MeshState.DONE
    assert loaded.get_total_energy() == pytest.approx(mesh.get_total_energy())


def test_load_data_formats(tmp_path):
    params = {"global_parameters": {"resolution": 4, "tear_length": 0.5}}
    yaml_path = tmp_path / "params.yaml"
    yaml_path.write_text(yaml.safe_dump(params))
    json_path = tmp_path / "params.json"
    json_path.write_text(json.dumps(params))
    assert load_data(yaml_path) == params
    assert load_data(json_path) == params

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_data(empty) == {}

    other = tmp_path / "params.toml"
    other.write_text("resolution = 4\n")
    with pytest.raises(ConfigurationError):
        load_data(other)


def test_load_parameters_nested_flat_and_default(tmp_path):
    nested = load_parameters({"global_parameters": {"resolution": 4}, "weights": "w.npy"})
    flat = load_parameters({"resolution": 4, "scales": "s.npy"})
    assert nested == flat == GlobalParameters(resolution=4)
    assert load_parameters(None) == GlobalParameters()

    path = tmp_path / "params.yml"
    path.write_text("lam: 2.0\nstrength: inf\n")
    params = load_parameters(str(path))
    assert params.lam == 2.0
    assert params.strength == math.inf


def test_load_grid_formats(tmp_path):
    grid = np.arange(8.0).reshape(2, 4) + 1.0
    npy = tmp_path / "grid.npy"
    np.save(npy, grid)
    np.testing.assert_array_equal(load_grid(npy, 1), grid)

    csv_path = tmp_path / "grid.csv"
    np.savetxt(csv_path, grid, delimiter=",")
    np.testing.assert_allclose(load_grid(csv_path, 1), grid)

    txt = tmp_path / "grid.txt"
    np.savetxt(txt, grid)
    np.testing.assert_allclose(load_grid(txt, 1, "scales"), grid)


def test_fine_grids_are_block_averaged(tmp_path):
    fine = np.kron(np.arange(8.0).reshape(2, 4), np.ones((3, 3)))
    path = tmp_path / "fine.npy"
    np.save(path, fine)
    np.testing.assert_allclose(load_grid(path, 1), np.arange(8.0).reshape(2, 4))


def test_grid_of_the_wrong_size(tmp_path):
    path = tmp_path / "odd.npy"
    np.save(path, np.ones((3, 5)))
    with pytest.raises(ConfigurationError) as excinfo:
        load_grid(path, 1, "scales")
    assert excinfo.value.key == "scales"
