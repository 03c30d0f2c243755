"""Tests for the MapOptimizer driver and its worker thread."""

import logging
import os
import sys
import threading

import numpy as np
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.exceptions import InvalidArgumentError, MeshFinalisedError
from geometry.mesh import MeshSnapshot, MeshState
from runtime.minimizer import MapOptimizer
from sample_meshes import small_globe, triangle_mesh


def test_run_to_completion_on_a_single_element():
    mesh = triangle_mesh(1.5)
    optimizer = MapOptimizer(mesh)
    result = optimizer.run()
    assert result is mesh
    assert mesh.finalised
    assert mesh.state is MeshState.DONE
    assert optimizer.iterations > 0
    assert mesh.get_total_energy() < 1e-3


def test_max_steps_caps_the_run(caplog):
    caplog.set_level(logging.INFO, logger="elastic_projection")
    mesh = small_globe(2)
    optimizer = MapOptimizer(mesh, max_steps=3)
    optimizer.run()
    assert optimizer.iterations == 3
    assert mesh.step_count == 3
    assert mesh.finalised
    assert "Stopping after 3 iterations" in caplog.text
    assert "areal distortion" in caplog.text


def test_cancelled_before_start(caplog):
    caplog.set_level(logging.INFO, logger="elastic_projection")
    mesh = small_globe(2)
    cancel = threading.Event()
    cancel.set()
    MapOptimizer(mesh).run(cancel)
    assert mesh.step_count == 0
    assert mesh.finalised
    assert "cancelled" in caplog.text


def test_on_step_sees_every_iteration():
    seen = []
    mesh = small_globe(2)
    MapOptimizer(mesh, max_steps=4, on_step=lambda m: seen.append(m.step_count)).run()
    assert seen == [1, 2, 3, 4]


def test_finalised_mesh_refuses_to_change():
    mesh = small_globe(1)
    MapOptimizer(mesh, max_steps=1).run()
    energy = mesh.get_total_energy()
    for mutate in (mesh.update, mesh.rupture, mesh.stitch):
        with pytest.raises(MeshFinalisedError):
            mutate()
    mesh.finalise()
    assert mesh.get_total_energy() == energy


def test_background_run_and_join():
    mesh = small_globe(2)
    optimizer = MapOptimizer(mesh, max_steps=5)
    thread = optimizer.start()
    assert thread.name == "map-optimizer"
    snapshot = optimizer.snapshot()
    assert isinstance(snapshot, MeshSnapshot)
    assert snapshot.positions.shape == (len(snapshot.vertex_ids), 2)
    assert optimizer.join(timeout=60) is mesh
    assert not optimizer.is_running()
    assert mesh.finalised
    assert optimizer.iterations == 5


def test_cancel_stops_a_background_run():
    mesh = small_globe(2)
    started = threading.Event()
    release = threading.Event()

    def on_step(m):
        started.set()
        release.wait(10)

    optimizer = MapOptimizer(mesh, on_step=on_step)
    optimizer.start()
    assert started.wait(10)
    optimizer.cancel()
    release.set()
    optimizer.join(timeout=60)
    assert not optimizer.is_running()
    assert optimizer.iterations == 1
    assert mesh.finalised


def test_worker_errors_surface_on_join():
    mesh = small_globe(2)

    def on_step(m):
        raise InvalidArgumentError("boom")

    optimizer = MapOptimizer(mesh, on_step=on_step)
    optimizer.start()
    with pytest.raises(InvalidArgumentError, match="boom"):
        optimizer.join(timeout=60)
    # the mesh is finalised even though the run failed
    assert mesh.finalised


def test_snapshot_of_a_fresh_globe():
    mesh = small_globe(2)
    snapshot = mesh.snapshot()
    assert snapshot.triangles.shape == (48, 3)
    assert len(snapshot.boundary) == 8
    assert snapshot.fold_count == 0
    assert snapshot.state is MeshState.RELAXING
    assert snapshot.energy == pytest.approx(mesh.get_total_energy())


def test_report_logs_one_line_per_weighting(caplog):
    caplog.set_level(logging.INFO, logger="elastic_projection")
    mesh = small_globe(2)
    land = np.zeros(mesh.grid_shape)
    land[:, :4] = 1.0
    sea = 1.0 - land
    optimizer = MapOptimizer(
        mesh, max_steps=2, criteria_weights=[("terrestrial", land), ("nautical", sea)]
    )
    optimizer.run()
    lines = [r.getMessage() for r in caplog.records if "areal distortion" in r.getMessage()]
    assert len(lines) == 3
    assert [line.split()[1] for line in lines] == ["global", "terrestrial", "nautical"]

    results = optimizer.report()
    assert [label for label, _ in results] == ["global", "terrestrial", "nautical"]
    assert results[1][1] == pytest.approx(mesh.get_criteria(land))


def test_repr_names_the_mesh_size():
    optimizer = MapOptimizer(small_globe(2), max_steps=7)
    text = repr(optimizer)
    assert "29 vertices" in text
    assert "48 elements" in text
    assert "max_steps=7" in text
