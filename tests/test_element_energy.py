import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.exceptions import InvalidArgumentError
from geometry.entities import Element, Vertex
from sample_meshes import RIGHT_TRIANGLE, make_element, rotation


def _neo_hookean_density(F, lam=1.0, mu=1.0):
    J = np.linalg.det(F)
    return mu / 2 * (np.trace(F @ F.T) - 2 - 2 * math.log(J)) + lam / 2 * math.log(J) ** 2


def test_undeformed_element_has_zero_energy():
    element = make_element()
    assert element.area == 0.5
    assert element.current_energy() == 0.0


def test_rigid_motion_costs_nothing():
    positions = RIGHT_TRIANGLE @ rotation(0.7).T + np.array([3.0, -2.0])
    element = make_element(positions)
    assert element.current_energy() == pytest.approx(0.0, abs=1e-12)


def test_uniform_stretch_energy_matches_closed_form():
    element = make_element(2.0 * RIGHT_TRIANGLE, lam=0.5, mu=2.0, weight=3.0)
    expected = _neo_hookean_density(2.0 * np.eye(2), lam=0.5, mu=2.0) * 0.5 * 3.0
    assert element.current_energy() == pytest.approx(expected)


def test_energy_is_rotation_invariant():
    F = np.array([[1.3, 0.2], [-0.1, 0.8]])
    base = make_element(RIGHT_TRIANGLE @ F.T)
    turned = make_element(RIGHT_TRIANGLE @ (rotation(1.1) @ F).T)
    assert turned.current_energy() == pytest.approx(base.current_energy(), rel=1e-12)


def test_deformation_gradient_recovers_affine_map():
    F = np.array([[1.3, 0.2], [-0.1, 0.8]])
    element = make_element(RIGHT_TRIANGLE @ F.T + 5.0)
    np.testing.assert_allclose(element.deformation_gradient().values, F, atol=1e-12)


def test_folded_element_reports_infinite_energy():
    element = make_element(RIGHT_TRIANGLE[[0, 2, 1]])
    assert element.is_folded()
    assert element.current_energy() == math.inf
    assert np.all(element.energy_gradient() == 0.0)


def test_collapsed_element_is_folded_not_nan():
    element = make_element(np.zeros((3, 2)))
    assert element.is_folded()
    assert element.current_energy() == math.inf


def test_degenerate_element_has_zero_energy():
    a, b = Vertex(0, 0, 0, 0), Vertex(0, 0, 1, 0)
    element = Element([a, b, a], RIGHT_TRIANGLE.copy())
    assert element.is_degenerate()
    assert element.current_energy() == 0.0
    assert not element.is_folded()


def test_clockwise_undeformed_shape_is_rejected():
    with pytest.raises(InvalidArgumentError):
        make_element(undeformed=RIGHT_TRIANGLE[[0, 2, 1]])


def test_wrong_vertex_count_is_rejected():
    with pytest.raises(InvalidArgumentError):
        Element([Vertex(0, 0), Vertex(0, 0)], RIGHT_TRIANGLE.copy())


def test_construction_registers_the_element_with_its_corners():
    element = make_element()
    for vertex in element.vertices:
        assert element in vertex.forces
        assert element.touches(vertex)


def test_gradient_matches_finite_differences():
    positions = np.array([[0.1, -0.05], [1.2, 0.1], [0.05, 0.9]])
    element = make_element(positions, lam=0.7, mu=1.3)
    analytic = element.energy_gradient()
    h = 1e-6
    for i, vertex in enumerate(element.vertices):
        for axis, attr in enumerate(("x", "y")):
            original = getattr(vertex, attr)
            setattr(vertex, attr, original + h)
            e_plus = element.current_energy()
            setattr(vertex, attr, original - h)
            e_minus = element.current_energy()
            setattr(vertex, attr, original)
            assert analytic[i, axis] == pytest.approx((e_plus - e_minus) / (2 * h), rel=1e-5, abs=1e-8)


def test_saved_energy_and_delta():
    element = make_element(1.5 * RIGHT_TRIANGLE)
    saved = element.compute_and_save_energy()
    assert element.default_energy == saved
    assert element.compute_delta_energy() == 0.0
    element.vertices[1].x += 0.2
    assert element.compute_delta_energy() == pytest.approx(element.current_energy() - saved)


def test_principal_stretches():
    element = make_element(RIGHT_TRIANGLE @ np.diag([3.0, 0.5]).T)
    major, minor = element.principal_stretches()
    assert major == pytest.approx(3.0)
    assert minor == pytest.approx(0.5)


def test_corners_map_to_their_vertices():
    positions = np.array([[0.3, 0.1], [2.0, -0.4], [0.5, 1.7]])
    undeformed = np.array([[0.0, 0.0], [0.8, 0.1], [0.2, 0.9]])
    element = make_element(positions, undeformed=undeformed)
    for (u, v), (x, y) in zip(undeformed, positions):
        mapped = element.map_undeformed_to_deformed(u, v)
        assert mapped == pytest.approx((x, y), abs=1e-12)


def test_interpolation_is_affine_inside():
    F = np.array([[2.0, 0.5], [0.0, 1.0]])
    element = make_element(RIGHT_TRIANGLE @ F.T)
    x, y = element.map_undeformed_to_deformed(0.25, 0.25)
    assert (x, y) == pytest.approx(tuple(F @ [0.25, 0.25]))


def test_contains_undeformed():
    element = make_element()
    assert element.contains_undeformed(0.2, 0.2)
    assert element.contains_undeformed(0.0, 0.5)  # on an edge
    assert not element.contains_undeformed(0.6, 0.6)
    assert not element.contains_undeformed(-0.1, 0.5)


def test_open_side_drops_one_edge():
    element = make_element()
    # beyond the hypotenuse, which lies across from corner 0
    assert element.contains_undeformed(0.6, 0.6, open_side=0)
    assert not element.contains_undeformed(0.6, 0.6, open_side=1)
    assert not element.contains_undeformed(-0.1, 0.5, open_side=0)


def test_adjacency_needs_a_shared_edge():
    a, b, c, d, e = (Vertex(0, 0, x, y) for x, y in [(0, 0), (1, 0), (0, 1), (1, 1), (2, 2)])
    first = Element([a, b, c], RIGHT_TRIANGLE.copy())
    second = Element([b, d, c], np.array([[1.0, 0.0], [1.0, 1.0], [0.0, 1.0]]))
    third = Element([d, e, Vertex(0, 0, 1, 2)], np.array([[1.0, 1.0], [2.0, 2.0], [1.0, 2.0]]))
    assert first.is_adjacent_to(second)
    assert second.is_adjacent_to(first)
    assert not second.is_adjacent_to(third)  # only the corner d is shared
    assert not first.is_adjacent_to(third)


def test_corner_of_and_centroid():
    element = make_element(np.array([[0.0, 0.0], [3.0, 0.0], [0.0, 3.0]]))
    assert element.corner_of(element.vertices[2]) == 2
    np.testing.assert_allclose(element.centroid(), [1.0, 1.0])
