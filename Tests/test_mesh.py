#!/usr/bin/env python3
"""
Unit tests for mesh.py and regions.py.

Tests mesh construction and validation, symmetric adjacency, index
remapping of sub-meshes and region predicates.
"""

import unittest
import pytest
import numpy as np
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import constants
from mesh import parameter_mesh
from regions import region
from conftest import grid_mesh


@pytest.mark.unit
class TestChainMesh(unittest.TestCase):
    """Test one-dimensional path meshes."""

    def setUp(self):
        self.mesh = parameter_mesh.chain([0.0, 0.5, 1.0, 1.5])

    def test_counts(self):
        self.assertEqual(self.mesh.vertex_count(), 4)
        self.assertEqual(self.mesh.dimension, 1)
        self.assertEqual(self.mesh.embedding_dimension, 1)
        self.assertEqual(self.mesh.vertices().shape, (4, 1))

    def test_neighbors(self):
        self.assertEqual(self.mesh.neighbors(0), [1])
        self.assertEqual(self.mesh.neighbors(1), [0, 2])
        self.assertEqual(self.mesh.neighbors(3), [2])

    def test_edges_and_simplices(self):
        self.assertEqual(self.mesh.edges(), [(0, 1), (1, 2), (2, 3)])
        self.assertEqual(self.mesh.simplices(), [(0, 1), (1, 2), (2, 3)])
        self.assertEqual(self.mesh.simplices(1), self.mesh.simplices())

    def test_other_simplex_dimension(self):
        with self.assertRaises(constants.dimension_mismatch_error):
            self.mesh.simplices(2)

    def test_adjacency_is_symmetric(self):
        adjacency = self.mesh.adjacency_matrix().toarray()
        np.testing.assert_array_equal(adjacency, adjacency.T)
        self.assertEqual(int(adjacency.sum()), 6)

    def test_single_point_chain(self):
        mesh = parameter_mesh.chain([0.0])
        self.assertEqual(mesh.vertex_count(), 1)
        self.assertEqual(mesh.dimension, 1)
        self.assertEqual(mesh.simplices(), [])

    def test_multidimensional_points(self):
        mesh = parameter_mesh.chain([(0.0, 0.0), (0.1, 0.2), (0.2, 0.4)])
        self.assertEqual(mesh.dimension, 1)
        self.assertEqual(mesh.embedding_dimension, 2)

    def test_repr(self):
        self.assertIn("1-dimensional manifold", repr(self.mesh))


@pytest.mark.unit
class TestMeshValidation(unittest.TestCase):
    """Test rejection of malformed meshes."""

    def test_vertices_of_different_dimension(self):
        with self.assertRaises(constants.dimension_mismatch_error):
            parameter_mesh([(0.0,), (0.0, 1.0)], [(0, 1)])

    def test_out_of_range_simplex(self):
        with self.assertRaises(constants.mesh_construction_error):
            parameter_mesh([(0.0,), (1.0,)], [(0, 2)])

    def test_repeated_vertex_in_simplex(self):
        with self.assertRaises(constants.mesh_construction_error):
            parameter_mesh([(0.0,), (1.0,)], [(1, 1)])

    def test_simplices_of_different_size(self):
        with self.assertRaises(constants.mesh_construction_error):
            parameter_mesh([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)], [(0, 1), (0, 1, 2)])

    def test_out_of_range_edge(self):
        with self.assertRaises(constants.mesh_construction_error):
            parameter_mesh([(0.0,), (1.0,)], [], edges=[(0, 5)])

    def test_non_numeric_vertices(self):
        with self.assertRaises(constants.mesh_construction_error):
            parameter_mesh([("a", "b")], [])

    def test_explicit_edges_are_symmetrized(self):
        mesh = parameter_mesh([(0.0,), (1.0,), (2.0,)], [], edges=[(2, 0), (0, 2), (1, 1)])
        self.assertEqual(mesh.edges(), [(0, 2)])
        self.assertEqual(mesh.neighbors(2), [0])
        self.assertEqual(mesh.neighbors(1), [])


@pytest.mark.unit
class TestTriangulatedMesh(unittest.TestCase):

    def setUp(self):
        self.mesh = grid_mesh(points_per_side=3)

    def test_dimension(self):
        self.assertEqual(self.mesh.dimension, 2)
        self.assertEqual(len(self.mesh.simplices()), 8)

    def test_edges_from_simplices(self):
        # 6 horizontal, 6 vertical and 4 diagonal edges
        self.assertEqual(len(self.mesh.edges()), 16)
        self.assertEqual(self.mesh.neighbors(4), [0, 1, 3, 5, 7, 8])


@pytest.mark.unit
class TestSubmesh(unittest.TestCase):
    """Test index remapping when vertices are removed."""

    def setUp(self):
        self.mesh = parameter_mesh.chain([0.0, 1.0, 2.0, 3.0, 4.0])

    def test_remapping(self):
        sub = self.mesh.submesh([True, True, False, True, True])
        self.assertEqual(sub.vertex_count(), 4)
        np.testing.assert_array_equal(sub.vertices().ravel(), [0.0, 1.0, 3.0, 4.0])
        self.assertEqual(sub.simplices(), [(0, 1), (2, 3)])
        self.assertEqual(sub.edges(), [(0, 1), (2, 3)])
        self.assertEqual(sub.dimension, 1)

    def test_isolated_vertices_keep_dimension(self):
        sub = self.mesh.submesh([True, False, True, False, True])
        self.assertEqual(sub.simplices(), [])
        self.assertEqual(sub.dimension, 1)

    def test_wrong_mask_length(self):
        with self.assertRaises(constants.dimension_mismatch_error):
            self.mesh.submesh([True, False])

    def test_restrict(self):
        sub = grid_mesh(points_per_side=5, length=2.0).restrict(region.preset('circle', 1.0))
        for vertex in sub.vertices():
            self.assertLessEqual(np.linalg.norm(vertex), 1.0 + 1e-9)
        self.assertEqual(sub.vertex_count(), 6)
        self.assertEqual(sub.dimension, 2)


@pytest.mark.unit
class TestRegions(unittest.TestCase):
    """Test region predicates and presets."""

    def test_circle(self):
        circle = region.preset('circle', 2.0)
        self.assertTrue(circle((1.0, 1.0)))
        self.assertTrue(circle((2.0, 0.0)))
        self.assertFalse(circle((2.0, 0.1)))

    def test_rectangle(self):
        rectangle = region.preset('rectangle', (2.0, 4.0))
        self.assertTrue(rectangle((1.0, -2.0)))
        self.assertFalse(rectangle((1.1, 0.0)))

    def test_three_dimensional_presets(self):
        self.assertTrue(region.preset('sphere', 1.0)((0.5, 0.5, 0.5)))
        self.assertFalse(region.preset('cube', 1.0)((0.5, 0.5, 0.6)))
        self.assertTrue(region.preset('spheroid')((5.0, 5.0, 5.0)))
        self.assertEqual(region.preset('cuboid').dimension, 3)

    def test_dimension_mismatch(self):
        with self.assertRaises(constants.dimension_mismatch_error):
            region.preset('circle', 1.0)((0.0, 0.0, 0.0))

    def test_unknown_preset(self):
        with self.assertRaises(constants.configuration_error):
            region.preset('torus')

    def test_wrong_number_of_radii(self):
        with self.assertRaises(constants.dimension_mismatch_error):
            region.preset('ellipse', (1.0, 2.0, 3.0))

    def test_negative_size(self):
        with self.assertRaises(constants.configuration_error):
            region.preset('square', -1.0)

    def test_custom_predicate(self):
        half_line = region(1, lambda r: r[0] >= 0)
        self.assertTrue(half_line(0.5))
        self.assertFalse(half_line(-0.5))
        with self.assertRaises(constants.configuration_error):
            region(1, "not callable")


if __name__ == '__main__':
    unittest.main()
