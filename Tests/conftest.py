"""
Pytest configuration and fixtures for band structure tests.

This module provides common operators, meshes and test utilities
for the entire test suite.
"""

import pytest
import numpy as np
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import constants
from operators import bloch_operator, direct_sum
from mesh import parameter_mesh


def two_level_operator():
    """Constant 2x2 operator diag(-1, +1) on a 1D parameter space."""
    return bloch_operator({(0,): np.diag([-1.0, 1.0])})


def chain_operator(hopping=1.0, onsite=0.0):
    """Single-orbital chain, H(k) = onsite + 2 hopping cos(k)."""
    return bloch_operator({(0,): [[onsite]], (1,): [[hopping]], (-1,): [[hopping]]})


def dimer_chain_operator(t1=1.0, t2=0.5):
    """Two-site chain with alternating hoppings (SSH), two non-degenerate bands away from t1 = t2."""
    h0 = np.array([[0.0, t1], [t1, 0.0]])
    h1 = np.array([[0.0, 0.0], [t2, 0.0]])
    return bloch_operator({(0,): h0, (1,): h1, (-1,): h1.T})


def rotating_two_level_operator():
    """H(k) = cos(k) sigma_z + sin(k) sigma_x: energies are always -1 and +1 but the eigenvectors rotate with k."""
    h1 = 0.5 * np.array([[1.0, -1j], [-1j, -1.0]])
    return bloch_operator({(1,): h1, (-1,): h1.conj().T})


def crossing_operator():
    """H(k) = diag(2 cos k, -2 cos k): the two bands cross at k = pi/2."""
    h1 = np.diag([1.0, -1.0])
    return bloch_operator({(1,): h1, (-1,): h1})


def supercell_chain_operator(sites=60, block_size=1):
    """Disordered chain supercell large enough for the iterative solvers."""
    onsite = np.linspace(-1.0, 1.0, sites) ** 3
    h0 = np.diag(onsite) + np.diag(np.ones(sites - 1), 1) + np.diag(np.ones(sites - 1), -1)
    h1 = np.zeros((sites, sites))
    h1[0, sites - 1] = 1.0
    return bloch_operator({(0,): h0, (1,): h1, (-1,): h1.T}, block_size=block_size)


def closest_levels(matrix, levels, origin):
    """Reference eigenvalues: the `levels` closest to `origin`, ascending."""
    values = np.linalg.eigvalsh(matrix)
    return np.sort(values[np.argsort(np.abs(values - origin))[:levels]])


def square_lattice_operator(hopping=1.0):
    """Single-orbital square lattice, H(k) = 2 hopping (cos kx + cos ky)."""
    return bloch_operator({(0, 0): [[0.0]], (1, 0): [[hopping]], (-1, 0): [[hopping]],
                           (0, 1): [[hopping]], (0, -1): [[hopping]]})


def grid_mesh(points_per_side=4, length=1.0):
    """Triangulated square grid of points in [0, length]^2."""
    xs = np.linspace(0.0, length, points_per_side)
    vertices = [(x, y) for x in xs for y in xs]
    simplices = []
    for i in range(points_per_side - 1):
        for j in range(points_per_side - 1):
            a = i * points_per_side + j
            b = a + 1
            c = a + points_per_side
            d = c + 1
            simplices.append((a, b, d))
            simplices.append((a, c, d))
    return parameter_mesh(vertices, simplices)


@pytest.fixture
def diagonal_operator():
    return two_level_operator()


@pytest.fixture
def chain():
    return chain_operator()


@pytest.fixture
def dimer_chain():
    return dimer_chain_operator()


@pytest.fixture
def degenerate_dimer_chain():
    """Direct sum of two identical dimer chains: every level is exactly twofold degenerate."""
    op = dimer_chain_operator()
    return direct_sum(op, op)


@pytest.fixture
def three_point_mesh():
    return parameter_mesh.chain([0.0, 0.5, 1.0])


@pytest.fixture
def k_path():
    return parameter_mesh.chain(np.linspace(-np.pi, np.pi, 25))


@pytest.fixture
def square_grid():
    return grid_mesh()


# Test markers for categorization
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for workflows")
    config.addinivalue_line("markers", "numerical: Numerical stability tests")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


# Custom test utilities
class TestUtils:
    """Utility functions for tests."""

    @staticmethod
    def assert_eigenvalues_sorted(eigenvalues):
        """Assert that eigenvalues are sorted in ascending order."""
        assert np.all(eigenvalues[:-1] <= eigenvalues[1:]), "Eigenvalues are not sorted"

    @staticmethod
    def assert_orthonormal(vectors, atol=1e-10):
        """Assert that the columns of `vectors` are orthonormal."""
        gram = vectors.conj().T @ vectors
        assert np.allclose(gram, np.eye(gram.shape[0]), atol=atol), "Vectors are not orthonormal"


@pytest.fixture
def test_utils():
    """Provide test utility functions."""
    return TestUtils
