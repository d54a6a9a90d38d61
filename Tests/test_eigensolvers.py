#!/usr/bin/env python3
"""
Unit tests for eigensolvers.py.

Tests the backend selection policy, every backend against a dense
reference, and the failure modes of backend construction and solving.
"""

import unittest
from unittest import mock
import pytest
import numpy as np
from scipy.sparse import block_diag
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import constants
import eigensolvers
from eigensolvers import (select_solver_kind, make_solver, dense_exact_solver,
                          sparse_shift_invert_solver, sparse_krylov_solver)
from utils import orthonormality_error, is_sorted
from conftest import closest_levels


def tridiagonal_matrix(size=100):
    """Sparse Hermitian test matrix with a non-degenerate spectrum."""
    diagonal = np.linspace(-2.0, 2.0, size) ** 3
    off = 0.05 * np.exp(0.3j * np.arange(size - 1))
    dense = np.diag(diagonal).astype(complex) + np.diag(off, 1) + np.diag(off.conj(), -1)
    return constants.csr_matrix(dense)


@pytest.mark.unit
class TestSolverSelection(unittest.TestCase):
    """Test the pure backend selection policy."""

    def test_small_operators_are_dense(self):
        self.assertEqual(select_solver_kind(10, 2, 'scalar'), 'dense_exact')
        self.assertEqual(select_solver_kind(49, 1, 'block'), 'dense_exact')

    def test_full_spectrum_is_dense(self):
        self.assertEqual(select_solver_kind(1000, None, 'scalar'), 'dense_exact')

    def test_large_fraction_is_dense(self):
        self.assertEqual(select_solver_kind(100, 11, 'scalar'), 'dense_exact')
        self.assertEqual(select_solver_kind(100, 10, 'scalar'), 'sparse_shift_invert')

    def test_iterative_by_element_kind(self):
        self.assertEqual(select_solver_kind(200, 6, 'scalar'), 'sparse_shift_invert')
        self.assertEqual(select_solver_kind(200, 6, 'block'), 'sparse_krylov')

    def test_unknown_element_kind(self):
        with self.assertRaises(constants.configuration_error):
            select_solver_kind(200, 6, 'quaternion')


@pytest.mark.unit
class TestMakeSolver(unittest.TestCase):

    def test_kinds(self):
        for kind in constants.SOLVER_KINDS:
            solver = make_solver(kind)
            self.assertEqual(solver.kind, kind)

    def test_options_are_kept(self):
        solver = make_solver('sparse_shift_invert', tol=1e-12)
        self.assertEqual(solver.options, {'tol': 1e-12})

    def test_unknown_kind(self):
        with self.assertRaises(constants.configuration_error) as context:
            make_solver('quantum_annealer')
        for kind in constants.SOLVER_KINDS:
            self.assertIn(kind, str(context.exception))

    def test_missing_backend_module(self):
        with mock.patch.object(eigensolvers, 'SCIPY_SPARSE_LINALG_AVAILABLE', False):
            with self.assertRaises(constants.backend_unavailable_error) as context:
                make_solver('sparse_krylov')
            self.assertIn('scipy.sparse.linalg', str(context.exception))
            # The dense backend does not depend on scipy.sparse.linalg
            self.assertEqual(make_solver('dense_exact').kind, 'dense_exact')


@pytest.mark.numerical
class TestDenseExactSolver(unittest.TestCase):

    def setUp(self):
        self.solver = dense_exact_solver()
        self.matrix = np.array([[2.0, 1.0], [1.0, 2.0]], dtype=complex)

    def test_full_spectrum(self):
        values, vectors = self.solver.solve(self.matrix, 2)
        np.testing.assert_allclose(values, [1.0, 3.0], atol=1e-12)
        self.assertLess(orthonormality_error(vectors), 1e-12)
        np.testing.assert_allclose(self.matrix @ vectors, vectors * values, atol=1e-12)

    def test_levels_closest_to_origin(self):
        values, vectors = self.solver.solve(self.matrix, 1, origin=2.9)
        np.testing.assert_allclose(values, [3.0], atol=1e-12)
        self.assertEqual(vectors.shape, (2, 1))

    def test_sparse_input(self):
        values, _ = self.solver.solve(constants.csr_matrix(self.matrix), 2)
        np.testing.assert_allclose(values, [1.0, 3.0], atol=1e-12)

    def test_results_are_fresh_arrays(self):
        values, vectors = self.solver.solve(self.matrix, 2)
        self.matrix[:] = 0.0
        np.testing.assert_allclose(values, [1.0, 3.0], atol=1e-12)
        self.assertTrue(vectors.flags.owndata or vectors.base is not self.matrix)

    def test_non_hermitian(self):
        solver = dense_exact_solver(hermitian=False)
        values, _ = solver.solve(np.array([[1.0, 5.0], [0.0, -1.0]]), 2)
        np.testing.assert_allclose(values, [-1.0, 1.0], atol=1e-12)

    def test_options_reach_both_lapack_calls(self):
        matrix = np.array([[1.0, 5.0], [0.0, -1.0]])
        with mock.patch.object(np.linalg, 'eig', return_value=(np.array([1.0, -1.0]), np.eye(2))) as eig:
            dense_exact_solver(hermitian=False, marker=1).solve(matrix, 2)
        self.assertEqual(eig.call_args.kwargs, {'marker': 1})
        with mock.patch.object(np.linalg, 'eigh', return_value=(np.array([-1.0, 1.0]), np.eye(2))) as eigh:
            dense_exact_solver(UPLO='U').solve(self.matrix, 2)
        self.assertEqual(eigh.call_args.kwargs, {'UPLO': 'U'})


@pytest.mark.numerical
class TestSparseSolvers(unittest.TestCase):
    """Compare iterative backends with the dense reference."""

    def setUp(self):
        self.matrix = tridiagonal_matrix()
        self.origin = 0.0123
        self.levels = 6
        self.reference = closest_levels(self.matrix.toarray(), self.levels, self.origin)

    def check(self, solver):
        values, vectors = solver.solve(self.matrix, self.levels, self.origin)
        self.assertTrue(is_sorted(values))
        np.testing.assert_allclose(values, self.reference, atol=1e-8)
        self.assertEqual(vectors.shape, (100, self.levels))
        self.assertLess(orthonormality_error(vectors), 1e-8)
        residual = self.matrix @ vectors - vectors * values
        self.assertLess(np.abs(residual).max(), 1e-7)

    def test_shift_invert(self):
        self.check(sparse_shift_invert_solver())

    def test_krylov(self):
        self.check(sparse_krylov_solver())

    def test_singular_shift(self):
        """Shifting onto an exact eigenvalue makes the factorization singular."""
        diagonal = constants.csr_matrix(np.diag(np.arange(100.0)).astype(complex))
        for solver in (sparse_shift_invert_solver(), sparse_krylov_solver()):
            with self.assertRaises(constants.eigensolver_error):
                solver.solve(diagonal, 4, origin=0.0)


@pytest.mark.numerical
class TestDegenerateSparseSpectra(unittest.TestCase):
    """Iterative backends on a spectrum where every level is exactly twofold degenerate."""

    def setUp(self):
        single = tridiagonal_matrix()
        self.matrix = block_diag([single, single], format='csr')
        self.origin = 0.0123
        self.levels = 6
        self.reference = closest_levels(self.matrix.toarray(), self.levels, self.origin)

    def check(self, solver):
        values, vectors = solver.solve(self.matrix, self.levels, self.origin)
        np.testing.assert_allclose(values, self.reference, atol=1e-8)
        self.assertLess(orthonormality_error(vectors), 1e-8)
        residual = self.matrix @ vectors - vectors * values
        self.assertLess(np.abs(residual).max(), 1e-7)

    def test_shift_invert_returns_orthonormal_basis(self):
        self.check(sparse_shift_invert_solver())

    def test_krylov_returns_orthonormal_basis(self):
        self.check(sparse_krylov_solver())


@pytest.mark.unit
class TestOrthonormalize(unittest.TestCase):

    def test_skewed_basis_of_a_subspace(self):
        basis = np.array([[1.0, 0.6], [0.0, 0.8], [0.0, 0.0]], dtype=complex)
        result = eigensolvers._orthonormalize(basis)
        self.assertLess(orthonormality_error(result), 1e-14)
        # Same span, and the first column keeps its direction and phase
        projector = result @ result.conj().T
        np.testing.assert_allclose(projector @ basis, basis, atol=1e-14)
        np.testing.assert_allclose(result[:, 0], basis[:, 0], atol=1e-14)

    def test_phases_are_kept(self):
        basis = np.diag([1j, -1.0, np.exp(0.4j)])
        np.testing.assert_allclose(eigensolvers._orthonormalize(basis), basis, atol=1e-14)

    def test_dependent_columns(self):
        basis = np.array([[1.0, 2.0], [1.0, 2.0]], dtype=complex)
        with self.assertRaises(constants.eigensolver_error):
            eigensolvers._orthonormalize(basis)


if __name__ == '__main__':
    unittest.main()
