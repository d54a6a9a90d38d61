"""
Utility functions for the band structure project.

This module contains standalone numerical utilities used across multiple
modules. Keeping them here avoids circular dependencies between the
operator, codiagonalizer and diagonalizer modules.

Functions:
    is_hermitian: Hermiticity check for dense or sparse matrices
    is_sorted: Ascending order check for eigenvalue sequences
    is_positive: Sign convention for integer direction vectors
    integer_directions: Enumeration of distinct integer directions
    orthonormality_error: Deviation of a set of column vectors from orthonormality
"""

import constants
from constants import List, Tuple, Sequence, Iterable, Any

# Configure logging
logger = constants.logging.getLogger(__name__)


def is_hermitian(matrix: Any, rtol: float = constants.HERMITICITY_TOLERANCE) -> bool:
    """
    Check if a dense or sparse matrix is Hermitian within numerical tolerance.

    Args:
        matrix: Square numpy array or scipy sparse matrix.
        rtol (float): Relative tolerance for comparison.

    Returns:
        bool: True if matrix is Hermitian, False otherwise.

    Raises:
        constants.dimension_mismatch_error: If the matrix is not two dimensional.
    """
    if matrix.ndim != 2:
        raise constants.dimension_mismatch_error(f"Expected a matrix, got an array of dimension {matrix.ndim}")
    if matrix.shape[0] != matrix.shape[1]:
        return False
    if constants.issparse(matrix):
        matrix = constants.csr_matrix(matrix)
        if matrix.nnz == 0:
            return True
        diff = matrix - matrix.conj().T.tocsr()
        max_diff = constants.np.abs(diff.data).max() if diff.nnz > 0 else 0.0
        max_val = constants.np.abs(matrix.data).max()
    else:
        matrix = constants.np.asarray(matrix)
        if matrix.size == 0:
            return True
        max_diff = constants.np.abs(matrix - matrix.conj().T).max()
        max_val = constants.np.abs(matrix).max()
    return max_diff <= rtol * max(max_val, 1.0)


def is_sorted(values: Sequence[float]) -> bool:
    """Return True if `values` is in ascending order."""
    values = constants.np.asarray(values)
    return bool(constants.np.all(values[:-1] <= values[1:]))


def is_positive(direction: Sequence[int]) -> bool:
    """
    Return True if the first non-zero component of `direction` is positive.

    The zero vector is not positive.
    """
    for component in direction:
        if component != 0:
            return component > 0
    return False


def integer_directions(dimension: int, elements: Iterable[int], only_positive: bool = True) -> List[Tuple[int, ...]]:
    """
    Enumerate distinct integer directions in a `dimension`-dimensional space.

    Every vector with components drawn from `elements` is generated, the zero
    vector is dropped, candidates are sorted by Euclidean norm so that short
    directions come first, and of several vectors pointing in the same
    direction only the shortest is kept.

    Args:
        dimension (int): Dimension of the parameter space.
        elements (Iterable[int]): Allowed integer components, e.g. range(-5, 6).
        only_positive (bool): Keep only vectors whose first non-zero component is positive.

    Returns:
        List[Tuple[int, ...]]: Directions, shortest first.
    """
    constants.validate_positive_number(dimension, "dimension")
    elements = sorted(set(int(e) for e in elements))
    grids = constants.np.meshgrid(*([constants.np.array(elements)] * dimension), indexing="ij")
    candidates = [tuple(int(v) for v in vector) for vector in constants.np.stack(grids, axis=-1).reshape(-1, dimension)]
    # Stable sort: equal norms keep enumeration order
    candidates.sort(key=lambda v: constants.np.linalg.norm(v))

    directions = []
    seen = set()
    for vector in candidates:
        if not any(vector):
            continue
        if only_positive and not is_positive(vector):
            continue
        unit = constants.np.array(vector, dtype=float)
        unit /= constants.np.linalg.norm(unit)
        key = tuple(constants.np.round(unit, 12))
        if key in seen:
            continue
        seen.add(key)
        directions.append(vector)
    return directions


def orthonormality_error(vectors: constants.np.ndarray) -> float:
    """
    Largest deviation of the Gram matrix of the columns of `vectors` from the identity.

    Args:
        vectors (np.ndarray): Array of shape (dimension, count).

    Returns:
        float: max |V^dagger V - 1|.
    """
    vectors = constants.np.asarray(vectors)
    gram = vectors.conj().T @ vectors
    return float(constants.np.abs(gram - constants.np.eye(gram.shape[0])).max()) if gram.size else 0.0
