"""
Degeneracy resolution by codiagonalization.

A numerical eigensolver returns an arbitrary orthonormal basis inside a
degenerate eigenspace, so the basis can rotate freely between neighboring
mesh vertices and break the overlap test used to connect bands. Here such
eigenspaces are rotated into the eigenbasis of an auxiliary Hermitian
operator restricted to the subspace, which varies smoothly with the
parameter point.

Classes:
    codiagonalizer: Shared resolution loop and per-vertex scratch state
    velocity_codiagonalizer: Auxiliary operators are velocities along integer directions
    random_codiagonalizer: Auxiliary operator is the Hamiltonian plus a seeded random perturbation

Functions:
    has_degeneracies: Whether any two consecutive sorted eigenvalues are degenerate
    find_degeneracies: Maximal runs of degenerate consecutive eigenvalues
    codiagonalize: Rotate one degenerate subspace if the auxiliary operator lifts it
    perturb: Add a reproducible random perturbation to a matrix buffer in place
"""

import constants
from constants import List, Optional, Sequence, Iterable, Any, Tuple
from utils import is_sorted, integer_directions

# Configure logging
logger = constants.logging.getLogger(__name__)


def has_degeneracies(sorted_values: Sequence[float], tol: float = constants.DEGENERACY_TOLERANCE) -> bool:
    """Return True if two consecutive entries of `sorted_values` differ by less than `tol`."""
    values = constants.np.asarray(sorted_values)
    return bool(constants.np.any(constants.np.abs(constants.np.diff(values)) < tol))


def find_degeneracies(sorted_values: Sequence[float], tol: float = constants.DEGENERACY_TOLERANCE,
                      ranges: Optional[List[range]] = None) -> List[range]:
    """
    Find maximal runs of consecutive eigenvalues closer than `tol`.

    A run grows while each gap to the next value stays below `tol`; values
    are not grouped transitively beyond adjacency.

    Args:
        sorted_values: Eigenvalues in ascending order.
        tol (float): Degeneracy tolerance.
        ranges: Optional list reused as output storage (cleared first).

    Returns:
        List[range]: Index ranges of length >= 2.
    """
    if ranges is None:
        ranges = []
    ranges.clear()
    values = constants.np.asarray(sorted_values)
    start = 0
    for i in range(1, len(values) + 1):
        if i < len(values) and abs(values[i] - values[i - 1]) < tol:
            continue
        if i - start > 1:
            ranges.append(range(start, i))
        start = i
    return ranges


def codiagonalize(vectors: constants.np.ndarray, auxiliary: Any, degrange: range) -> bool:
    """
    Try to lift the degeneracy of one subspace with an auxiliary operator.

    The auxiliary operator is projected onto the columns `degrange` of
    `vectors`. If the projected block has a non-degenerate spectrum, those
    columns are rotated in place into its eigenbasis.

    Args:
        vectors (np.ndarray): Eigenvectors as columns, modified in place on success.
        auxiliary: Dense or sparse auxiliary operator.
        degrange (range): Columns spanning the degenerate subspace.

    Returns:
        bool: True if the subspace was resolved.
    """
    columns = slice(degrange.start, degrange.stop)
    subspace = vectors[:, columns]
    block = subspace.conj().T @ constants.np.asarray(auxiliary @ subspace)
    block = 0.5 * (block + block.conj().T)
    block_values, block_vectors = constants.np.linalg.eigh(block)
    success = not has_degeneracies(block_values)
    if success:
        vectors[:, columns] = subspace @ block_vectors
    return success


def perturb(buffer: Any, seed: int, amplitude: float = constants.PERTURBATION_AMPLITUDE) -> Any:
    """
    Add amplitude * U[0, 1) to every stored entry of `buffer`, in place.

    The generator is reseeded on every call, so the same buffer contents
    always receive the same perturbation.
    """
    rng = constants.np.random.default_rng(seed)
    data = buffer.data if constants.issparse(buffer) else buffer
    data += amplitude * rng.random(data.shape)
    return buffer


class codiagonalizer:
    """
    Base class holding the resolution loop and its scratch state.

    Subclasses provide the ordered sequence of auxiliary operators through
    `num_matrices` and `codiag_matrix`. The scratch lists are rewritten for
    every vertex, so an instance must not be shared between workers.

    Attributes:
        operator: Operator source the auxiliary operators are derived from.
        degranges (List[range]): Degenerate ranges found at the last vertex.
        success (List[bool]): Whether each of those ranges was resolved.
        last_resolved (bool): Whether every range of the last vertex was resolved.
        degraded_count (int): Number of vertices left with unresolved ranges.
    """
    def __init__(self, operator: Any) -> None:
        self.operator = operator
        self.degranges: List[range] = []
        self.success: List[bool] = []
        self.last_resolved: bool = True
        self.degraded_count: int = 0

    def num_matrices(self) -> int:
        raise NotImplementedError

    def codiag_matrix(self, n: int, buffer: Any, point: Sequence[float]) -> Any:
        raise NotImplementedError

    def resolve_degeneracies(self, values: constants.np.ndarray, vectors: constants.np.ndarray,
                             point: Sequence[float], buffer: Any) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Canonicalize the basis of every degenerate eigenspace at one vertex.

        Candidate auxiliary operators are tried in order until every range
        is resolved or the candidates run out. Unresolved ranges keep their
        basis; this is counted in `degraded_count` but is not an error.

        Args:
            values (np.ndarray): Eigenvalues, ascending. Left unchanged.
            vectors (np.ndarray): Eigenvectors as columns, rotated in place.
            point: Parameter point of the vertex.
            buffer: Matrix buffer that may be overwritten with auxiliary operators.

        Returns:
            Tuple[np.ndarray, np.ndarray]: The same values and vectors.

        Raises:
            constants.precondition_error: If `values` is not sorted.
        """
        if not is_sorted(values):
            raise constants.precondition_error("Unsorted eigenvalues")
        self.success.clear()
        if not has_degeneracies(values):
            self.degranges.clear()
            self.last_resolved = True
            return values, vectors

        find_degeneracies(values, ranges=self.degranges)
        self.success.extend([False] * len(self.degranges))
        for n in range(self.num_matrices()):
            auxiliary = self.codiag_matrix(n, buffer, point)
            for i, degrange in enumerate(self.degranges):
                if not self.success[i]:
                    self.success[i] = codiagonalize(vectors, auxiliary, degrange)
            logger.debug(f"Codiagonalization candidate {n}: {sum(self.success)}/{len(self.success)} ranges resolved")
            if all(self.success):
                break

        self.last_resolved = all(self.success)
        if not self.last_resolved:
            self.degraded_count += 1
            unresolved = [len(r) for r, ok in zip(self.degranges, self.success) if not ok]
            logger.warning(f"Codiagonalization failed at point {tuple(constants.np.round(point, 6))}: "
                           f"{len(unresolved)} degenerate ranges of sizes {unresolved} left unresolved")
        return values, vectors


class velocity_codiagonalizer(codiagonalizer):
    """
    Uses velocity operators dH/dv along integer directions v, shortest first.

    Attributes:
        directions (List[Tuple[int, ...]]): Candidate directions in trial order.
    """
    def __init__(self, operator: Any, direction_elements: Iterable[int] = constants.DEFAULT_DIRECTION_ELEMENTS,
                 only_positive: bool = True) -> None:
        super().__init__(operator)
        if operator.lattice_dimension == 0:
            logger.warning("Operator has no parameter dependence; velocity codiagonalization has no directions")
            self.directions = []
        else:
            self.directions = integer_directions(operator.lattice_dimension, direction_elements, only_positive)

    def num_matrices(self) -> int:
        return len(self.directions)

    def codiag_matrix(self, n: int, buffer: Any, point: Sequence[float]) -> Any:
        return self.operator.fill_velocity(buffer, point, self.directions[n])


class random_codiagonalizer(codiagonalizer):
    """
    Uses the operator plus a seeded random perturbation as the single auxiliary operator.

    The perturbation is reproducible at a given parameter point, but bases
    chosen at different points are not guaranteed to be comparable.

    Attributes:
        seed (int): Seed of the perturbation.
        amplitude (float): Scale of the perturbation.
    """
    def __init__(self, operator: Any, seed: int = constants.DEFAULT_RANDOM_SEED,
                 amplitude: float = constants.PERTURBATION_AMPLITUDE) -> None:
        super().__init__(operator)
        self.seed = seed
        self.amplitude = amplitude

    def num_matrices(self) -> int:
        return 1

    def codiag_matrix(self, n: int, buffer: Any, point: Sequence[float]) -> Any:
        self.operator.fill(buffer, point)
        return perturb(buffer, self.seed, self.amplitude)


def make_codiagonalizer(kind: Optional[str], operator: Any,
                        direction_elements: Iterable[int] = constants.DEFAULT_DIRECTION_ELEMENTS,
                        seed: int = constants.DEFAULT_RANDOM_SEED) -> Optional[codiagonalizer]:
    """
    Build a codiagonalizer by name ('velocity', 'random') or return None.

    Raises:
        constants.configuration_error: If `kind` is not recognized.
    """
    if kind is None:
        return None
    if kind == 'velocity':
        return velocity_codiagonalizer(operator, direction_elements)
    if kind == 'random':
        return random_codiagonalizer(operator, seed)
    raise constants.configuration_error(f"Unknown codiagonalizer '{kind}', choose from {list(constants.CODIAGONALIZER_KINDS)}")
