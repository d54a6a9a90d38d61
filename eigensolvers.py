"""
Eigensolver backends for the diagonalizer.

Three backend variants are provided:

Classes:
    dense_exact_solver: LAPACK via numpy.linalg on a dense array
    sparse_shift_invert_solver: ARPACK shift-invert (scipy eigsh/eigs with sigma) for scalar operators
    sparse_krylov_solver: Arnoldi iteration on an explicit shift-invert map (sparse LU) for block operators

Functions:
    select_solver_kind: Pure backend selection policy
    make_solver: Instantiate a backend, failing fast if its module is missing

Every backend returns `levels` eigenvalues sorted ascending together with
their eigenvectors as columns, orthonormal for Hermitian problems.
Failures are not retried.
"""

import constants
from constants import Tuple, Optional, Dict, Any
from utils import orthonormality_error

try:
    from scipy.sparse.linalg import eigsh, eigs, splu, LinearOperator, ArpackNoConvergence
    SCIPY_SPARSE_LINALG_AVAILABLE = True
except ImportError:
    SCIPY_SPARSE_LINALG_AVAILABLE = False

# Configure logging
logger = constants.logging.getLogger(__name__)


def select_solver_kind(dimension: int, levels: Optional[int], element_kind: str) -> str:
    """
    Decide which backend diagonalizes an operator.

    Small operators, requests for a large fraction of the spectrum, and
    requests without an explicit level count are diagonalized densely.
    Otherwise scalar operators use ARPACK shift-invert and block operators
    use a Krylov method on a factorized shift-invert map.

    Args:
        dimension (int): Size of the operator matrix.
        levels (Optional[int]): Number of requested eigenpairs, None for all.
        element_kind (str): 'scalar' or 'block'.

    Returns:
        str: One of constants.SOLVER_KINDS.

    Raises:
        constants.configuration_error: If the element kind is not recognized.
    """
    if element_kind not in constants.ELEMENT_KINDS:
        raise constants.configuration_error(f"Could not establish diagonalizer method for element kind '{element_kind}'")
    if dimension < constants.DENSE_SIZE_THRESHOLD or levels is None or levels / dimension > constants.DENSE_LEVEL_FRACTION:
        return 'dense_exact'
    if element_kind == 'scalar':
        return 'sparse_shift_invert'
    return 'sparse_krylov'


def _sort_pairs(values: constants.np.ndarray, vectors: constants.np.ndarray) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
    """Sort eigenpairs by ascending real eigenvalue and return owned copies."""
    values = constants.np.real(values)
    order = constants.np.argsort(values, kind='stable')
    return constants.np.array(values[order], dtype=float), constants.np.array(vectors[:, order], dtype=complex)


def _closest_levels(values: constants.np.ndarray, levels: int, origin: float) -> constants.np.ndarray:
    """Indices of the `levels` eigenvalues closest to `origin`."""
    return constants.np.argsort(constants.np.abs(constants.np.real(values) - origin), kind='stable')[:levels]


def _orthonormalize(vectors: constants.np.ndarray) -> constants.np.ndarray:
    """
    Orthonormalize eigenvectors of a Hermitian problem, keeping the phase of each column.

    ARPACK only returns orthogonal vectors up to round-off, and inside a
    degenerate eigenspace not even that. A QR factorization replaces each
    run of degenerate columns by an orthonormal basis of the same span.
    Columns should be sorted by eigenvalue first so that degenerate runs
    are contiguous.

    Raises:
        constants.eigensolver_error: If the vectors are linearly dependent.
    """
    error = orthonormality_error(vectors)
    if error > constants.DEGENERACY_TOLERANCE:
        logger.debug(f"Reorthonormalizing eigenvectors, deviation from orthonormality {error:.3e}")
    q, r = constants.np.linalg.qr(vectors)
    norms = constants.np.abs(constants.np.diag(r))
    if norms.size and norms.min() < constants.DEGENERACY_TOLERANCE:
        raise constants.eigensolver_error("Iterative solver returned linearly dependent eigenvectors")
    return q * (constants.np.diag(r) / norms)


class dense_exact_solver:
    """
    Exact diagonalization of a dense array with LAPACK.

    Attributes:
        hermitian (bool): Use eigh (Hermitian) instead of eig.
        options (dict): Keyword arguments forwarded to numpy.linalg.eigh or numpy.linalg.eig.
    """
    kind = 'dense_exact'
    requires = 'numpy.linalg'

    def __init__(self, hermitian: bool = True, **options: Any) -> None:
        self.hermitian = hermitian
        self.options = options

    def solve(self, matrix: Any, levels: int, origin: float = constants.DEFAULT_ORIGIN) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Diagonalize `matrix` and keep the `levels` eigenpairs closest to `origin`.

        Returns:
            Tuple[np.ndarray, np.ndarray]: Ascending eigenvalues and eigenvectors as columns.

        Raises:
            constants.eigensolver_error: If LAPACK fails.
        """
        H = matrix.toarray() if constants.issparse(matrix) else constants.np.asarray(matrix)
        try:
            if self.hermitian:
                values, vectors = constants.np.linalg.eigh(H, **self.options)
            else:
                values, vectors = constants.np.linalg.eig(H, **self.options)
        except constants.np.linalg.LinAlgError as e:
            logger.error(f"Dense eigenvalue computation failed: {e}")
            raise constants.eigensolver_error(f"Dense diagonalization failed: {str(e)}")
        if levels < len(values):
            keep = _closest_levels(values, levels, origin)
            values, vectors = values[keep], vectors[:, keep]
        return _sort_pairs(values, vectors)


class sparse_shift_invert_solver:
    """
    ARPACK in shift-invert mode around the spectral origin.

    Attributes:
        hermitian (bool): Use eigsh (Hermitian) instead of eigs.
        options (dict): Keyword arguments forwarded to eigsh/eigs.
    """
    kind = 'sparse_shift_invert'
    requires = 'scipy.sparse.linalg'

    def __init__(self, hermitian: bool = True, **options: Any) -> None:
        self.hermitian = hermitian
        self.options = options

    def solve(self, matrix: Any, levels: int, origin: float = constants.DEFAULT_ORIGIN) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Compute the `levels` eigenpairs closest to `origin`.

        Raises:
            constants.eigensolver_error: If ARPACK does not converge or the shifted matrix is singular.
        """
        options = {'which': 'LM', **self.options}
        try:
            if self.hermitian:
                values, vectors = eigsh(matrix, k=levels, sigma=origin, **options)
            else:
                values, vectors = eigs(matrix, k=levels, sigma=origin, **options)
        except ArpackNoConvergence as e:
            raise constants.eigensolver_error(f"ARPACK did not converge: {str(e)}")
        except (RuntimeError, ValueError, constants.np.linalg.LinAlgError) as e:
            logger.error(f"Sparse shift-invert computation failed: {e}")
            raise constants.eigensolver_error(f"Sparse shift-invert diagonalization failed: {str(e)}")
        values, vectors = _sort_pairs(values, vectors)
        if self.hermitian:
            vectors = _orthonormalize(vectors)
        return values, vectors


class sparse_krylov_solver:
    """
    Arnoldi iteration on the shift-invert map (H - origin)^-1.

    The map is applied through a sparse LU factorization (the engine),
    refactorized for every matrix. Eigenvalues theta of the map are
    converted back as origin + 1/theta.

    Attributes:
        options (dict): Keyword arguments forwarded to eigs.
    """
    kind = 'sparse_krylov'
    requires = 'scipy.sparse.linalg'

    def __init__(self, hermitian: bool = True, **options: Any) -> None:
        self.hermitian = hermitian
        self.options = options

    def solve(self, matrix: Any, levels: int, origin: float = constants.DEFAULT_ORIGIN) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Compute the `levels` eigenpairs closest to `origin`.

        Raises:
            constants.eigensolver_error: If the factorization or the iteration fails.
        """
        n = matrix.shape[0]
        options = {'which': 'LM', **self.options}
        try:
            shifted = constants.csc_matrix(matrix) - origin * constants.identity(n, dtype=complex, format='csc')
            engine = splu(constants.csc_matrix(shifted, dtype=complex))
            lmap = LinearOperator((n, n), matvec=engine.solve, dtype=complex)
            theta, vectors = eigs(lmap, k=levels, **options)
        except ArpackNoConvergence as e:
            raise constants.eigensolver_error(f"Krylov iteration did not converge: {str(e)}")
        except (RuntimeError, ValueError, constants.np.linalg.LinAlgError) as e:
            logger.error(f"Sparse Krylov computation failed: {e}")
            raise constants.eigensolver_error(f"Sparse Krylov diagonalization failed: {str(e)}")
        values, vectors = _sort_pairs(origin + 1.0 / theta, vectors)
        if self.hermitian:
            vectors = _orthonormalize(vectors)
        return values, vectors


_SOLVERS: Dict[str, Any] = {
    'dense_exact': dense_exact_solver,
    'sparse_shift_invert': sparse_shift_invert_solver,
    'sparse_krylov': sparse_krylov_solver,
}


def make_solver(kind: str, hermitian: bool = True, **options: Any) -> Any:
    """
    Instantiate the backend `kind`.

    Raises:
        constants.configuration_error: If `kind` is unknown.
        constants.backend_unavailable_error: If the backend's numerical module is not installed.
    """
    if kind not in constants.SOLVER_KINDS:
        raise constants.configuration_error(f"Unknown solver '{kind}', choose from {list(constants.SOLVER_KINDS)}")
    solver_class = _SOLVERS[kind]
    if solver_class.requires == 'scipy.sparse.linalg' and not SCIPY_SPARSE_LINALG_AVAILABLE:
        raise constants.backend_unavailable_error(
            f"The '{kind}' solver requires {solver_class.requires}, which is not installed. "
            f"Install scipy or request solver='dense_exact'.")
    return solver_class(hermitian=hermitian, **options)
