"""
Diagonalizer: eigensolver backend, reusable matrix buffer and band-connection settings.

Classes:
    diagonalizer: Produces sorted eigenpairs of an operator at one parameter point

The matrix buffer is owned by the diagonalizer and overwritten for every
parameter point. Eigenpairs returned by `diagonalize` are always fresh
arrays, never views into the buffer.
"""

import constants
from constants import Tuple, Optional, Any, Sequence, Union
from eigensolvers import select_solver_kind, make_solver
from codiagonalizer import codiagonalizer, make_codiagonalizer

# Configure logging
logger = constants.logging.getLogger(__name__)


class diagonalizer:
    """
    Eigensolver configuration for repeated diagonalization over a mesh.

    Attributes:
        solver: Backend with a `solve(matrix, levels, origin)` method.
        matrix: Buffer overwritten with the operator at each parameter point.
        levels (int): Number of eigenpairs per point.
        origin (float): Spectral origin; the levels closest to it are computed.
        min_projection (float): Minimum eigenvector overlap to continue a band across a mesh edge.
        codiag: Optional codiagonalizer resolving degeneracies.
        operator: Optional operator source used by `eigen_at`.
    """
    def __init__(self, solver: Any, matrix: Any, levels: Optional[int] = None,
                 origin: float = constants.DEFAULT_ORIGIN,
                 min_projection: float = constants.DIAGONALIZER_MIN_PROJECTION,
                 codiag: Optional[codiagonalizer] = None, operator: Any = None) -> None:
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise constants.dimension_mismatch_error(f"Diagonalizer matrix must be square, got shape {matrix.shape}")
        dimension = matrix.shape[0]
        levels = dimension if levels is None else levels
        if isinstance(levels, bool) or not isinstance(levels, (int, constants.np.integer)):
            raise constants.configuration_error(f"levels must be an integer, got {type(levels)}")
        if not 1 <= levels <= dimension:
            raise constants.configuration_error(f"levels must lie in 1..{dimension}, got {levels}")
        constants.validate_fraction(min_projection, "min_projection")

        self.solver = solver
        self.matrix = matrix
        self.levels = int(levels)
        self.origin = float(origin)
        self.min_projection = float(min_projection)
        self.codiag = codiag
        self.operator = operator

    @classmethod
    def for_operator(cls, operator: Any, levels: Optional[int] = None,
                     origin: float = constants.DEFAULT_ORIGIN,
                     min_projection: float = constants.DIAGONALIZER_MIN_PROJECTION,
                     codiag: Union[None, str, codiagonalizer] = 'random',
                     solver: Optional[str] = None,
                     direction_elements: Sequence[int] = constants.DEFAULT_DIRECTION_ELEMENTS,
                     seed: int = constants.DEFAULT_RANDOM_SEED,
                     **solver_options: Any) -> "diagonalizer":
        """
        Select a backend for `operator` and allocate its buffer.

        The selection happens once, here, and not in the per-vertex loop:
        small operators, large level fractions and unspecified level counts
        are diagonalized densely, everything else iteratively.

        Args:
            operator: Operator source with `dimension`, `element_kind`, `is_hermitian`,
                `similar_matrix`, `fill` and `fill_velocity`.
            levels: Eigenpairs per point, None for the full spectrum.
            origin: Spectral origin.
            min_projection: Minimum overlap for band continuation.
            codiag: 'velocity', 'random', a codiagonalizer instance, or None.
            solver: Force a backend kind instead of selecting automatically.
            direction_elements: Integer components for velocity directions.
            seed: Seed for the random codiagonalizer.
            **solver_options: Forwarded to the backend call.

        Returns:
            diagonalizer: Ready to use with `eigen_at`.

        Raises:
            constants.configuration_error: If no backend applies or options are invalid.
            constants.backend_unavailable_error: If the backend module is missing.
        """
        element_kind = getattr(operator, 'element_kind', None)
        kind = solver if solver is not None else select_solver_kind(operator.dimension, levels, element_kind)
        if kind not in constants.SOLVER_KINDS:
            raise constants.configuration_error(f"Unknown solver '{kind}', choose from {list(constants.SOLVER_KINDS)}")
        if kind != 'dense_exact':
            if element_kind not in constants.ELEMENT_KINDS:
                raise constants.configuration_error(f"Could not establish diagonalizer method for element kind '{element_kind}'")
            if levels is None or levels >= operator.dimension - 1:
                raise constants.configuration_error(
                    f"Iterative solver '{kind}' needs 1 <= levels < {operator.dimension - 1}, got {levels}")
        backend = make_solver(kind, hermitian=getattr(operator, 'is_hermitian', True), **solver_options)
        matrix = operator.similar_matrix(dense=(kind == 'dense_exact'))
        if codiag is None or isinstance(codiag, codiagonalizer):
            codiag_obj = codiag
        else:
            codiag_obj = make_codiagonalizer(codiag, operator, direction_elements, seed)
        logger.info(f"Diagonalizer: {kind} solver for a {operator.dimension}x{operator.dimension} "
                    f"{element_kind} operator, levels={levels if levels is not None else operator.dimension}, "
                    f"codiagonalizer={type(codiag_obj).__name__ if codiag_obj is not None else None}")
        return cls(backend, matrix, levels=levels, origin=origin, min_projection=min_projection,
                   codiag=codiag_obj, operator=operator)

    @classmethod
    def from_parameters(cls, operator: Any, parameters: constants.diagonalizer_parameters) -> "diagonalizer":
        """Build a diagonalizer from a picklable `diagonalizer_parameters` record."""
        return cls.for_operator(operator, levels=parameters.levels, origin=parameters.origin,
                                min_projection=parameters.min_projection,
                                codiag=parameters.codiagonalizer, solver=parameters.solver,
                                direction_elements=parameters.direction_elements, seed=parameters.seed,
                                **dict(parameters.solver_options))

    @property
    def dimension(self) -> int:
        return self.matrix.shape[0]

    def diagonalize(self) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Diagonalize the current contents of the matrix buffer.

        Returns:
            Tuple[np.ndarray, np.ndarray]: `levels` ascending eigenvalues and
                eigenvectors as columns, shape (dimension, levels).
        """
        try:
            return self.solver.solve(self.matrix, self.levels, self.origin)
        except constants.bandstructure_error:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in diagonalize: {str(e)}")
            raise constants.eigensolver_error(f"Diagonalization failed: {str(e)}")

    def resolve_degeneracies(self, values: constants.np.ndarray, vectors: constants.np.ndarray,
                             point: Sequence[float]) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """Canonicalize degenerate eigenspaces; a no-op without a codiagonalizer."""
        if self.codiag is None:
            return values, vectors
        return self.codiag.resolve_degeneracies(values, vectors, point, self.matrix)

    def eigen_at(self, point: Sequence[float]) -> Tuple[constants.np.ndarray, constants.np.ndarray]:
        """
        Fill the buffer at `point`, diagonalize and resolve degeneracies.

        Raises:
            constants.configuration_error: If the diagonalizer has no operator source.
        """
        if self.operator is None:
            raise constants.configuration_error("eigen_at needs a diagonalizer built with an operator source")
        self.operator.fill(self.matrix, point)
        values, vectors = self.diagonalize()
        return self.resolve_degeneracies(values, vectors, point)

    def __repr__(self) -> str:
        return (f"diagonalizer: {type(self.solver).__name__}, {self.levels} levels of {self.dimension}, "
                f"origin={self.origin}, min_projection={self.min_projection}")
