"""
Bloch operators: the matrices whose spectra are tracked over a parameter mesh.

This module provides the concrete operator source consumed by the
diagonalizer and the codiagonalizers:

Classes:
    bloch_operator: Operator built from Bloch harmonics, H(k) = sum_dn h_dn exp(i k.dn)

Functions:
    direct_sum: Block-diagonal combination of several Bloch operators

The operator never owns the matrix it writes to. Callers allocate a buffer
once with `similar_matrix` and the operator overwrites it in place for
every parameter point, without touching the sparse structure.
"""

import constants
from constants import List, Tuple, Optional, Dict, Any, Sequence
from scipy.sparse import block_diag
from utils import is_hermitian

# Configure logging
logger = constants.logging.getLogger(__name__)


class bloch_operator:
    """
    Operator defined by its Bloch harmonics.

    H(k) = sum_dn h_dn exp(i k.dn), where dn runs over integer cell offsets
    and k is the parameter point (Bloch phases).

    Attributes:
        dimension (int): Size of the square operator matrix.
        lattice_dimension (int): Dimension of the parameter points it accepts.
        block_size (int): Number of orbitals per site (1 for scalar elements).
        is_hermitian (bool): Whether h_{-dn} = h_dn^dagger was required at construction.
    """
    def __init__(self, harmonics: Dict[Tuple[int, ...], Any], hermitian: bool = True, block_size: int = 1) -> None:
        try:
            if not harmonics:
                raise constants.configuration_error("At least one harmonic is required")
            constants.validate_positive_number(block_size, "block_size")

            keys = [tuple(int(n) for n in dn) for dn in harmonics]
            lattice_dims = {len(dn) for dn in keys}
            if len(lattice_dims) != 1:
                raise constants.dimension_mismatch_error(f"Harmonic offsets of different dimensions: {sorted(lattice_dims)}")

            matrices = {}
            shape = None
            for dn, matrix in zip(keys, harmonics.values()):
                matrix = constants.csr_matrix(matrix, dtype=complex)
                if matrix.shape[0] != matrix.shape[1]:
                    raise constants.dimension_mismatch_error(f"Harmonic {dn} is not square: {matrix.shape}")
                if shape is not None and matrix.shape != shape:
                    raise constants.dimension_mismatch_error(f"Harmonic {dn} has shape {matrix.shape}, expected {shape}")
                shape = matrix.shape
                matrix.eliminate_zeros()
                matrices[dn] = matrices[dn] + matrix if dn in matrices else matrix

            if shape[0] % block_size != 0:
                raise constants.configuration_error(f"Dimension {shape[0]} is not a multiple of block_size {block_size}")

            self.dimension = shape[0]
            self.lattice_dimension = lattice_dims.pop()
            self.block_size = int(block_size)
            self.is_hermitian = bool(hermitian)
            self._harmonics = matrices
            if self.is_hermitian:
                self._check_hermitian_partners()
            self._build_pattern()
        except constants.bandstructure_error:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in bloch_operator initialization: {str(e)}")
            raise constants.configuration_error(f"Failed to build Bloch operator: {str(e)}")

    @property
    def element_kind(self) -> str:
        """'scalar' for one orbital per site, 'block' otherwise."""
        return 'scalar' if self.block_size == 1 else 'block'

    @property
    def harmonics(self) -> Dict[Tuple[int, ...], constants.csr_matrix]:
        """Copies of the harmonic matrices keyed by cell offset."""
        return {dn: h.copy() for dn, h in self._harmonics.items()}

    def _check_hermitian_partners(self) -> None:
        """
        Verify h_{-dn} = h_dn^dagger for every harmonic.

        Raises:
            constants.configuration_error: If a partner is missing or does not match.
        """
        for dn, h in self._harmonics.items():
            partner_key = tuple(-n for n in dn)
            partner = self._harmonics.get(partner_key)
            if partner is None:
                if h.nnz == 0:
                    continue
                raise constants.configuration_error(f"Harmonic {dn} has no Hermitian partner {partner_key}")
            if partner_key == dn:
                if not is_hermitian(h):
                    raise constants.configuration_error(f"Harmonic {dn} is not Hermitian")
                continue
            diff = h - partner.conj().T
            scale = max(constants.np.abs(h.data).max() if h.nnz else 0.0, 1.0)
            if diff.nnz and constants.np.abs(diff.data).max() > constants.HERMITICITY_TOLERANCE * scale:
                raise constants.configuration_error(f"Harmonics {dn} and {partner_key} are not Hermitian conjugates")

    def _build_pattern(self) -> None:
        """Precompute the union sparsity pattern and where each harmonic lands in it."""
        n = self.dimension
        union = constants.csr_matrix((n, n), dtype=float)
        for h in self._harmonics.values():
            union = union + abs(h)
        union = constants.csr_matrix(union)
        union.sum_duplicates()
        union.sort_indices()
        self._indices = union.indices.copy()
        self._indptr = union.indptr.copy()
        self.nnz = int(union.nnz)

        # Lookup table from (row, col) to position in the data array, offset by one
        lookup = constants.csr_matrix((constants.np.arange(1, self.nnz + 1, dtype=float), self._indices, self._indptr), shape=(n, n))
        self._shifts = constants.np.array(list(self._harmonics.keys()), dtype=float).reshape(len(self._harmonics), self.lattice_dimension)
        self._rows, self._cols, self._positions, self._values = [], [], [], []
        for h in self._harmonics.values():
            coo = h.tocoo()
            if coo.nnz:
                positions = constants.np.asarray(lookup[coo.row, coo.col]).ravel().astype(int) - 1
            else:
                positions = constants.np.zeros(0, dtype=int)
            self._rows.append(coo.row)
            self._cols.append(coo.col)
            self._positions.append(positions)
            self._values.append(coo.data)

    def similar_matrix(self, dense: bool = False) -> Any:
        """
        Allocate a buffer that `fill` and `fill_velocity` can overwrite.

        Args:
            dense (bool): Return a dense complex array instead of a CSR matrix.

        Returns:
            np.ndarray or csr_matrix: Zeroed buffer of shape (dimension, dimension).
        """
        if dense:
            return constants.np.zeros((self.dimension, self.dimension), dtype=complex)
        return constants.csr_matrix((constants.np.zeros(self.nnz, dtype=complex), self._indices.copy(), self._indptr.copy()),
                                    shape=(self.dimension, self.dimension))

    def fill(self, buffer: Any, point: Sequence[float]) -> Any:
        """
        Overwrite `buffer` with H(point).

        Args:
            buffer: Matrix from `similar_matrix`.
            point: Parameter point of dimension `lattice_dimension`.

        Returns:
            The same buffer, for chaining.

        Raises:
            constants.dimension_mismatch_error: If the point or buffer has the wrong size.
        """
        k = constants.validate_point_dimension(point, self.lattice_dimension)
        phases = constants.np.exp(1j * (self._shifts @ k))
        return self._accumulate(buffer, phases)

    def fill_velocity(self, buffer: Any, point: Sequence[float], direction: Sequence[float]) -> Any:
        """
        Overwrite `buffer` with the derivative of H along `direction` at `point`.

        dH/dv = sum_dn i (v.dn) h_dn exp(i k.dn)

        Args:
            buffer: Matrix from `similar_matrix`.
            point: Parameter point of dimension `lattice_dimension`.
            direction: Direction vector of dimension `lattice_dimension`.

        Returns:
            The same buffer, for chaining.
        """
        k = constants.validate_point_dimension(point, self.lattice_dimension)
        v = constants.validate_point_dimension(direction, self.lattice_dimension, "direction")
        coefficients = 1j * (self._shifts @ v) * constants.np.exp(1j * (self._shifts @ k))
        return self._accumulate(buffer, coefficients)

    def _accumulate(self, buffer: Any, coefficients: constants.np.ndarray) -> Any:
        if buffer.shape != (self.dimension, self.dimension):
            raise constants.dimension_mismatch_error(f"Buffer of shape {buffer.shape} cannot hold a {self.dimension}x{self.dimension} operator")
        if constants.issparse(buffer):
            if buffer.format != 'csr' or buffer.nnz != self.nnz:
                raise constants.dimension_mismatch_error("Sparse buffer does not share the operator sparsity pattern; use similar_matrix()")
            data = buffer.data
            data[:] = 0.0
            for coefficient, positions, values in zip(coefficients, self._positions, self._values):
                data[positions] += coefficient * values
        elif isinstance(buffer, constants.np.ndarray):
            buffer.fill(0.0)
            for coefficient, rows, cols, values in zip(coefficients, self._rows, self._cols, self._values):
                buffer[rows, cols] += coefficient * values
        else:
            raise constants.configuration_error(f"Unsupported buffer type {type(buffer)}")
        return buffer

    def __call__(self, point: Sequence[float], dense: bool = False) -> Any:
        """Return a freshly allocated H(point)."""
        return self.fill(self.similar_matrix(dense=dense), point)

    def __repr__(self) -> str:
        return (f"bloch_operator: {self.dimension}x{self.dimension} {self.element_kind} operator, "
                f"{len(self._harmonics)} harmonics in {self.lattice_dimension}D, {self.nnz} stored elements")


def direct_sum(*operators: bloch_operator) -> bloch_operator:
    """
    Combine operators into a block-diagonal operator.

    Two copies of the same operator produce an exactly degenerate spectrum,
    which is what the codiagonalizers are designed to handle.

    Args:
        *operators: Bloch operators sharing the same lattice dimension.

    Returns:
        bloch_operator: The direct sum.

    Raises:
        constants.dimension_mismatch_error: If the lattice dimensions differ.
    """
    if not operators:
        raise constants.configuration_error("direct_sum needs at least one operator")
    lattice_dims = {op.lattice_dimension for op in operators}
    if len(lattice_dims) != 1:
        raise constants.dimension_mismatch_error(f"Cannot combine operators of lattice dimensions {sorted(lattice_dims)}")
    block_sizes = {op.block_size for op in operators}
    keys = []
    for op in operators:
        keys.extend(dn for dn in op._harmonics if dn not in keys)
    harmonics = {}
    for dn in keys:
        blocks = [op._harmonics.get(dn, constants.csr_matrix((op.dimension, op.dimension), dtype=complex)) for op in operators]
        harmonics[dn] = block_diag(blocks, format='csr')
    return bloch_operator(harmonics,
                          hermitian=all(op.is_hermitian for op in operators),
                          block_size=block_sizes.pop() if len(block_sizes) == 1 else 1)
