"""
Constants and configuration parameters for band structure computations.

This module contains numerical tolerances, solver selection thresholds,
default diagonalizer configuration, common imports, and error handling
utilities shared by every other module of the project.
"""

# Common imports - imported here so other modules can access them via constants
import numpy as np
import dataclasses
import logging
import time
import multiprocessing as mp
from typing import List, Tuple, Optional, Union, Dict, Any, Callable, Sequence, Iterable
from scipy.sparse import csr_matrix, csc_matrix, issparse, identity

# Make imports available as module attributes for easy access
# This allows other modules to do: from constants import np, List, etc.

# Configure logging for the entire project
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Backend selection policy
DENSE_SIZE_THRESHOLD: int = 50  # Operators smaller than this are always diagonalized densely
DENSE_LEVEL_FRACTION: float = 0.1  # Requesting more than this fraction of the spectrum forces dense
"""
Iterative solvers only pay off when a small window of a large spectrum is requested.
Everything else is converted to a dense array once, before the per-vertex loop.
"""

# Numerical parameters
MACHINE_EPSILON: float = float(np.finfo(np.float64).eps)
DEGENERACY_TOLERANCE: float = float(np.sqrt(MACHINE_EPSILON))  # Consecutive eigenvalues closer than this are degenerate
HERMITICITY_TOLERANCE: float = 1e-10  # Relative tolerance for Hermiticity checks
EXTENDED_EPS: float = 10_000 * MACHINE_EPSILON  # Slack on region boundaries
PERTURBATION_AMPLITUDE: float = float(MACHINE_EPSILON ** 0.25)  # Scale of the random codiagonalization perturbation

# Diagonalizer defaults
DEFAULT_ORIGIN: float = 0.0  # Spectral origin around which levels are selected
DIAGONALIZER_MIN_PROJECTION: float = 0.1  # Default minimum projection of a bare diagonalizer
DEFAULT_MIN_PROJECTION: float = 0.5  # Default minimum projection of the bandstructure driver
DEFAULT_DIRECTION_ELEMENTS: range = range(-5, 6)  # Integer components of velocity directions
DEFAULT_RANDOM_SEED: int = 1  # Seed of the random codiagonalizer

# Band classification sentinels
UNCLASSIFIED: int = 0  # Cell not yet assigned to any band
SETTLED: int = -1  # Cell belongs to an already emitted band

# Reporting
PROGRESS_LOGGING_FREQUENCY: int = 100  # How often (in vertices) to log progress

# Solver and codiagonalizer identifiers
SOLVER_KINDS: Tuple[str, ...] = ('dense_exact', 'sparse_shift_invert', 'sparse_krylov')
ELEMENT_KINDS: Tuple[str, ...] = ('scalar', 'block')
CODIAGONALIZER_KINDS: Tuple[str, ...] = ('velocity', 'random')


# Error handling utilities and custom exceptions
class bandstructure_error(Exception):
    """Base exception class for bandstructure-related errors."""
    pass

class configuration_error(bandstructure_error):
    """Raised when the requested backend or options cannot be satisfied."""
    pass

class backend_unavailable_error(bandstructure_error):
    """Raised when a selected numerical backend is not installed."""
    pass

class precondition_error(bandstructure_error):
    """Raised when degeneracy resolution receives unsorted eigenvalues."""
    pass

class inconsistent_spectrum_error(bandstructure_error):
    """Raised when a mesh vertex yields a different number of eigenvalues than the first one."""
    pass

class dimension_mismatch_error(bandstructure_error, ValueError):
    """Raised when objects of different spatial dimension are combined."""
    pass

class eigensolver_error(bandstructure_error):
    """Raised when a backend eigensolver call fails."""
    pass

class mesh_construction_error(bandstructure_error):
    """Raised when a parameter mesh is malformed."""
    pass


def validate_positive_number(value: Union[int, float], name: str) -> None:
    """Validate that a number is positive."""
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise configuration_error(f"{name} must be a number, got {type(value)}")
    if value <= 0:
        raise configuration_error(f"{name} must be positive, got {value}")

def validate_fraction(value: float, name: str) -> None:
    """Validate that a number lies in the closed interval [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise configuration_error(f"{name} must be a number, got {type(value)}")
    if not 0.0 <= value <= 1.0:
        raise configuration_error(f"{name} must lie in [0, 1], got {value}")

def validate_point_dimension(point: Sequence[float], dimension: int, name: str = "point") -> np.ndarray:
    """Validate the dimension of a parameter point and return it as a float array."""
    array = np.asarray(point, dtype=float).reshape(-1)
    if array.shape[0] != dimension:
        raise dimension_mismatch_error(f"{name} of dimension {array.shape[0]} used with a {dimension}-dimensional operator")
    return array


# data classes:
@dataclasses.dataclass(frozen=True)  # frozen=True makes instances immutable
class diagonalizer_parameters:
    """
    Picklable configuration of a diagonalizer.

    Worker processes receive this together with the operator and build their
    own diagonalizer, so no matrix buffer or scratch state is ever shared.

    Attributes:
        levels: Number of eigenpairs per vertex (None means the full spectrum).
        origin: Spectral origin; levels closest to it are kept.
        min_projection: Minimum eigenvector overlap to continue a band across an edge.
        codiagonalizer: 'velocity', 'random' or None to skip degeneracy resolution.
        solver: Force a backend ('dense_exact', 'sparse_shift_invert', 'sparse_krylov'), or None to select automatically.
        solver_options: Keyword arguments forwarded to the backend call.
        direction_elements: Integer components of velocity codiagonalizer directions.
        seed: Seed of the random codiagonalizer.
    """
    levels: Optional[int] = None
    origin: float = DEFAULT_ORIGIN
    min_projection: float = DEFAULT_MIN_PROJECTION
    codiagonalizer: Optional[str] = 'random'
    solver: Optional[str] = None
    solver_options: Tuple[Tuple[str, Any], ...] = ()
    direction_elements: Tuple[int, ...] = tuple(DEFAULT_DIRECTION_ELEMENTS)
    seed: int = DEFAULT_RANDOM_SEED
