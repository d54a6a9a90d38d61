"""
Region predicates for restricting parameter meshes.

A region is a boolean predicate tied to a fixed spatial dimension. Calling
it on a point of another dimension is an error rather than a silent
truncation.
"""

import constants
from constants import Tuple, Callable, Sequence

# Configure logging
logger = constants.logging.getLogger(__name__)


class region:
    """
    Dimension-checked predicate over points.

    Attributes:
        dimension (int): Dimension of the points the predicate accepts.
        predicate (Callable): Function of a float array returning bool.
    """
    def __init__(self, dimension: int, predicate: Callable[[constants.np.ndarray], bool]) -> None:
        constants.validate_positive_number(dimension, "region dimension")
        if not callable(predicate):
            raise constants.configuration_error("region predicate must be callable")
        self.dimension = int(dimension)
        self.predicate = predicate

    def __call__(self, point: Sequence[float]) -> bool:
        r = constants.np.asarray(point, dtype=float).reshape(-1)
        if r.shape[0] != self.dimension:
            raise constants.dimension_mismatch_error(f"Region of dimension {self.dimension} used in an {r.shape[0]}-dimensional space")
        return bool(self.predicate(r))

    @classmethod
    def preset(cls, name: str, *args) -> "region":
        """
        Build one of the preset regions by name.

        Available presets: circle(radius), ellipse(radii), square(side),
        rectangle(sides), sphere(radius), spheroid(radii), cube(side),
        cuboid(sides). All are centered at the origin.
        """
        try:
            factory = _PRESETS[name]
        except KeyError as e:
            raise constants.configuration_error(f"Unknown region preset '{name}', choose from {sorted(_PRESETS)}") from e
        return factory(*args)

    def __repr__(self) -> str:
        return f"region in {self.dimension}D"


def _ellipsoid(radii: Tuple[float, ...]) -> Callable[[constants.np.ndarray], bool]:
    radii = constants.np.asarray(radii, dtype=float)
    return lambda r: constants.np.sum((r / radii) ** 2) <= 1 + constants.EXTENDED_EPS


def _box(sides: Tuple[float, ...]) -> Callable[[constants.np.ndarray], bool]:
    sides = constants.np.asarray(sides, dtype=float)
    return lambda r: bool(constants.np.all(constants.np.abs(2 * r) <= sides * (1 + constants.EXTENDED_EPS)))


_PRESETS = {
    'circle': lambda radius=10.0: region(2, _ellipse_or_raise((radius, radius), 2)),
    'ellipse': lambda radii=(10.0, 15.0): region(2, _ellipse_or_raise(radii, 2)),
    'square': lambda side=10.0: region(2, _box_or_raise((side, side), 2)),
    'rectangle': lambda sides=(10.0, 15.0): region(2, _box_or_raise(sides, 2)),
    'sphere': lambda radius=10.0: region(3, _ellipse_or_raise((radius, radius, radius), 3)),
    'spheroid': lambda radii=(10.0, 15.0, 20.0): region(3, _ellipse_or_raise(radii, 3)),
    'cube': lambda side=10.0: region(3, _box_or_raise((side, side, side), 3)),
    'cuboid': lambda sides=(10.0, 15.0, 20.0): region(3, _box_or_raise(sides, 3)),
}


def _ellipse_or_raise(radii: Sequence[float], dimension: int) -> Callable[[constants.np.ndarray], bool]:
    if len(radii) != dimension:
        raise constants.dimension_mismatch_error(f"Expected {dimension} radii, got {len(radii)}")
    for radius in radii:
        constants.validate_positive_number(radius, "radius")
    return _ellipsoid(tuple(radii))


def _box_or_raise(sides: Sequence[float], dimension: int) -> Callable[[constants.np.ndarray], bool]:
    if len(sides) != dimension:
        raise constants.dimension_mismatch_error(f"Expected {dimension} sides, got {len(sides)}")
    for side in sides:
        constants.validate_positive_number(side, "side")
    return _box(tuple(sides))
