import logging
from typing import List, Optional, Sequence

import numpy as np
import pyvista as pv

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants (instead of magic numbers)
# -----------------------------------------------------------------------------
MU0: float = 4 * np.pi * 1e-7       # Vacuum permeability (H/m).
EPSILON_0: float = 8.854187817e-12  # Vacuum permittivity (F/m).
MU_R: float = 1.0                   # Relative permeability of the winding.
RHO_COPPER: float = 1.72e-8         # Resistivity of copper (Ohm m).
SIGMA_COPPER: float = 5.96e7        # Conductivity of copper (S/m).
WAVE_SPEED: float = 3e8             # Propagation speed of the current wave (m/s).
DEFAULT_BOUNDARY: float = 0.01      # Margin between the coil and the edge of the field grid (m).
EPSILON: float = 1e-9               # Slack for floor() when counting grid nodes.

LOG_FORMAT = "[%(levelname)s] %(message)s"


def configure_logging(level: int = logging.WARNING) -> None:
    """
    Route the solver loggers to stderr with the same compact format used by
    the field visualizer.
    """
    logging.basicConfig(level=level, format=LOG_FORMAT)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
class SRFError(ValueError):
    """Base class for invalid physical input to the SRF solver."""


class GeometryError(SRFError):
    """Turn/segment indexing is undefined or the coil parameters are invalid."""


class SingularityError(SRFError):
    """An evaluation point coincides with a point of the current path."""


class DomainError(SRFError):
    """
    An interturn gap does not exceed the wire diameter, so the capacitance
    model is undefined.

    Attributes:
        turns: 1-based indices of the turns involved in the offending gaps.
    """

    def __init__(self, message: str, turns: Sequence[int] = ()):
        super().__init__(message)
        self.turns = tuple(int(t) for t in turns)


class DegenerateInductanceError(SRFError):
    """The L*C product is not positive, so no resonance exists."""


def fail(error: SRFError) -> SRFError:
    """Log an error at ERROR level and hand it back so the caller can raise it."""
    logger.error("%s: %s", type(error).__name__, error)
    return error


# -----------------------------------------------------------------------------
# Geometry Helper Functions
# -----------------------------------------------------------------------------
def create_polyline(points: np.ndarray, closed: bool = False) -> pv.PolyData:
    """
    Create a PyVista PolyData polyline from an array of points.

    Parameters:
        points: Array of 3D points.
        closed: If True, the first point is repeated at the end.

    Returns:
        A PyVista PolyData representing the polyline.
    """
    points = np.asarray(points, dtype=np.float64)
    if closed and not np.allclose(points[0], points[-1]):
        points = np.vstack([points, points[0]])
    n_points = len(points)
    connectivity = np.hstack([[n_points], np.arange(n_points)])
    poly = pv.PolyData()
    poly.points = points
    poly.lines = connectivity
    return poly


def grid_axis(start: float, stop: float, step: float) -> np.ndarray:
    """
    Lattice coordinates start, start+step, ... not exceeding stop.

    Node i sits at start + i*step so that halving the step nests the coarse
    lattice inside the fine one.
    """
    n = int(np.floor((stop - start) / step + EPSILON)) + 1
    return start + step * np.arange(n)


def polar_angle(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Azimuthal angle in [0, 2*pi) with the origin mapped to pi.

    The y >= 0 half uses acos(x/rho) and the y < 0 half acos(-x/rho) + pi,
    so together they cover the circle exactly once.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    rho = np.sqrt(x**2 + y**2)
    at_origin = rho == 0
    safe_rho = np.where(at_origin, 1.0, rho)
    cos_upper = np.clip(x / safe_rho, -1.0, 1.0)
    theta = np.where(y >= 0,
                     np.arccos(cos_upper),
                     np.arccos(-cos_upper) + np.pi)
    return np.where(at_origin, np.pi, theta)


def segment_lengths(dl: np.ndarray) -> np.ndarray:
    """Euclidean length of each segment vector."""
    return np.linalg.norm(dl, axis=1)


def offending_turns(mask: np.ndarray) -> List[int]:
    """1-based indices of the flagged turns."""
    return [int(n) + 1 for n in np.flatnonzero(mask)]


def as_float_array(values, name: str, ndim: Optional[int] = 1) -> np.ndarray:
    """Copy into a float64 array and check its dimensionality."""
    arr = np.array(values, dtype=np.float64)
    if ndim is not None and arr.ndim != ndim:
        raise fail(GeometryError(f"{name} must be {ndim}-dimensional, got shape {arr.shape}"))
    return arr
