"""
Wire centerline of a solenoid and the segments derived from it.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pyvista as pv

from srf_helpers import GeometryError, as_float_array, create_polyline, fail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segments:
    """
    Straight pieces of the current path.

    positions: (s, 3) start point of each segment.
    dl:        (s, 3) displacement from start to end point.
    """
    positions: np.ndarray
    dl: np.ndarray

    def __len__(self) -> int:
        return self.positions.shape[0]


@dataclass(frozen=True)
class CoilGeometry:
    """
    Ordered centerline points of an N-turn solenoid together with the
    per-turn pitch and the coil radius.

    points has s+1 rows, s being the segment count; s must be a multiple
    of the number of turns so that every turn owns s/N segments.
    """
    points: np.ndarray
    pitch: np.ndarray
    radius: float

    def __post_init__(self):
        points = as_float_array(self.points, "points", ndim=2)
        pitch = as_float_array(self.pitch, "pitch", ndim=1)
        if points.shape[1] != 3 or points.shape[0] < 2:
            raise fail(GeometryError(f"points must have shape (s+1, 3) with s >= 1, got {points.shape}"))
        if pitch.size < 1:
            raise fail(GeometryError("pitch must hold one value per turn"))
        if not self.radius > 0:
            raise fail(GeometryError(f"radius must be positive, got {self.radius}"))
        s = points.shape[0] - 1
        if s % pitch.size != 0:
            raise fail(GeometryError(
                f"segment count s={s} is not divisible by the number of turns N={pitch.size}"))
        points.setflags(write=False)
        pitch.setflags(write=False)
        object.__setattr__(self, "points", points)
        object.__setattr__(self, "pitch", pitch)
        object.__setattr__(self, "radius", float(self.radius))

    @property
    def turns(self) -> int:
        return self.pitch.size

    @property
    def segment_count(self) -> int:
        return self.points.shape[0] - 1

    @property
    def segments_per_turn(self) -> int:
        return self.segment_count // self.turns

    @property
    def height(self) -> float:
        return float(np.sum(self.pitch))

    @property
    def turn_start_heights(self) -> np.ndarray:
        """z_c(k): height at which turn k starts."""
        return np.concatenate(([0.0], np.cumsum(self.pitch)[:-1]))

    @property
    def turn_lengths(self) -> np.ndarray:
        """Length of wire in each turn, one pitch of helix per 2*pi."""
        return np.sqrt((2 * np.pi * self.radius)**2 + self.pitch**2)

    def midpoint_indices(self) -> np.ndarray:
        """
        Index of the segment sitting at the azimuthal middle of each turn.

        The same segment supplies both the flux-surface reference height
        z_O and the reference current I_ref of its turn.
        """
        spt = self.segments_per_turn
        return np.arange(self.turns) * spt + spt // 2

    def segments(self) -> Segments:
        positions = self.points[:-1].copy()
        dl = self.points[1:] - self.points[:-1]
        positions.setflags(write=False)
        dl.setflags(write=False)
        return Segments(positions=positions, dl=dl)

    def to_polyline(self) -> pv.PolyData:
        """Centerline as an open PyVista polyline."""
        return create_polyline(self.points, closed=False)


def cylindrical_coil_geometry(pitch: Sequence[float], radius: float, s: int) -> CoilGeometry:
    """
    Helical centerline of a cylindrical solenoid whose turns may each have
    their own pitch.

    Parameters:
        pitch: Axial advance of each of the N turns.
        radius: Coil radius.
        s: Total number of segments; must be a multiple of N.

    Returns:
        A CoilGeometry with s+1 points starting at (radius, 0, 0).
    """
    pitch = as_float_array(pitch, "pitch", ndim=1)
    n_turns = pitch.size
    if n_turns < 1:
        raise fail(GeometryError("at least one turn is required"))
    if int(s) != s or s < 1:
        raise fail(GeometryError(f"segment count must be a positive integer, got {s}"))
    s = int(s)
    if s % n_turns != 0:
        raise fail(GeometryError(
            f"segment count s={s} is not divisible by the number of turns N={n_turns}"))

    spt = s // n_turns
    t = 2 * np.pi * np.arange(spt) / spt
    points = np.empty((s + 1, 3), dtype=np.float64)
    z0 = 0.0
    for k in range(n_turns):
        rows = slice(k * spt, (k + 1) * spt)
        points[rows, 0] = radius * np.cos(t)
        points[rows, 1] = radius * np.sin(t)
        points[rows, 2] = z0 + pitch[k] * t / (2 * np.pi)
        z0 += pitch[k]
    points[-1] = (radius * np.cos(2 * np.pi), radius * np.sin(2 * np.pi), z0)

    logger.debug("Built cylindrical coil: N=%d, s=%d, radius=%g, height=%g", n_turns, s, radius, z0)
    return CoilGeometry(points=points, pitch=pitch, radius=radius)


def uniform_pitch_geometry(pitch: float, n_turns: int, radius: float, s: int) -> CoilGeometry:
    """Cylindrical solenoid with the same pitch on every turn."""
    return cylindrical_coil_geometry(np.full(int(n_turns), float(pitch)), radius, s)
