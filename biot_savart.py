"""
Quasi-static magnetic field of a discretized current path: the traveling-wave
current along the wire, the Biot-Savart sum, and the dense field lattice
sampled around a solenoid.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pyvista as pv

from coil_geometry import CoilGeometry, Segments
from srf_helpers import (DEFAULT_BOUNDARY, MU0, WAVE_SPEED, GeometryError,
                         SingularityError, fail, grid_axis, segment_lengths)

logger = logging.getLogger(__name__)


# ---------------------------
# Current Distribution
# ---------------------------
def current_distribution(segments: Segments,
                         f1: float,
                         phi0: float = 0.0,
                         time: float = 0.0,
                         speed: float = WAVE_SPEED) -> np.ndarray:
    """
    Current amplitude on every segment for a wave of frequency f1 running
    along the wire from the feed point.

    I_i = cos(2*pi*f1*time - l_i/lambda + phi0), where l_i is the wire length
    before segment i and lambda = speed/f1. The first segment carries the
    reference amplitude 1.
    """
    if not f1 > 0:
        raise fail(GeometryError(f"excitation frequency f1 must be positive, got {f1}"))
    wavelength = speed / f1
    lengths = segment_lengths(segments.dl)
    path = np.concatenate(([0.0], np.cumsum(lengths)[:-1]))
    currents = np.cos(2 * np.pi * f1 * time - path / wavelength + phi0)
    currents[0] = 1.0
    return currents


# ---------------------------
# Biot-Savart Computation
# ---------------------------
def compute_biot_savart_field(observation_points: np.ndarray,
                              segments: Segments,
                              currents: np.ndarray,
                              exclusion_radius: float = 0.0,
                              mu0: float = MU0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Magnetic field at observation_points from straight current elements
    anchored at their start points.

    Parameters:
        observation_points: (M, 3) coordinates.
        segments: Current elements (positions and dl vectors).
        currents: (s,) current amplitude of each element.
        exclusion_radius: Points closer than this to any element position
                          lie inside the conductor; they are not evaluated
                          and come back as NaN.
        mu0: Vacuum permeability.

    Returns:
        (B, B_mag, Bz) with shapes (M, 3), (M,), (M,).

    Raises:
        SingularityError if an observation point sits exactly on an element
        position and is not covered by the exclusion radius.
    """
    points = np.atleast_2d(np.asarray(observation_points, dtype=np.float64))
    currents = np.asarray(currents, dtype=np.float64)
    if currents.shape != (len(segments),):
        raise fail(GeometryError(
            f"expected {len(segments)} current amplitudes, got shape {currents.shape}"))

    B = np.zeros((points.shape[0], 3), dtype=np.float64)
    excluded = np.zeros(points.shape[0], dtype=bool)
    for i in range(len(segments)):
        r_vec = points - segments.positions[i]
        r_mag = np.linalg.norm(r_vec, axis=1)
        near = r_mag < exclusion_radius
        on_wire = (r_mag == 0) & ~near
        if np.any(on_wire):
            idx = int(np.flatnonzero(on_wire)[0])
            raise fail(SingularityError(
                f"observation point {points[idx].tolist()} coincides with segment {i}"))
        excluded |= near
        safe = np.where(near, 1.0, r_mag)
        r_unit = r_vec / safe[:, np.newaxis]
        c = mu0 * currents[i] / (4.0 * np.pi * safe**2)
        B += c[:, np.newaxis] * np.cross(segments.dl[i], r_unit)

    B[excluded] = np.nan
    B_mag = np.linalg.norm(B, axis=1)
    return B, B_mag, B[:, 2].copy()


# ---------------------------
# Field Lattice
# ---------------------------
@dataclass(frozen=True)
class FieldGrid:
    """
    |B| and Bz sampled on a regular lattice; arrays are indexed [ix, iy, iz].
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    step: float
    B_mag: np.ndarray
    Bz: np.ndarray

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.x.size, self.y.size, self.z.size)

    def to_pyvista(self) -> pv.ImageData:
        """Lattice as PyVista ImageData with 'B_mag' and 'Bz' point arrays."""
        grid = pv.ImageData(dimensions=self.shape,
                            spacing=(self.step, self.step, self.step),
                            origin=(self.x[0], self.y[0], self.z[0]))
        grid.point_data["B_mag"] = self.B_mag.ravel(order="F")
        grid.point_data["Bz"] = self.Bz.ravel(order="F")
        return grid


def field_grid_axes(geometry: CoilGeometry,
                    step: float,
                    boundary: float = DEFAULT_BOUNDARY) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """x, y and z lattice coordinates enclosing the coil with the given margin."""
    if not step > 0:
        raise fail(GeometryError(f"grid step must be positive, got {step}"))
    if boundary < 0:
        raise fail(GeometryError(f"grid boundary must not be negative, got {boundary}"))
    half_width = geometry.radius + boundary
    x = grid_axis(-half_width, half_width, step)
    y = grid_axis(-half_width, half_width, step)
    z = grid_axis(-boundary, geometry.height + boundary, step)
    return x, y, z


def scan_field_grid(geometry: CoilGeometry,
                    currents: np.ndarray,
                    step: float,
                    wire_radius: float,
                    boundary: float = DEFAULT_BOUNDARY,
                    max_workers: Optional[int] = None) -> FieldGrid:
    """
    Evaluate the field of the coil at every lattice node.

    The lattice is cut into slabs of constant x which are evaluated on a
    thread pool; the grid is returned once every slab is written. Nodes
    inside the wire envelope hold NaN.
    """
    segments = geometry.segments()
    x, y, z = field_grid_axes(geometry, step, boundary)
    nx, ny, nz = x.size, y.size, z.size
    B_mag = np.empty((nx, ny, nz), dtype=np.float64)
    Bz = np.empty((nx, ny, nz), dtype=np.float64)

    workers = max_workers or os.cpu_count() or 1
    slabs = np.array_split(np.arange(nx), min(nx, 4 * workers))
    logger.info("Scanning field grid %dx%dx%d (%d nodes, %d segments)",
                nx, ny, nz, nx * ny * nz, len(segments))
    logger.debug("Grid scan split into %d slabs over %d workers", len(slabs), workers)

    def scan_slab(ix: np.ndarray) -> int:
        X, Y, Z = np.meshgrid(x[ix], y, z, indexing="ij")
        pts = np.column_stack((X.ravel(), Y.ravel(), Z.ravel()))
        _, mag, bz = compute_biot_savart_field(pts, segments, currents,
                                               exclusion_radius=wire_radius)
        B_mag[ix] = mag.reshape(ix.size, ny, nz)
        Bz[ix] = bz.reshape(ix.size, ny, nz)
        return int(np.count_nonzero(np.isnan(bz)))

    if workers == 1:
        excluded = [scan_slab(ix) for ix in slabs]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            excluded = list(executor.map(scan_slab, slabs))
    logger.debug("%d lattice nodes fall inside the wire and were not evaluated", sum(excluded))

    B_mag.setflags(write=False)
    Bz.setflags(write=False)
    return FieldGrid(x=x, y=y, z=z, step=float(step), B_mag=B_mag, Bz=Bz)
