"""
Self-resonant frequency (SRF) of a wire solenoid with irregular pitch.

Inductance and capacitance are calculated separately and combined as
f_res = 1/(2*pi*sqrt(L*C)):

* L: the coil field is sampled on a lattice with the Biot-Savart law, the
  z-component is integrated over one tilted surface per turn to get that
  turn's flux, and a closed-form internal inductance is added per turn.
* C: nearest and second-nearest neighbour turns are treated as parallel
  wires; each neighbour chain is series-combined and the two chains are
  put in parallel.

Method: W. Zhou and S. Y. Huang, "An accurate model for fast calculating the
resonant frequency of an irregular solenoid".
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from biot_savart import FieldGrid, current_distribution, scan_field_grid
from coil_geometry import CoilGeometry, cylindrical_coil_geometry
from srf_helpers import (DEFAULT_BOUNDARY, EPSILON_0, MU0, WAVE_SPEED,
                         DegenerateInductanceError, DomainError, GeometryError,
                         SingularityError, as_float_array, fail,
                         offending_turns, polar_angle)

logger = logging.getLogger(__name__)

# ---------------------------
# Default Parameters
# ---------------------------
# 4 turn cylindrical solenoid, pitches 2/4/6/8 mm, radius 40 mm, wire
# diameter 1.024 mm, 200 segments, 1 mm lattice.
default_srf_params = {
    'pitch': [0.002, 0.004, 0.006, 0.008],
    'N': 4,
    'f1': 1e3,
    'r_w': 1.024e-3 / 2,
    'radius': 0.04,
    's': 200,
    'step': 0.001,
}


# ---------------------------
# Flux Surfaces
# ---------------------------
@dataclass(frozen=True)
class FluxSurface:
    """
    Integration surface of one turn, tabulated per lattice column.

    inside: (nx, ny) True where the column lies within the turn footprint.
    height: (nx, ny) surface height, NaN outside the footprint.
    """
    turn: int
    inside: np.ndarray
    height: np.ndarray


def map_flux_surface(geometry: CoilGeometry,
                     grid: FieldGrid,
                     turn: int,
                     wire_radius: float) -> FluxSurface:
    """
    Build the surface of turn `turn` (1-based).

    The surface meets the wire at the coil radius, following the pitch of
    the turn, and flattens linearly towards the axis where it sits at the
    height of the turn's azimuthal midpoint.
    """
    k = turn - 1
    X, Y = np.meshgrid(grid.x, grid.y, indexing="ij")
    rho = np.sqrt(X**2 + Y**2)
    theta = polar_angle(X, Y)
    inside = X**2 + Y**2 <= (geometry.radius - wire_radius)**2

    z_c = geometry.turn_start_heights[k]
    z_O = geometry.points[geometry.midpoint_indices()[k], 2]
    z_ref = z_c + geometry.pitch[k] * theta / (2 * np.pi)
    height = np.where(inside, (z_ref - z_O) * rho / geometry.radius + z_O, np.nan)
    return FluxSurface(turn=turn, inside=inside, height=height)


def integrate_flux(surface: FluxSurface, grid: FieldGrid) -> float:
    """
    Flux of Bz through a surface.

    Each interior column contributes Bz * step**2, Bz being read from the
    lowest lattice node at or above the surface.
    """
    ix, iy = np.nonzero(surface.inside)
    iz = np.searchsorted(grid.z, surface.height[ix, iy], side="left")
    if np.any(iz >= grid.z.size):
        raise fail(GeometryError(
            f"flux surface of turn {surface.turn} rises above the field grid"))
    bz = grid.Bz[ix, iy, iz]
    if np.any(np.isnan(bz)):
        raise fail(SingularityError(
            f"flux surface of turn {surface.turn} samples a node inside the wire"))
    return float(np.sum(bz) * grid.step**2)


def turn_fluxes(geometry: CoilGeometry,
                grid: FieldGrid,
                wire_radius: float,
                max_workers: Optional[int] = None) -> np.ndarray:
    """phi_area for every turn; turns are integrated independently."""
    def flux_of(turn: int) -> float:
        return integrate_flux(map_flux_surface(geometry, grid, turn, wire_radius), grid)

    turns = range(1, geometry.turns + 1)
    workers = max_workers or os.cpu_count() or 1
    if workers == 1:
        fluxes = [flux_of(t) for t in turns]
    else:
        with ThreadPoolExecutor(max_workers=min(workers, geometry.turns)) as executor:
            fluxes = list(executor.map(flux_of, turns))
    return np.array(fluxes, dtype=np.float64)


# ---------------------------
# Inductance
# ---------------------------
@dataclass(frozen=True)
class InductanceResult:
    phi_area: np.ndarray
    I_ref: np.ndarray
    L_separate: np.ndarray
    L_int: np.ndarray
    L: float


def internal_inductance(geometry: CoilGeometry) -> np.ndarray:
    """mu0*l/(8*pi) per turn, l being the wire length of the turn."""
    return MU0 * geometry.turn_lengths / (8 * np.pi)


def compute_inductance(geometry: CoilGeometry,
                       currents: np.ndarray,
                       phi_area: np.ndarray) -> InductanceResult:
    """
    Sum of external (flux over midpoint current) and internal inductance
    over all turns.
    """
    I_ref = np.asarray(currents, dtype=np.float64)[geometry.midpoint_indices()]
    if np.any(I_ref == 0):
        dead = [int(k) + 1 for k in np.flatnonzero(I_ref == 0)]
        raise fail(DegenerateInductanceError(f"reference current vanishes on turns {dead}"))
    L_separate = phi_area / I_ref
    L_int = internal_inductance(geometry)
    L = float(np.sum(L_separate + L_int))
    for k in range(geometry.turns):
        logger.debug("Turn %d: phi=%.6e Wb, I=%.6f, L_ext=%.6e H, L_int=%.6e H",
                     k + 1, phi_area[k], I_ref[k], L_separate[k], L_int[k])
    return InductanceResult(phi_area=phi_area, I_ref=I_ref,
                            L_separate=L_separate, L_int=L_int, L=L)


# ---------------------------
# Capacitance
# ---------------------------
@dataclass(frozen=True)
class CapacitanceNetwork:
    """
    pitch_NN / C_NN:         one entry per adjacent pair (N-1).
    pitch_2nd_NN / C_2nd_NN: one entry per second-adjacent pair (N-2).
    C_NN_total / C_2nd_NN_total: summed elastances (1/F) of each chain.
    C: the two chains in parallel.
    """
    pitch_NN: np.ndarray
    C_NN: np.ndarray
    C_NN_total: float
    pitch_2nd_NN: np.ndarray
    C_2nd_NN: np.ndarray
    C_2nd_NN_total: float
    C: float


def neighbour_spans(pitch: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Axial spans between nearest and between second-nearest neighbour turns.

    The second-nearest span adds both pair sums without halving them, unlike
    the nearest span which is the mean pitch of the pair.
    """
    pitch_NN = 0.5 * (pitch[:-1] + pitch[1:])
    pitch_2nd_NN = (pitch[:-2] + pitch[1:-1]) + (pitch[1:-1] + pitch[2:])
    return pitch_NN, pitch_2nd_NN


def check_capacitance_domain(pitch: Sequence[float], wire_radius: float) -> None:
    """
    Raise DomainError unless every pitch is wider than the wire diameter.

    Both neighbour spans are at least the smaller pitch of the turns they
    join, so they clear the wire diameter whenever every pitch does.
    """
    pitch = as_float_array(pitch, "pitch")
    d = 2 * wire_radius
    bad = ~(pitch > d)
    if np.any(bad):
        turns = offending_turns(bad)
        raise fail(DomainError(
            f"pitch does not exceed the wire diameter {d:g} at turns {turns}",
            turns=turns))


def compute_capacitance(pitch: Sequence[float], wire_radius: float, radius: float) -> CapacitanceNetwork:
    """
    C(p) = eps0 * pi**2 * D / acosh(p/d) for every neighbour pair, series
    combined along each chain; the two chains are then added in parallel.
    A chain without pairs contributes nothing.
    """
    pitch = as_float_array(pitch, "pitch")
    check_capacitance_domain(pitch, wire_radius)
    d = 2 * wire_radius
    D = 2 * radius

    pitch_NN, pitch_2nd_NN = neighbour_spans(pitch)
    C_NN = EPSILON_0 * np.pi**2 * D / np.arccosh(pitch_NN / d)
    C_2nd_NN = EPSILON_0 * np.pi**2 * D / np.arccosh(pitch_2nd_NN / d)
    C_NN_total = float(np.sum(1.0 / C_NN))
    C_2nd_NN_total = float(np.sum(1.0 / C_2nd_NN))

    C = 0.0
    if C_NN.size:
        C += 1.0 / C_NN_total
    if C_2nd_NN.size:
        C += 1.0 / C_2nd_NN_total
    return CapacitanceNetwork(pitch_NN=pitch_NN, C_NN=C_NN, C_NN_total=C_NN_total,
                              pitch_2nd_NN=pitch_2nd_NN, C_2nd_NN=C_2nd_NN,
                              C_2nd_NN_total=C_2nd_NN_total, C=C)


# ---------------------------
# Resonance
# ---------------------------
def resonant_frequency(L: float, C: float) -> float:
    LC = L * C
    if not (np.isfinite(LC) and LC > 0):
        raise fail(DegenerateInductanceError(f"L*C must be positive, got L={L:g} H, C={C:g} F"))
    return float(1.0 / (2 * np.pi * np.sqrt(LC)))


@dataclass(frozen=True)
class SRFResult:
    L: float
    C: float
    f_res: float
    inductance: InductanceResult
    capacitance: CapacitanceNetwork

    @property
    def phi_total(self) -> float:
        return float(np.sum(self.inductance.phi_area))

    def as_tuple(self) -> Tuple[float, float, float]:
        return self.L, self.C, self.f_res


def validate_inputs(geometry: CoilGeometry, f1: float, wire_radius: float, step: float) -> None:
    if not f1 > 0:
        raise fail(GeometryError(f"excitation frequency f1 must be positive, got {f1}"))
    if not step > 0:
        raise fail(GeometryError(f"grid step must be positive, got {step}"))
    if not 0 < wire_radius < geometry.radius:
        raise fail(GeometryError(
            f"wire radius must be positive and smaller than the coil radius, got {wire_radius}"))
    if np.any(geometry.pitch <= 0):
        raise fail(GeometryError(f"pitches must be positive, got {geometry.pitch.tolist()}"))


def solve_srf(geometry: CoilGeometry,
              f1: float,
              wire_radius: float,
              step: float,
              boundary: float = DEFAULT_BOUNDARY,
              phi0: float = 0.0,
              time: float = 0.0,
              speed: float = WAVE_SPEED,
              max_workers: Optional[int] = None) -> SRFResult:
    """
    Inductance, capacitance and self-resonant frequency of a solenoid.

    Parameters:
        geometry: Wire centerline with its per-turn pitch and radius.
        f1: Excitation frequency of the current wave, well below the SRF.
        wire_radius: Radius of the wire.
        step: Lattice spacing for the field scan.
        boundary: Margin between the coil and the edge of the lattice.
        phi0, time, speed: Phase, evaluation time and propagation speed of
                           the current wave.
        max_workers: Thread count for the field scan and the per-turn
                     integration (None: one per CPU, 1: serial).

    Returns:
        An SRFResult; L in H, C in F and f_res in Hz for SI inputs.
    """
    validate_inputs(geometry, f1, wire_radius, step)
    check_capacitance_domain(geometry.pitch, wire_radius)

    currents = current_distribution(geometry.segments(), f1, phi0=phi0, time=time, speed=speed)
    grid = scan_field_grid(geometry, currents, step, wire_radius,
                           boundary=boundary, max_workers=max_workers)
    phi_area = turn_fluxes(geometry, grid, wire_radius, max_workers=max_workers)
    inductance = compute_inductance(geometry, currents, phi_area)
    logger.info("Inductance: %.6e H over %d turns", inductance.L, geometry.turns)

    capacitance = compute_capacitance(geometry.pitch, wire_radius, geometry.radius)
    logger.info("Capacitance: %.6e F", capacitance.C)

    f_res = resonant_frequency(inductance.L, capacitance.C)
    logger.info("Self-resonant frequency: %.6e Hz", f_res)
    return SRFResult(L=inductance.L, C=capacitance.C, f_res=f_res,
                     inductance=inductance, capacitance=capacitance)


def srf_calculation_cylindrical_varied_pitch(pitch: Sequence[float],
                                             N: int,
                                             f1: float,
                                             r_w: float,
                                             radius: float,
                                             s: int,
                                             step: float,
                                             **options) -> Tuple[float, float, float]:
    """
    SRF of a cylindrical solenoid whose turns each have their own pitch.

    Parameters:
        pitch: The N pitches of the solenoid.
        N: Number of turns.
        f1: Frequency used for the inductance calculation (a low f1 is usual).
        r_w: Radius of the wire.
        radius: Radius of the solenoid.
        s: Number of segments of the coil, a multiple of N.
        step: Step size for meshing the computation domain.
        options: Forwarded to solve_srf (boundary, phi0, time, speed, max_workers).

    Returns:
        (L, C, f_res)
    """
    pitch = as_float_array(pitch, "pitch")
    if pitch.size != N:
        raise fail(GeometryError(f"expected {N} pitches, got {pitch.size}"))
    if not 0 < r_w < radius:
        raise fail(GeometryError(
            f"wire radius must be positive and smaller than the coil radius, got {r_w}"))
    check_capacitance_domain(pitch, r_w)
    geometry = cylindrical_coil_geometry(pitch, radius, s)
    return solve_srf(geometry, f1, r_w, step, **options).as_tuple()


def srf_calculation_cylindrical_uniform_pitch(pitch: float,
                                              N: int,
                                              f1: float,
                                              r_w: float,
                                              radius: float,
                                              s: int,
                                              step: float,
                                              **options) -> Tuple[float, float, float]:
    """Same as srf_calculation_cylindrical_varied_pitch with one pitch for all turns."""
    return srf_calculation_cylindrical_varied_pitch(np.full(int(N), float(pitch)), N, f1, r_w,
                                                    radius, s, step, **options)
