import unittest
from unittest import mock

import numpy as np

from biot_savart import FieldGrid, current_distribution, scan_field_grid
from coil_geometry import cylindrical_coil_geometry
from srf_calculator import (FluxSurface, compute_capacitance, compute_inductance,
                            default_srf_params, integrate_flux, internal_inductance,
                            map_flux_surface, resonant_frequency, solve_srf,
                            srf_calculation_cylindrical_uniform_pitch,
                            srf_calculation_cylindrical_varied_pitch, turn_fluxes)
from srf_helpers import (EPSILON_0, MU0, DegenerateInductanceError, DomainError,
                         GeometryError, SingularityError, grid_axis)


def synthetic_grid(x, y, z, step=1.0):
    nx, ny, nz = len(x), len(y), len(z)
    Bz = np.broadcast_to(np.arange(1.0, nz + 1), (nx, ny, nz)).copy()
    return FieldGrid(x=np.asarray(x, float), y=np.asarray(y, float), z=np.asarray(z, float),
                     step=step, B_mag=np.abs(Bz), Bz=Bz)


class TestFluxSurface(unittest.TestCase):
    def setUp(self):
        self.coil = cylindrical_coil_geometry([0.002, 0.004], 0.01, 40)
        axis = grid_axis(-0.012, 0.012, 0.001)
        zeros = np.zeros((axis.size, axis.size, 3))
        self.grid = FieldGrid(x=axis, y=axis, z=np.array([0.0, 0.003, 0.006]), step=0.001,
                              B_mag=zeros, Bz=zeros)
        self.surface = map_flux_surface(self.coil, self.grid, 2, 3e-4)

    def expected_height(self, x, y, theta):
        z_c, pitch, z_O = 0.002, 0.004, 0.004
        z_ref = z_c + pitch * theta / (2 * np.pi)
        return (z_ref - z_O) * np.hypot(x, y) / 0.01 + z_O

    def test_axis_sits_at_turn_midpoint_height(self):
        self.assertAlmostEqual(float(self.surface.height[12, 12]), 0.004, places=12)

    def test_height_follows_pitch_in_both_half_planes(self):
        self.assertAlmostEqual(float(self.surface.height[18, 18]),
                               self.expected_height(0.006, 0.006, np.pi / 4), places=12)
        self.assertAlmostEqual(float(self.surface.height[6, 6]),
                               self.expected_height(-0.006, -0.006, 5 * np.pi / 4), places=12)

    def test_footprint_stays_inside_wire(self):
        self.assertEqual(self.surface.turn, 2)
        self.assertTrue(self.surface.inside[21, 12])     # x = 0.009
        self.assertFalse(self.surface.inside[22, 12])    # x = 0.010
        self.assertFalse(self.surface.inside[0, 0])
        self.assertTrue(np.isnan(self.surface.height[0, 0]))
        self.assertTrue(np.all(np.isfinite(self.surface.height[self.surface.inside])))


class TestIntegrateFlux(unittest.TestCase):
    def setUp(self):
        self.grid = synthetic_grid([0.0, 1.0], [0.0, 1.0], [0.0, 1.0, 2.0, 3.0], step=0.5)
        self.inside = np.array([[True, True], [False, True]])

    def test_takes_nearest_sample_at_or_above_surface(self):
        height = np.array([[0.5, 2.0], [np.nan, -1.0]])
        surface = FluxSurface(turn=1, inside=self.inside, height=height)
        # Samples picked: z=1 (Bz 2), z=2 (Bz 3), z=0 (Bz 1).
        self.assertAlmostEqual(integrate_flux(surface, self.grid), 6.0 * 0.25)

    def test_surface_above_grid(self):
        height = np.array([[0.5, 3.5], [np.nan, 0.0]])
        with self.assertRaises(GeometryError):
            integrate_flux(FluxSurface(turn=1, inside=self.inside, height=height), self.grid)

    def test_sample_inside_wire(self):
        Bz = self.grid.Bz.copy()
        Bz[0, 0, 1] = np.nan
        grid = FieldGrid(x=self.grid.x, y=self.grid.y, z=self.grid.z, step=0.5, B_mag=Bz, Bz=Bz)
        height = np.array([[0.5, 2.0], [np.nan, 0.0]])
        with self.assertRaises(SingularityError):
            integrate_flux(FluxSurface(turn=1, inside=self.inside, height=height), grid)


class TestFluxConvergence(unittest.TestCase):
    def test_halving_step_converges(self):
        coil = cylindrical_coil_geometry([0.002, 0.002], 0.008, 80)
        wire_radius = 5e-4
        currents = current_distribution(coil.segments(), 1e3)
        fluxes = []
        for step in (0.0008, 0.0004, 0.0002, 0.0001):
            grid = scan_field_grid(coil, currents, step, wire_radius, boundary=0.001)
            fluxes.append(turn_fluxes(coil, grid, wire_radius))
        finest = fluxes[-1]
        self.assertTrue(np.all(finest > 0))
        diffs = [np.abs(b - a) / finest for a, b in zip(fluxes, fluxes[1:])]
        for d in diffs:
            self.assertTrue(np.all(d < 0.2))
        d_coarse, d_fine = diffs[0], diffs[-1]
        self.assertTrue(np.all(d_fine < d_coarse))


class TestInductance(unittest.TestCase):
    def setUp(self):
        self.coil = cylindrical_coil_geometry([0.002, 0.004, 0.006], 0.02, 60)

    def test_internal_inductance(self):
        l_coil = np.sqrt((2 * np.pi * 0.02)**2 + np.array([0.002, 0.004, 0.006])**2)
        np.testing.assert_allclose(internal_inductance(self.coil), MU0 * l_coil / (8 * np.pi))

    def test_external_uses_midpoint_current(self):
        currents = np.ones(60)
        currents[[10, 30, 50]] = [0.5, 0.25, 2.0]
        phi = np.array([1e-7, 2e-7, 3e-7])
        result = compute_inductance(self.coil, currents, phi)
        np.testing.assert_allclose(result.I_ref, [0.5, 0.25, 2.0])
        np.testing.assert_allclose(result.L_separate, [2e-7, 8e-7, 1.5e-7])
        self.assertAlmostEqual(result.L, float(np.sum(result.L_separate + internal_inductance(self.coil))),
                               places=18)

    def test_reference_current_and_surface_share_one_segment(self):
        # Tag each segment's current with its start height.
        currents = self.coil.segments().positions[:, 2] + 1.0
        result = compute_inductance(self.coil, currents, np.full(3, 1e-7))
        axis = np.array([-0.01, 0.0, 0.01])
        zeros = np.zeros((3, 3, 1))
        grid = FieldGrid(x=axis, y=axis, z=np.zeros(1), step=0.01, B_mag=zeros, Bz=zeros)
        for turn in (1, 2, 3):
            surface = map_flux_surface(self.coil, grid, turn, 3e-4)
            self.assertAlmostEqual(float(surface.height[1, 1]), result.I_ref[turn - 1] - 1.0, places=12)

    def test_vanishing_reference_current(self):
        currents = np.ones(60)
        currents[30] = 0.0
        with self.assertRaises(DegenerateInductanceError):
            compute_inductance(self.coil, currents, np.ones(3) * 1e-7)


class TestCapacitance(unittest.TestCase):
    def test_single_pair(self):
        r_w = 5e-4
        p = 2 * r_w * np.cosh(1.0)
        network = compute_capacitance([p, p], r_w, 0.04)
        self.assertAlmostEqual(network.C / (EPSILON_0 * np.pi**2 * 0.08), 1.0, places=12)
        self.assertEqual(network.C_2nd_NN.size, 0)

    def test_three_turn_chain(self):
        r_w = 5e-4
        d = 2 * r_w
        p = d * np.cosh(1.0)
        network = compute_capacitance([p, p, p], r_w, 0.04)
        C1 = EPSILON_0 * np.pi**2 * 0.08
        C2 = C1 / np.arccosh(4 * p / d)
        np.testing.assert_allclose(network.C_NN, [C1, C1], rtol=1e-12)
        self.assertAlmostEqual(network.C_NN_total * C1, 2.0, places=12)
        self.assertAlmostEqual(network.C / (C1 / 2 + C2), 1.0, places=12)

    def test_second_neighbour_span_is_not_halved(self):
        network = compute_capacitance([0.002, 0.004, 0.006, 0.008], 0.512e-3, 0.04)
        np.testing.assert_allclose(network.pitch_NN, [0.003, 0.005, 0.007])
        np.testing.assert_allclose(network.pitch_2nd_NN, [0.016, 0.024])

    def test_reference_fixture_value(self):
        network = compute_capacitance([0.002, 0.004, 0.006, 0.008], 0.512e-3, 0.04)
        np.testing.assert_allclose(network.C, 2.016e-12, rtol=1e-2)

    def test_single_turn_has_no_network(self):
        network = compute_capacitance([0.003], 5e-4, 0.04)
        self.assertEqual(network.C, 0.0)

    def test_closer_turns_increase_capacitance(self):
        base = np.array([0.002, 0.004, 0.006, 0.008])
        values = [compute_capacitance(base * f, 0.512e-3, 0.04).C for f in (1.0, 0.9, 0.8, 0.7)]
        self.assertTrue(all(a < b for a, b in zip(values, values[1:])))

    def test_pitch_below_wire_diameter(self):
        with self.assertRaises(DomainError) as ctx:
            compute_capacitance([0.002, 0.0009, 0.006], 0.512e-3, 0.04)
        self.assertEqual(ctx.exception.turns, (2,))

    def test_reports_every_offending_turn(self):
        with self.assertRaises(DomainError) as ctx:
            compute_capacitance([0.0011, 0.003, 0.0011], 0.6e-3, 0.04)
        self.assertEqual(ctx.exception.turns, (1, 3))


class TestResonantFrequency(unittest.TestCase):
    def test_formula(self):
        self.assertAlmostEqual(resonant_frequency(1e-6, 1e-12) * 2 * np.pi * 1e-9, 1.0, places=12)

    def test_degenerate(self):
        for L, C in ((1e-6, 0.0), (-1e-6, 1e-12), (np.inf, 1e-12), (np.nan, 1e-12)):
            with self.assertRaises(DegenerateInductanceError):
                resonant_frequency(L, C)


class TestSolveSRF(unittest.TestCase):
    def setUp(self):
        self.coil = cylindrical_coil_geometry([0.003, 0.004], 0.01, 40)

    def test_small_coil(self):
        result = solve_srf(self.coil, 1e3, 3e-4, 0.001, max_workers=1)
        self.assertGreater(result.L, 0)
        self.assertGreater(result.C, 0)
        self.assertAlmostEqual(result.f_res * 2 * np.pi * np.sqrt(result.L * result.C), 1.0, places=12)
        self.assertAlmostEqual(result.phi_total, float(np.sum(result.inductance.phi_area)))
        self.assertTrue(np.all(result.inductance.L_separate > 0))
        self.assertEqual(result.as_tuple(), (result.L, result.C, result.f_res))

    def test_thread_pool_is_deterministic(self):
        serial = solve_srf(self.coil, 1e3, 3e-4, 0.001, max_workers=1)
        pooled = solve_srf(self.coil, 1e3, 3e-4, 0.001, max_workers=4)
        self.assertEqual(serial.as_tuple(), pooled.as_tuple())

    def test_domain_rejected_before_field_scan(self):
        bad = cylindrical_coil_geometry([0.003, 0.0004], 0.01, 40)
        with mock.patch("srf_calculator.scan_field_grid") as scan:
            with self.assertRaises(DomainError):
                solve_srf(bad, 1e3, 3e-4, 0.001)
            with self.assertRaises(DomainError):
                srf_calculation_cylindrical_varied_pitch([0.002, 0.0009, 0.006, 0.008], 4, 1e3,
                                                         0.512e-3, 0.04, 200, 0.001)
        scan.assert_not_called()

    def test_parameter_validation(self):
        with self.assertRaises(GeometryError):
            srf_calculation_cylindrical_varied_pitch([0.003, 0.004], 3, 1e3, 3e-4, 0.01, 40, 0.001)
        with self.assertRaises(GeometryError):
            srf_calculation_cylindrical_varied_pitch([0.003, 0.004], 2, 1e3, 3e-4, 0.01, 41, 0.001)
        with self.assertRaises(GeometryError):
            srf_calculation_cylindrical_varied_pitch([0.003, 0.004], 2, 1e3, 0.02, 0.01, 40, 0.001)
        with self.assertRaises(GeometryError):
            solve_srf(self.coil, 1e3, 3e-4, 0.0)
        with self.assertRaises(GeometryError):
            solve_srf(self.coil, -1.0, 3e-4, 0.001)

    def test_single_turn_has_no_resonance(self):
        with self.assertRaises(DegenerateInductanceError):
            srf_calculation_cylindrical_varied_pitch([0.003], 1, 1e3, 3e-4, 0.01, 40, 0.002)

    def test_uniform_pitch_entry_point(self):
        uniform = srf_calculation_cylindrical_uniform_pitch(0.003, 2, 1e3, 3e-4, 0.01, 40, 0.001,
                                                            max_workers=1)
        varied = srf_calculation_cylindrical_varied_pitch([0.003, 0.003], 2, 1e3, 3e-4, 0.01, 40,
                                                          0.001, max_workers=1)
        self.assertEqual(uniform, varied)


class TestReferenceFixture(unittest.TestCase):
    def test_four_turn_varied_pitch_solenoid(self):
        L, C, f_res = srf_calculation_cylindrical_varied_pitch(**default_srf_params)
        np.testing.assert_allclose(L, 1.9492e-06, rtol=1e-3)
        np.testing.assert_allclose(C, 2.01597e-12, rtol=1e-3)
        np.testing.assert_allclose(f_res, 8.02877e+07, rtol=1e-3)


if __name__ == "__main__":
    unittest.main()
