"""
Tests for the collision response solvers.
"""

import numpy as np
import pytest

from packing3d.config import DEMConfig, HCSITSConfig, PackingConfig, RelaxationModel
from packing3d.datastruct import HalfSpace
from packing3d.solver import (DEMSolver, HCSITSSolver, SolverDispatcher, clamp_radially, project_impulses,
                             project_on_friction_cone, semi_implicit_euler)


def stacked_pair(make_setup, gap=0.999, velocity=None):
    """Two spheres of radius 0.5 on top of each other, overlapping by 1 - gap."""
    setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
    setup.add_sphere(3, (0.0, 0.0, 1.0), 0.5, velocity=velocity)
    setup.add_sphere(4, (0.0, 0.0, 1.0 + gap), 0.5)
    setup.detect(1.0)
    return setup


def relative_normal_velocity(setup):
    s = setup.ranks[0].storage
    c = setup.ranks[0].contacts
    i, j = c.id1[0], c.id2[0]
    return float(np.dot(s.linear_velocity[i] - s.linear_velocity[j], c.normal[0]))


# ==============================================================================
# HCSITS
# ==============================================================================

class TestHCSITS:

    @pytest.mark.parametrize("model", list(RelaxationModel))
    def test_single_iteration_removes_overlap(self, make_setup, model):
        setup = stacked_pair(make_setup)
        assert len(setup.ranks[0].contacts) == 1
        config = HCSITSConfig(number_of_iterations=1, relaxation_model=model, relaxation_parameter=1.0)
        HCSITSSolver(config, 0.0).step(setup.ranks, setup.comm, 1e-3)
        # erp * penetration / dt = 0.8 * 1e-3 / 1e-3
        assert relative_normal_velocity(setup) == pytest.approx(0.8, rel=1e-9)

    @pytest.mark.parametrize("model", list(RelaxationModel))
    def test_normal_velocity_never_approaches(self, make_setup, model):
        setup = stacked_pair(make_setup, gap=0.99)
        config = HCSITSConfig(number_of_iterations=5, relaxation_model=model)
        HCSITSSolver(config, 0.0).step(setup.ranks, setup.comm, 1e-3)
        assert relative_normal_velocity(setup) >= 0.0

    def test_impulse_is_stored_as_force(self, make_setup):
        setup = stacked_pair(make_setup)
        config = HCSITSConfig(number_of_iterations=1, relaxation_parameter=1.0)
        HCSITSSolver(config, 0.0).step(setup.ranks, setup.comm, 1e-3)
        c = setup.ranks[0].contacts
        force = c.solver_data["force"][0]
        # the force on particle 1 is repulsive, along the normal
        assert np.dot(force, c.normal[0]) > 0.0
        np.testing.assert_allclose(np.cross(force, c.normal[0]), 0.0, atol=1e-12)

    def test_positions_are_integrated(self, make_setup):
        setup = stacked_pair(make_setup)
        s = setup.ranks[0].storage
        lower = s.position[s.find(3)].copy()
        HCSITSSolver(HCSITSConfig(number_of_iterations=1), 9.81).step(setup.ranks, setup.comm, 1e-3)
        assert s.position[s.find(3), 2] < lower[2]

    def test_sphere_resting_on_plane(self, make_setup):
        setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
        setup.add_global(0, (0.0, 0.0, 0.0), HalfSpace((0.0, 0.0, 1.0)))
        setup.add_sphere(3, (0.0, 0.0, 0.4999), 0.5, velocity=(0.0, 0.0, -1.0))
        setup.detect(1.0)
        HCSITSSolver(HCSITSConfig(number_of_iterations=10), 9.81).step(setup.ranks, setup.comm, 1e-3)
        s = setup.ranks[0].storage
        assert s.linear_velocity[s.find(3), 2] >= 0.0
        # the plane does not move
        np.testing.assert_allclose(s.position[s.find(0)], 0.0)
        np.testing.assert_allclose(s.linear_velocity[s.find(0)], 0.0)

    def test_gravity_without_contacts(self, make_setup):
        setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
        setup.add_sphere(3, (0.0, 0.0, 2.0), 0.5)
        setup.detect(1.0)
        HCSITSSolver(HCSITSConfig(), 2.0).step(setup.ranks, setup.comm, 0.01)
        s = setup.ranks[0].storage
        np.testing.assert_allclose(s.linear_velocity[0], [0.0, 0.0, -0.02])
        assert s.position[0, 2] == pytest.approx(2.0 - 0.0002)


class TestConeProjections:

    def test_inside_cone_is_unchanged(self):
        p = np.array([1.0, 0.2, 0.1])
        np.testing.assert_allclose(project_on_friction_cone(p, 0.5), p)

    def test_polar_cone_maps_to_zero(self):
        np.testing.assert_allclose(project_on_friction_cone(np.array([-1.0, 0.1, 0.0]), 0.5), 0.0)

    def test_projection_onto_cone_surface(self):
        projected = project_on_friction_cone(np.array([1.0, 3.0, 0.0]), 0.5)
        np.testing.assert_allclose(projected, [2.0, 1.0, 0.0])

    def test_radial_clamp_keeps_normal_impulse(self):
        np.testing.assert_allclose(clamp_radially(np.array([1.0, 3.0, 4.0]), 0.5), [1.0, 0.3, 0.4])
        np.testing.assert_allclose(clamp_radially(np.array([-1.0, 3.0, 4.0]), 0.5), 0.0)


# ==============================================================================
# DEM
# ==============================================================================

class TestDEM:

    def test_overlapping_pair_is_pushed_apart(self, make_setup):
        setup = stacked_pair(make_setup, gap=0.9)
        DEMSolver(DEMConfig(collision_time=0.05), 0.0).step(setup.ranks, setup.comm, 1e-3)
        assert relative_normal_velocity(setup) > 0.0
        s = setup.ranks[0].storage
        # equal masses: the total momentum stays zero
        np.testing.assert_allclose(s.linear_velocity.sum(axis=0), 0.0, atol=1e-12)
        assert np.all(s.force == 0.0)

    def test_contact_force_follows_spring_law(self, make_setup):
        setup = stacked_pair(make_setup, gap=0.9)
        config = DEMConfig(collision_time=0.05)
        DEMSolver(config, 0.0).step(setup.ranks, setup.comm, 1e-3)
        s = setup.ranks[0].storage
        c = setup.ranks[0].contacts
        kn, _, _, _ = config.stiffness_and_damping(0.5 / s.inv_mass[0])
        np.testing.assert_allclose(c.solver_data["force"][0], kn * 0.1 * c.normal[0])

    def test_tangential_history_is_keyed_by_partner(self, make_setup):
        setup = stacked_pair(make_setup, gap=0.9, velocity=(0.1, 0.0, 0.0))
        DEMSolver(DEMConfig(collision_time=0.05, friction_static=10.0), 0.0).step(setup.ranks, setup.comm, 1e-3)
        s = setup.ranks[0].storage
        lower, upper = s.find(3), s.find(4)
        # after the step the new history has become the old one
        spring = s.old_contact_history[lower][4]
        np.testing.assert_allclose(spring, [1e-4, 0.0, 0.0])
        np.testing.assert_allclose(s.old_contact_history[upper][3], -spring)

    def test_free_fall(self, make_setup):
        setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
        setup.add_sphere(3, (0.0, 0.0, 2.0), 0.5)
        setup.detect(1.0)
        DEMSolver(DEMConfig(), 2.0).step(setup.ranks, setup.comm, 0.01)
        s = setup.ranks[0].storage
        np.testing.assert_allclose(s.linear_velocity[0], [0.0, 0.0, -0.02])


class TestSolverDispatcher:

    def test_dem(self, config_dict):
        config = PackingConfig.from_dict(config_dict())
        solver = SolverDispatcher.create(config)
        assert isinstance(solver, DEMSolver)
        assert solver.gravity[2] == pytest.approx(-config.particle_props.reduced_gravitational_acceleration)

    def test_hcsits(self, config_dict):
        config = PackingConfig.from_dict(config_dict(Solver={"solver": "HCSITS"}))
        solver = SolverDispatcher.create(config)
        assert isinstance(solver, HCSITSSolver)
        assert solver.name == "HCSITS"


# ==============================================================================
# KERNELS
# ==============================================================================

class TestKernels:

    def test_force_free_particle_keeps_velocity_exactly(self, make_setup):
        # double precision even though the package is imported before ti.init
        setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
        setup.add_sphere(3, (0.0, 0.0, 2.0), 0.5, velocity=(0.1, 0.0, 0.0))
        s = setup.ranks[0].storage
        semi_implicit_euler(s, s.owned_mask, 1.0)
        assert s.linear_velocity[0, 0] == 0.1
        assert s.position[0, 0] == 0.1

    def test_vectorised_cone_projection(self):
        p = np.array([[1.0, 0.2, 0.1], [-1.0, 0.1, 0.0], [1.0, 3.0, 0.0]])
        expected = [project_on_friction_cone(row, 0.5) for row in p]
        np.testing.assert_allclose(project_impulses(p, 0.5), expected)
        np.testing.assert_allclose(project_impulses(p, [0.5, 0.5, 0.0])[2], [1.0, 0.0, 0.0])

    def test_sweep_is_sequential(self, make_setup):
        # three overlapping spheres in a column, both contacts share the middle sphere
        setup = make_setup((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0))
        setup.add_sphere(3, (0.0, 0.0, 1.0), 0.5)
        setup.add_sphere(4, (0.0, 0.0, 1.999), 0.5)
        setup.add_sphere(5, (0.0, 0.0, 2.998), 0.5)
        setup.detect(1.0)
        s = setup.ranks[0].storage
        c = setup.ranks[0].contacts
        assert len(c) == 2
        solver = HCSITSSolver(HCSITSConfig(relaxation_model=RelaxationModel.INELASTIC_FRICTIONLESS), 0.0)
        solver.init_contacts(s, c)
        solver.init_particles(s, 1e-3)
        solver.relaxation_step(s, c, 1e-3)
        # the first contact separates its pair by 0.8, the second one also sees the
        # velocity correction of the shared sphere and has to push by 1.2
        dv = s.dv[[s.find(3), s.find(4), s.find(5)], 2]
        assert abs(dv[1]) == pytest.approx(0.2)
        assert np.max(np.abs(dv)) == pytest.approx(0.6)
        assert dv.sum() == pytest.approx(0.0, abs=1e-12)
