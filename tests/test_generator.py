"""
Tests for particle generation: diameter distributions, shape sources and the
lattice creator.
"""

import math

import numpy as np
import pytest
import trimesh

from packing3d.config import ConfigurationError, DomainKind, ScaleMode, ShapeConfig
from packing3d.domain import BlockDomain, make_ranks
from packing3d.generator import (ContinuousSieving, DiscreteSieving, DistributionFormGenerator, EllipsoidGenerator,
                                 LogNormalDiameter, ParticleCreator, SampleFormGenerator, ShapeGenerator,
                                 SphereGenerator, UniformDiameter, create_shape_generator, hcp_lattice,
                                 mean_diameters_from_sieve_sizes, normalize_form,
                                 percentile_from_sieve_distribution, resolve_seed, spacing_scaling)


# ==============================================================================
# DIAMETER DISTRIBUTIONS
# ==============================================================================

class TestDiameterSources:

    def test_uniform(self):
        source = UniformDiameter(0.7)
        assert source.get() == 0.7
        assert source.generation_range() == (0.7, 0.7)

    def test_same_seed_same_sequence(self):
        a = LogNormalDiameter(0.0, 0.04, seed=12)
        b = LogNormalDiameter(0.0, 0.04, seed=12)
        assert [a.get() for _ in range(20)] == [b.get() for _ in range(20)]

    def test_lognormal_range_covers_samples(self):
        source = LogNormalDiameter(0.0, 0.01, seed=3)
        lo, hi = source.generation_range()
        samples = [source.get() for _ in range(500)]
        assert lo < min(samples) and max(samples) < hi

    def test_discrete_sieving_draws_configured_classes(self):
        source = DiscreteSieving([1.0, 2.0, 3.0], [0.5, 0.0, 0.5], seed=1, normal_volume=math.pi / 6.0,
                                 total_mass=100.0, density=1.0)
        samples = {source.get() for _ in range(200)}
        assert samples == {1.0, 3.0}
        assert source.generation_range() == (1.0, 3.0)

    def test_discrete_sieving_numbers_follow_mass(self):
        # equal mass in both classes: the small class holds 8 times as many particles
        source = DiscreteSieving([1.0, 2.0], [0.5, 0.5], seed=1, normal_volume=math.pi / 6.0,
                                 total_mass=100.0, density=1.0)
        assert source.expected_numbers[0] / source.expected_numbers[1] == pytest.approx(8.0)
        assert source.probabilities.sum() == pytest.approx(1.0)

    def test_continuous_sieving_stays_inside_sieves(self):
        source = ContinuousSieving([1.0, 2.0, 4.0], [0.3, 0.7], seed=5, normal_volume=math.pi / 6.0,
                                   total_mass=10.0, density=1.0)
        samples = np.array([source.get() for _ in range(300)])
        assert np.all(samples >= 1.0) and np.all(samples <= 4.0)
        assert source.generation_range() == (1.0, 4.0)

    def test_mismatched_fractions(self):
        with pytest.raises(ConfigurationError):
            DiscreteSieving([1.0, 2.0], [1.0], seed=1, normal_volume=1.0, total_mass=1.0, density=1.0)

    def test_mean_diameters_from_sieve_sizes(self):
        np.testing.assert_allclose(mean_diameters_from_sieve_sizes([1.0, 4.0, 9.0]), [2.0, 6.0])

    def test_percentiles(self):
        assert percentile_from_sieve_distribution([1.0, 4.0], [0.5, 0.5], 50.0) == pytest.approx(1.0)
        assert percentile_from_sieve_distribution([1.0, 4.0], [0.5, 0.5], 75.0) == pytest.approx(2.0)

    def test_resolve_seed(self):
        assert resolve_seed(5) == 5
        assert resolve_seed(-1) > 0


# ==============================================================================
# SHAPE SOURCES
# ==============================================================================

class TestShapeSources:

    def test_normalize_form_sphere_equivalent(self):
        form = normalize_form((3.0, 1.0, 2.0), ScaleMode.SPHERE_EQUIVALENT)
        assert np.all(np.diff(form) >= 0.0)
        # volume of the sphere with unit diameter
        assert 4.0 / 3.0 * math.pi * np.prod(form) == pytest.approx(math.pi / 6.0)

    def test_normalize_form_sieve_like(self):
        form = normalize_form((1.0, 2.0, 3.0), ScaleMode.SIEVE_LIKE)
        np.testing.assert_allclose(form, [0.25, 0.5, 0.75])

    def test_ellipsoid_sieve_like_diameter_is_intermediate_axis(self):
        generator = EllipsoidGenerator(SampleFormGenerator([(1.0, 2.0, 3.0)], ScaleMode.SIEVE_LIKE))
        shape = generator.create(2.0)
        np.testing.assert_allclose(shape.semi_axes(), [0.5, 1.0, 1.5])
        assert generator.max_diameter_scaling_factor() == pytest.approx(1.5)
        assert generator.generates_single_shape()

    def test_shape_source_needs_all_hooks(self):
        with pytest.raises(TypeError):
            ShapeGenerator()

        class Incomplete(ShapeGenerator):
            def create(self, diameter):
                return None

        with pytest.raises(TypeError):
            Incomplete()

    def test_draw_shape_scales_down_large_particles(self):
        shape = SphereGenerator().draw_shape(4.0, max_interaction_radius=1.5)
        assert shape.bounding_radius() == pytest.approx(1.5)
        shape = SphereGenerator().draw_shape(2.0, max_interaction_radius=1.5)
        assert shape.bounding_radius() == pytest.approx(1.0)

    def test_form_distribution_is_clipped(self):
        generator = DistributionFormGenerator(0.3, 0.5, 0.3, 0.5, ScaleMode.SIEVE_LIKE, seed=2)
        for _ in range(100):
            s, i, l = generator.get()
            assert s <= i <= l
            assert 0.1 - 1e-12 <= i / l <= 1.0 + 1e-12
            assert 0.1 - 1e-12 <= s / i <= 1.0 + 1e-12
        assert not generator.generates_single_form()

    def test_spacing_scaling(self):
        assert np.all(spacing_scaling(SphereGenerator(), True) == 1.0)
        generator = EllipsoidGenerator(SampleFormGenerator([(1.0, 2.0, 3.0)], ScaleMode.SIEVE_LIKE))
        np.testing.assert_allclose(spacing_scaling(generator, True), [0.5, 1.0, 1.5])
        np.testing.assert_allclose(spacing_scaling(generator, False), [1.0, 1.0, 1.0])


class TestMeshShapes:

    @pytest.fixture
    def box_folder(self, tmp_path):
        folder = tmp_path / "meshes"
        folder.mkdir()
        trimesh.creation.box(extents=(1.0, 2.0, 3.0)).export(str(folder / "box.obj"))
        return folder

    def test_mesh_keeps_volume_equivalent_diameter(self, box_folder):
        generator = create_shape_generator(ShapeConfig(kind="Mesh", mesh_files=[str(box_folder)]))
        shape = generator.create(2.0)
        assert shape.volume() == pytest.approx(math.pi / 6.0 * 8.0, rel=1e-6)
        assert generator.generates_single_shape()

    def test_equivalent_ellipsoid_of_box(self, box_folder):
        generator = create_shape_generator(ShapeConfig(kind="EquivalentEllipsoid", scale_mode="sieveLike",
                                                       mesh_files=[str(box_folder / "box.obj")]))
        shape = generator.create(2.0)
        # the equivalent ellipsoid keeps the 1:2:3 proportions of the box
        np.testing.assert_allclose(shape.semi_axes(), [0.5, 1.0, 1.5], rtol=1e-6)

    def test_missing_mesh_file(self, tmp_path):
        config = ShapeConfig(kind="Mesh", mesh_files=[str(tmp_path / "missing.obj")])
        with pytest.raises(ConfigurationError):
            create_shape_generator(config)


# ==============================================================================
# LATTICE CREATOR
# ==============================================================================

class TestLattice:

    def test_hcp_nearest_neighbour_distance(self):
        points = hcp_lattice((-3.0, -3.0, -3.0), (3.0, 3.0, 3.0), (0.0, 0.0, 0.0), 1.0)
        assert len(points) > 100
        delta = points[:, None, :] - points[None, :, :]
        distance = np.linalg.norm(delta, axis=2)
        np.fill_diagonal(distance, np.inf)
        assert distance.min() == pytest.approx(1.0)
        # every interior point has the 12 neighbours of a close packing
        interior = np.all(np.abs(points) < 1.5, axis=1)
        neighbours = np.sum(np.isclose(distance[interior], 1.0), axis=1)
        assert np.all(neighbours == 12)

    def test_hcp_empty_box(self):
        assert len(hcp_lattice((0.0, 0.0, 1.0), (1.0, 1.0, 0.0), (0.0, 0.0, 0.0), 1.0)) == 0
        with pytest.raises(ValueError):
            hcp_lattice((0.0, 0.0, 0.0), (1.0, 1.0, 1.0), (0.0, 0.0, 0.0), 0.0)


def _create(num_ranks, setup=DomainKind.PERIODIC, spacing=1.0, diameter_source=None, max_radius=math.inf,
            width=6.0):
    periodic = (True, True, False) if setup == DomainKind.PERIODIC else (False, False, False)
    domain = BlockDomain((-0.5 * width, -0.5 * width, 0.0), (0.5 * width, 0.5 * width, 6.0),
                         (num_ranks, 1, 1), periodic, num_ranks)
    ranks = make_ranks(num_ranks)
    total = 0
    for r in ranks:
        r.creator = ParticleCreator(r, domain, setup, 1000.0, True, reserved_uids=3)
        source = diameter_source() if diameter_source else LogNormalDiameter(-0.5, 0.01, seed=7)
        total += r.creator.create_particles(1.0, 3.0, spacing, source, SphereGenerator(), 0.0, max_radius)
    return domain, ranks, total


class TestParticleCreator:

    def test_uids_are_unique_and_skip_reserved(self):
        _, ranks, total = _create(2)
        uids = np.concatenate([r.storage.uid for r in ranks])
        assert len(uids) == total > 0
        assert len(set(uids.tolist())) == total
        assert uids.min() >= 3

    def test_particles_are_created_on_their_owner(self):
        domain, ranks, _ = _create(3)
        for r in ranks:
            assert np.all(domain.find_owner(r.storage.position) == r.rank)
            assert np.all(r.storage.owner == r.rank)

    def test_diameters_do_not_depend_on_partition(self):
        def radii_by_position(ranks):
            result = {}
            for r in ranks:
                s = r.storage
                for i in range(len(s)):
                    result[tuple(np.round(s.position[i], 9))] = s.interaction_radius[i]
            return result

        _, single, _ = _create(1)
        _, split, _ = _create(3)
        assert radii_by_position(single) == radii_by_position(split)

    def test_container_keeps_particles_inside_wall(self):
        _, ranks, total = _create(1, setup=DomainKind.CONTAINER)
        s = ranks[0].storage
        assert total > 0
        assert np.all(np.hypot(s.position[:, 0], s.position[:, 1]) <= 3.0 - 0.5 + 1e-12)

    def test_zero_initial_velocity(self):
        _, ranks, _ = _create(1)
        assert np.all(ranks[0].storage.linear_velocity == 0.0)

    def test_interaction_radius_is_clamped_to_periodic_bound(self):
        # radius 3 is 1.5 times the allowed radius w / 4 = 2
        _, ranks, total = _create(1, spacing=5.0, diameter_source=lambda: UniformDiameter(6.0),
                                  max_radius=2.0, width=8.0)
        s = ranks[0].storage
        assert total > 0
        assert np.all(s.interaction_radius <= 2.0 + 1e-12)
