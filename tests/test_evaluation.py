"""
Tests for packing statistics, layer profiles, histograms and the output files
of a run.
"""

import math
import os
import sqlite3

import numpy as np
import pytest

from packing3d.config import DomainSetup, PackingConfig, ScaleMode
from packing3d.datastruct import ContactAggregateInfo, ParticleAggregateInfo
from packing3d.domain import Communicator
from packing3d.evaluation import (ContactInfoPerHorizontalLayerEvaluator, LoggingWriter, ParticleHistogram,
                                  PorosityPerHorizontalLayerEvaluator, RunRecorder, SizeEvaluator,
                                  assemble_particle_information, evaluate_contact_info, evaluate_particle_info,
                                  plot_packing, plot_porosity_profile, store_run_in_sqlite_db,
                                  store_timing_in_sqlite_db)
from packing3d.evaluation.layers import sphere_volume_between


def two_contacts(make_setup):
    """Two separate overlapping pairs, penetration 0.1 at z = 1 and 0.3 at z = 3."""
    setup = make_setup((0.0, 0.0, 0.0), (4.0, 4.0, 4.0))
    setup.add_sphere(3, (1.0, 1.0, 1.0), 0.5)
    setup.add_sphere(4, (1.9, 1.0, 1.0), 0.5)
    setup.add_sphere(5, (1.0, 1.0, 3.0), 0.5)
    setup.add_sphere(6, (1.7, 1.0, 3.0), 0.5)
    setup.detect(1.0)
    return setup


# ==============================================================================
# GLOBAL STATISTICS
# ==============================================================================

class TestAggregates:

    def test_particle_info_counts_owned_particles_once(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 2.0, 4.0), blocks=(2, 1, 1), num_ranks=2)
        setup.add_sphere(3, (1.8, 1.0, 1.0), 0.5)
        setup.add_sphere(4, (3.0, 1.0, 2.0), 0.5, velocity=(0.0, 0.0, -2.0))
        setup.sync()
        assert sum(len(r.storage) for r in setup.ranks) > 2
        result = evaluate_particle_info(setup.ranks, setup.comm)
        assert result.num_particles == 2
        assert result.particle_volume == pytest.approx(2.0 * math.pi / 6.0)
        assert result.maximum_height == pytest.approx(2.0)
        assert result.height_of_mass == pytest.approx(1.5)
        assert result.maximum_velocity == pytest.approx(2.0)

    def test_empty_packing(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 4.0, 4.0))
        assert evaluate_particle_info(setup.ranks, setup.comm) == ParticleAggregateInfo()
        assert evaluate_contact_info(setup.ranks, setup.comm) == ContactAggregateInfo()

    def test_contact_info(self, make_setup):
        setup = two_contacts(make_setup)
        result = evaluate_contact_info(setup.ranks, setup.comm)
        assert result.num_contacts == 2
        assert result.maximum_penetration_depth == pytest.approx(0.3)
        assert result.average_penetration_depth == pytest.approx(0.2)


# ==============================================================================
# LAYER PROFILES
# ==============================================================================

class TestLayers:

    def test_sphere_inside_one_slab(self):
        volume = sphere_volume_between([0.5], [0.5], [0.0, 1.0], [1.0, 2.0])
        np.testing.assert_allclose(volume, [[math.pi / 6.0, 0.0]])

    def test_split_sphere_keeps_its_volume(self):
        volume = sphere_volume_between([1.0, 1.3], [0.5, 0.4], [0.0, 1.0], [1.0, 2.0])
        np.testing.assert_allclose(volume[0], [math.pi / 12.0, math.pi / 12.0])
        assert volume[1].sum() == pytest.approx(4.0 / 3.0 * math.pi * 0.4 ** 3)
        assert volume[1, 0] < volume[1, 1]

    def test_porosity_profile(self, make_setup):
        setup = make_setup((-1.0, -1.0, 0.0), (1.0, 1.0, 2.0))
        setup.add_sphere(3, (-0.5, 0.0, 0.5), 0.5)
        setup.add_sphere(4, (0.5, 0.0, 1.5), 0.5)
        evaluator = PorosityPerHorizontalLayerEvaluator(1.0, DomainSetup(domain_width=2.0, domain_height=2.0))
        evaluator.evaluate(setup.ranks, setup.comm)
        np.testing.assert_allclose(evaluator.porosity, 1.0 - math.pi / 24.0)
        assert evaluator.maximum_height == pytest.approx(1.5)
        # only the lower layer lies below 90 % of the maximum height
        assert evaluator.estimate_total_porosity() == pytest.approx(1.0 - math.pi / 24.0)

    def test_porosity_of_empty_domain(self, make_setup):
        setup = make_setup((-1.0, -1.0, 0.0), (1.0, 1.0, 2.0))
        evaluator = PorosityPerHorizontalLayerEvaluator(0.5, DomainSetup(domain_width=2.0, domain_height=2.0))
        evaluator.evaluate(setup.ranks, setup.comm)
        np.testing.assert_allclose(evaluator.porosity, 1.0)
        assert evaluator.estimate_total_porosity() == 1.0

    def test_contact_profile(self, make_setup, tmp_path):
        setup = two_contacts(make_setup)
        evaluator = ContactInfoPerHorizontalLayerEvaluator(1.0, 4.0)
        evaluator.evaluate(setup.ranks, setup.comm)
        assert evaluator.num_contacts.tolist() == [0, 1, 0, 1]
        np.testing.assert_allclose(evaluator.mean_penetration_depth, [0.0, 0.1, 0.0, 0.3])

        file_name = str(tmp_path / "contacts.txt")
        evaluator.print_to_file(file_name)
        data = np.loadtxt(file_name)
        assert data.shape == (4, 3)
        np.testing.assert_allclose(data[:, 0], [0.5, 1.5, 2.5, 3.5])

    def test_invalid_layer_height(self):
        with pytest.raises(ValueError):
            ContactInfoPerHorizontalLayerEvaluator(0.0, 4.0)


# ==============================================================================
# HISTOGRAMS
# ==============================================================================

class TestHistogram:

    @pytest.fixture
    def spheres(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (8.0, 8.0, 8.0))
        for k, radius in enumerate((0.2, 0.4, 0.4, 0.6)):
            setup.add_sphere(k + 3, (1.0 + 1.5 * k, 1.0, 1.0), radius)
        return setup

    def test_size_classes(self, spheres):
        histogram = ParticleHistogram([0.5, 1.0, 1.5], SizeEvaluator(ScaleMode.SPHERE_EQUIVALENT))
        histogram.evaluate(spheres.ranks, spheres.comm)
        assert histogram.number_histogram.tolist() == [1, 2, 1, 0]
        volumes = np.array([0.064, 1.024, 1.728, 0.0])
        np.testing.assert_allclose(histogram.mass_fraction_histogram, volumes / volumes.sum())
        assert "mass fractions" in str(histogram)

    def test_spheres_are_isometric(self, spheres):
        histogram = ParticleHistogram([0.5, 1.0, 1.5], SizeEvaluator(ScaleMode.SIEVE_LIKE))
        histogram.evaluate(spheres.ranks, spheres.comm)
        assert histogram.num_shape_evaluators == 3
        for shape_histogram in histogram.shape_histograms:
            assert shape_histogram[-1] == pytest.approx(1.0)
            assert shape_histogram.sum() == pytest.approx(1.0)

    def test_empty_histogram(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (8.0, 8.0, 8.0))
        histogram = ParticleHistogram([1.0], SizeEvaluator(ScaleMode.SIEVE_LIKE))
        histogram.evaluate(setup.ranks, setup.comm)
        assert histogram.number_histogram.tolist() == [0, 0]


# ==============================================================================
# OUTPUT FILES
# ==============================================================================

class TestSqlite:

    def test_columns_are_added_on_demand(self, tmp_path):
        db = str(tmp_path / "runs.sqlite")
        first = store_run_in_sqlite_db(db, {"numParticles": 10}, {"solver": "DEM"}, {"porosity": 0.4})
        second = store_run_in_sqlite_db(db, {"numParticles": 12, "numContacts": 30}, {"solver": "HCSITS"},
                                        {"porosity": 0.38})
        assert second == first + 1
        with sqlite3.connect(db) as connection:
            rows = connection.execute(
                'SELECT runId, numParticles, numContacts, solver, porosity FROM runs ORDER BY runId').fetchall()
        assert rows == [(first, 10, None, "DEM", 0.4), (second, 12, 30, "HCSITS", 0.38)]

    def test_timing_table(self, tmp_path):
        db = str(tmp_path / "runs.sqlite")
        run_id = store_run_in_sqlite_db(db, {}, {}, {})
        timing = {
            "Simulation": {"total": 2.0, "count": 1, "min": 2.0, "max": 2.0, "average": 2.0},
            "Simulation.Contact detection": {"total": 0.5, "count": 10, "min": 0.04, "max": 0.06,
                                             "average": 0.05},
        }
        store_timing_in_sqlite_db(db, run_id, timing)
        with sqlite3.connect(db) as connection:
            rows = connection.execute('SELECT runId, sweep, count, percentage FROM Timing ORDER BY sweep').fetchall()
        assert rows == [(run_id, "Simulation", 1, 100.0), (run_id, "Simulation.Contact detection", 10, 25.0)]


class TestRecorder:

    def test_logging_writer(self, tmp_path):
        file_name = str(tmp_path / "logging.txt")
        writer = LoggingWriter(file_name)
        writer(0.5, ParticleAggregateInfo(4, 1.0, 2.0, 1.0, 0.1), ContactAggregateInfo(3, 0.01, 0.005), 0.4)
        writer(1.0, ParticleAggregateInfo(4, 1.0, 1.9, 0.9, 0.05), ContactAggregateInfo(5, 0.02, 0.01), 0.38)
        with open(file_name, encoding="UTF-8") as f:
            lines = f.read().splitlines()
        assert lines[0].startswith("# t numParticles")
        data = np.loadtxt(file_name)
        assert data.shape == (2, 10)
        np.testing.assert_allclose(data[:, 0], [0.5, 1.0])
        np.testing.assert_allclose(data[:, 6], [3, 5])

    def test_frames_and_particle_info(self, make_setup, tmp_path):
        setup = two_contacts(make_setup)
        recorder = RunRecorder(str(tmp_path / "out"), Communicator(1))
        base = recorder.save_frame(setup.ranks, 0.25, 3)
        assert base.endswith("_T000003")

        with open(base + ".p4p", encoding="UTF-8") as f:
            lines = f.read().splitlines()
        assert lines[1] == "0.25 4"
        assert len(lines) == 3 + 4
        with open(base + ".p4c", encoding="UTF-8") as f:
            lines = f.read().splitlines()
        assert lines[1] == "0.25 2"
        assert len(lines) == 3 + 2

        file_name = recorder.write_particle_info(setup.ranks, SizeEvaluator(ScaleMode.SPHERE_EQUIVALENT))
        data = np.loadtxt(file_name)
        assert data.shape == (4, 12)
        np.testing.assert_allclose(data[:, 4], 1.0)

    def test_particle_information_skips_ghosts(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 2.0, 4.0), blocks=(2, 1, 1), num_ranks=2)
        setup.add_sphere(3, (1.9, 1.0, 1.0), 0.5)
        setup.sync()
        text = assemble_particle_information(setup.ranks, SizeEvaluator(ScaleMode.SIEVE_LIKE))
        assert len(text.splitlines()) == 2

    def test_copy_config(self, tmp_path, config_dict):
        recorder = RunRecorder(str(tmp_path / "out"), Communicator(2))
        config = PackingConfig.from_dict(config_dict())
        dumped = recorder.copy_config(config)
        assert os.path.basename(dumped) == f"{recorder.identifier}_config.json"
        assert os.path.isfile(dumped)

        source = tmp_path / "packing.json"
        source.write_text("{}", encoding="UTF-8")
        copied = recorder.copy_config(config, str(source))
        assert copied == recorder.path("packing.json")
        with open(copied, encoding="UTF-8") as f:
            assert f.read() == "{}"

    def test_sqlite_disabled(self, tmp_path):
        recorder = RunRecorder(str(tmp_path / "out"), Communicator(1))
        assert recorder.store_in_sqlite({}, {}, {}, {}) is None

    def test_plots(self, make_setup, tmp_path):
        setup = make_setup((-1.0, -1.0, 0.0), (1.0, 1.0, 2.0))
        setup.add_sphere(3, (0.0, 0.0, 0.5), 0.5)
        evaluator = PorosityPerHorizontalLayerEvaluator(0.5, DomainSetup(domain_width=2.0, domain_height=2.0))
        evaluator.evaluate(setup.ranks, setup.comm)
        profile = plot_porosity_profile(evaluator, str(tmp_path / "plots" / "porosity.png"))
        snapshot = plot_packing(setup.ranks, (-1.0, -1.0, 0.0), (1.0, 1.0, 2.0), str(tmp_path / "packing.png"))
        assert os.path.getsize(profile) > 0
        assert os.path.getsize(snapshot) > 0
