import numpy as np
import pytest
import taichi as ti

from packing3d.bpcd import ContactPipeline, HashGrids, LinkedCells
from packing3d.datastruct import GLOBAL, Sphere
from packing3d.domain import BlockDomain, Communicator, ContactFilter, NextNeighborSync, assoc_to_block, make_ranks

DENSITY = 1000.0


@pytest.fixture(scope="session", autouse=True)
def taichi_cpu():
    ti.init(arch=ti.cpu, default_fp=ti.f64)
    yield


class Setup:
    """Ranks, domain and communicator of a hand-built particle arrangement."""

    def __init__(self, aabb_min, aabb_max, blocks=(1, 1, 1), periodic=(False, False, False), num_ranks=1):
        self.domain = BlockDomain(aabb_min, aabb_max, blocks, periodic, num_ranks)
        self.comm = Communicator(num_ranks)
        self.ranks = make_ranks(num_ranks)

    def add_sphere(self, uid, position, radius, velocity=None, density=DENSITY):
        position = np.asarray(position, dtype=float)
        owner = int(self.domain.find_owner(position))
        self.ranks[owner].storage.create(uid, owner, position, Sphere(radius), density, linear_velocity=velocity)
        return owner

    def add_global(self, uid, position, shape):
        for r in self.ranks:
            r.storage.create(uid, r.rank, position, shape, DENSITY, flags=GLOBAL)

    def sync(self, passes=1):
        assoc_to_block(self.ranks, self.domain)
        sync = NextNeighborSync(self.domain, self.comm)
        for _ in range(passes):
            sync(self.ranks)

    def detect(self, max_diameter, sphere_only=True, use_hash_grids=False):
        pipeline = ContactPipeline(self.domain, ContactFilter(self.domain), sphere_only, use_hash_grids)
        for r in self.ranks:
            if use_hash_grids:
                r.broad_phase = HashGrids(self.domain, r.rank, max_diameter)
            else:
                r.broad_phase = LinkedCells(self.domain, r.rank, 1.01 * max_diameter)
            pipeline.run(r)


@pytest.fixture
def make_setup():
    return Setup


def packing_config_dict(output_folder, **overrides):
    """Small periodic DEM packing of unit spheres that settles within a few hundred steps."""
    main = {
        "domainSetup": "periodic",
        "domainWidth": 4.0,
        "domainHeight": 6.0,
        "numBlocksPerDirection": [1, 1, 1],
        "numProcesses": 1,
        "particleDensity": 2650.0,
        "ambientDensity": 1000.0,
        "initialVelocity": 0.0,
        "initialGenerationHeightRatioStart": 0.0,
        "initialGenerationHeightRatioEnd": 0.3,
        "generationSpacing": 1.2,
        "totalParticleMass": 1000.0,
        "terminalVelocity": 0.01,
        "terminalRelativeHeightChange": 1e-3,
        "terminationCheckingSpacing": 0.1,
        "velocityDampingCoefficient": 1e-3,
        "outFolder": str(output_folder),
        "infoSpacing": 0.5,
        "loggingSpacing": 0.1,
    }
    main.update(overrides.pop("main", {}))
    data = {
        "ParticlePacking": main,
        "Solver": {"solver": "DEM", "dt": 0.005, "DEM": {"collisionTime": 0.05}},
        "Distribution": {"distribution": "Uniform", "diameter": 1.0},
        "Shape": {"shape": "Sphere"},
        "Evaluation": {"histogramBins": [0.5, 1.0, 1.5], "layerHeight": 0.25},
    }
    for block, values in overrides.items():
        data.setdefault(block, {}).update(values)
    return data


@pytest.fixture
def config_dict(tmp_path):
    def build(**overrides):
        return packing_config_dict(tmp_path / "output", **overrides)
    return build
