"""
Particle shape sources.

A normalized form is the sorted triple of semi-axes (S, I, L) of a particle
with unit diameter. How a diameter maps to a size depends on the scale mode:

* sphereEquivalent: the diameter is that of the volume-equivalent sphere,
* sieveLike: the diameter is the length of the intermediate axis.

Shape sources scale the normalized form with the drawn diameter and shrink the
result whenever its interaction radius would exceed the allowed maximum.
"""

import glob
import logging
import math
import os
from abc import ABC, abstractmethod

import numpy as np
import trimesh

from ..config import ConfigurationError, ScaleMode, ShapeConfig, ShapeKind
from ..datastruct import ConvexPolyhedron, Ellipsoid, Sphere

logger = logging.getLogger(__name__)

_FORM_PARAMETER_MIN = 0.1
_MESH_EXTENSIONS = (".obj", ".stl", ".ply", ".off")


def normalize_form(semi_axes, scale_mode: ScaleMode) -> np.ndarray:
    """Sorted semi-axes of the particle with unit diameter."""
    form = np.sort(np.asarray(semi_axes, dtype=float))
    if np.any(form <= 0.0):
        raise ConfigurationError(f"Semi-axes must be positive, got {form}")
    if scale_mode == ScaleMode.SIEVE_LIKE:
        return 0.5 * form / form[1]
    return 0.5 * form / np.cbrt(np.prod(form))


def form_volume(form) -> float:
    return 4.0 / 3.0 * math.pi * float(np.prod(form))


#=====================================
# Form generators
#=====================================

class ConstFormGenerator:
    """Keeps the form of the underlying shape."""

    def __init__(self, scale_mode: ScaleMode = ScaleMode.SPHERE_EQUIVALENT):
        self.scale_mode = scale_mode

    def get(self):
        return normalize_form(np.ones(3), self.scale_mode)

    def max_diameter_scaling_factor(self) -> float:
        return 1.0

    def normal_volume(self) -> float:
        return form_volume(self.get())

    def normal_form_parameters(self):
        return np.ones(3)

    def generates_single_form(self) -> bool:
        return True


class SampleFormGenerator:
    """Draws one of the given semi-axes samples."""

    def __init__(self, semi_axes_samples, scale_mode: ScaleMode, seed: int = 0):
        if len(semi_axes_samples) == 0:
            raise ConfigurationError("At least one semi-axes sample is required")
        self.scale_mode = scale_mode
        self.forms = np.array([normalize_form(s, scale_mode) for s in semi_axes_samples])
        self.rng = np.random.default_rng(seed)

    def get(self):
        if len(self.forms) == 1:
            return self.forms[0].copy()
        return self.forms[int(self.rng.integers(len(self.forms)))].copy()

    def max_diameter_scaling_factor(self):
        return float(2.0 * np.max(self.forms))

    def normal_volume(self):
        return float(np.mean([form_volume(f) for f in self.forms]))

    def normal_form_parameters(self):
        return np.mean(self.forms, axis=0)

    def generates_single_form(self):
        return len(self.forms) == 1


class DistributionFormGenerator:
    """
    Normally distributed elongation (I/L) and flatness (S/I).

    Samples are clipped to [0.1, 1].
    """

    def __init__(self, elongation_mean: float, elongation_std: float,
                 flatness_mean: float, flatness_std: float, scale_mode: ScaleMode, seed: int = 0):
        self.elongation_mean = elongation_mean
        self.elongation_std = elongation_std
        self.flatness_mean = flatness_mean
        self.flatness_std = flatness_std
        self.scale_mode = scale_mode
        self.rng = np.random.default_rng(seed)

    @staticmethod
    def form_from_parameters(elongation: float, flatness: float):
        return np.array([flatness * elongation, elongation, 1.0])

    def get(self):
        elongation = np.clip(self.rng.normal(self.elongation_mean, self.elongation_std), _FORM_PARAMETER_MIN, 1.0)
        flatness = np.clip(self.rng.normal(self.flatness_mean, self.flatness_std), _FORM_PARAMETER_MIN, 1.0)
        return normalize_form(self.form_from_parameters(elongation, flatness), self.scale_mode)

    def max_diameter_scaling_factor(self):
        # bounded by the most extreme form within three standard deviations
        elongation = float(np.clip(self.elongation_mean - 3.0 * self.elongation_std, _FORM_PARAMETER_MIN, 1.0))
        flatness = float(np.clip(self.flatness_mean - 3.0 * self.flatness_std, _FORM_PARAMETER_MIN, 1.0))
        form = normalize_form(self.form_from_parameters(elongation, flatness), self.scale_mode)
        return float(2.0 * form[2])

    def normal_volume(self):
        return form_volume(normalize_form(self.normal_form_parameters(), self.scale_mode))

    def normal_form_parameters(self):
        elongation = float(np.clip(self.elongation_mean, _FORM_PARAMETER_MIN, 1.0))
        flatness = float(np.clip(self.flatness_mean, _FORM_PARAMETER_MIN, 1.0))
        return self.form_from_parameters(elongation, flatness)

    def generates_single_form(self):
        return self.elongation_std == 0.0 and self.flatness_std == 0.0


#=====================================
# Mesh helpers
#=====================================

def collect_mesh_files(entries):
    """Expand directories into the mesh files they contain (sorted)."""
    files = []
    for entry in entries:
        if os.path.isdir(entry):
            found = sorted(f for f in glob.glob(os.path.join(entry, "*"))
                           if f.lower().endswith(_MESH_EXTENSIONS))
            if not found:
                raise ConfigurationError(f"No mesh files found in {entry}")
            files.extend(found)
        elif os.path.isfile(entry):
            files.append(entry)
        else:
            raise ConfigurationError(f"Mesh file {entry} does not exist")
    return files


def load_convex_mesh(file_path: str) -> trimesh.Trimesh:
    """Convex hull of the mesh, centred at its centre of mass and aligned with its principal axes."""
    mesh = trimesh.load(file_path, force='mesh')
    hull = mesh.convex_hull
    hull.apply_transform(hull.principal_inertia_transform)
    return hull


def equivalent_ellipsoid_semi_axes(mesh: trimesh.Trimesh) -> np.ndarray:
    """
    Semi-axes (in principal frame axis order) of the ellipsoid with the mesh's
    volume and principal moments of inertia.
    """
    moments = np.diag(mesh.moment_inertia) / mesh.volume
    a2 = 2.5 * (moments[1] + moments[2] - moments[0])
    b2 = 2.5 * (moments[0] + moments[2] - moments[1])
    c2 = 2.5 * (moments[0] + moments[1] - moments[2])
    return np.sqrt(np.maximum([a2, b2, c2], 0.0))


def extract_semi_axes_from_mesh_files(mesh_files):
    return [np.sort(equivalent_ellipsoid_semi_axes(load_convex_mesh(f))) for f in mesh_files]


def polyhedron_from_mesh(mesh: trimesh.Trimesh) -> ConvexPolyhedron:
    return ConvexPolyhedron(np.asarray(mesh.vertices), float(mesh.volume), np.asarray(mesh.moment_inertia))


#=====================================
# Shape generators
#=====================================

class ShapeGenerator(ABC):
    """Base class of the particle shape sources."""

    @abstractmethod
    def create(self, diameter: float):
        pass

    def draw_shape(self, diameter: float, max_interaction_radius: float = math.inf):
        """Shape for the given diameter, shrunk to respect `max_interaction_radius`."""
        shape = self.create(diameter)
        radius = shape.bounding_radius()
        if radius > max_interaction_radius:
            logger.warning(f"Interaction radius {radius:.4g} of generated particle exceeds the maximum "
                           f"{max_interaction_radius:.4g}, shape is scaled down")
            shape = shape.scaled(max_interaction_radius / radius)
        return shape

    @abstractmethod
    def max_diameter_scaling_factor(self) -> float:
        pass

    @abstractmethod
    def normal_volume(self) -> float:
        pass

    @abstractmethod
    def normal_form_parameters(self):
        pass

    @abstractmethod
    def generates_single_shape(self) -> bool:
        pass


class SphereGenerator(ShapeGenerator):

    def create(self, diameter):
        return Sphere(0.5 * diameter)

    def max_diameter_scaling_factor(self):
        return 1.0

    def normal_volume(self):
        return math.pi / 6.0

    def normal_form_parameters(self):
        return np.ones(3)

    def generates_single_shape(self):
        return True


class EllipsoidGenerator(ShapeGenerator):

    def __init__(self, form_generator):
        self.form_generator = form_generator

    def create(self, diameter):
        return Ellipsoid(self.form_generator.get() * diameter)

    def max_diameter_scaling_factor(self):
        return self.form_generator.max_diameter_scaling_factor()

    def normal_volume(self):
        return self.form_generator.normal_volume()

    def normal_form_parameters(self):
        return self.form_generator.normal_form_parameters()

    def generates_single_shape(self):
        return self.form_generator.generates_single_form()


class MeshesGenerator(ShapeGenerator):
    """
    Convex meshes scaled to the drawn diameter.

    With a ConstFormGenerator the meshes keep their own form; any other form
    generator stretches the principal axes of the mesh to the drawn form.
    """

    def __init__(self, mesh_files, scale_mode: ScaleMode, form_generator, seed: int = 0):
        if not mesh_files:
            raise ConfigurationError("No mesh files given")
        self.scale_mode = scale_mode
        self.form_generator = form_generator
        self.keep_form = isinstance(form_generator, ConstFormGenerator)
        self.rng = np.random.default_rng(seed)

        self.meshes = []
        self.mesh_axes = []
        for file_path in mesh_files:
            mesh = load_convex_mesh(file_path)
            axes = equivalent_ellipsoid_semi_axes(mesh)
            if scale_mode == ScaleMode.SIEVE_LIKE:
                factor = normalize_form(axes, scale_mode)[0] / np.min(axes)
            else:
                factor = float(np.cbrt(math.pi / 6.0 / mesh.volume))
            mesh.apply_scale(factor)
            self.meshes.append(mesh)
            self.mesh_axes.append(axes * factor)
        self.unit_shapes = [polyhedron_from_mesh(m) for m in self.meshes]
        logger.info(f"Loaded {len(self.meshes)} mesh(es)")

    def _stretched(self, k: int):
        target = self.form_generator.get()
        axes = self.mesh_axes[k]
        order = np.argsort(axes)
        scaling = np.ones(3)
        scaling[order] = target / axes[order]
        mesh = self.meshes[k].copy()
        mesh.apply_transform(np.diag(np.append(scaling, 1.0)))
        return polyhedron_from_mesh(mesh)

    def create(self, diameter):
        k = 0 if len(self.meshes) == 1 else int(self.rng.integers(len(self.meshes)))
        unit = self.unit_shapes[k] if self.keep_form else self._stretched(k)
        return unit.scaled(diameter)

    def max_diameter_scaling_factor(self):
        radius_ratio = max(s.bounding_radius() / float(np.max(a)) for s, a in zip(self.unit_shapes, self.mesh_axes))
        if self.keep_form:
            return float(2.0 * max(s.bounding_radius() for s in self.unit_shapes))
        return radius_ratio * self.form_generator.max_diameter_scaling_factor()

    def normal_volume(self):
        if self.keep_form:
            return float(np.mean([s.volume() for s in self.unit_shapes]))
        return self.form_generator.normal_volume()

    def normal_form_parameters(self):
        if self.keep_form:
            return np.mean([np.sort(a) / np.sort(a)[1] for a in self.mesh_axes], axis=0)
        return self.form_generator.normal_form_parameters()

    def generates_single_shape(self):
        return len(self.meshes) == 1 and self.keep_form


def create_shape_generator(config: ShapeConfig, seed: int = 0) -> ShapeGenerator:
    kind, mode = config.kind, config.scale_mode
    if kind == ShapeKind.SPHERE:
        return SphereGenerator()
    if kind == ShapeKind.ELLIPSOID:
        return EllipsoidGenerator(SampleFormGenerator([config.semi_axes], mode, seed))
    if kind == ShapeKind.EQUIVALENT_ELLIPSOID:
        semi_axes = extract_semi_axes_from_mesh_files(collect_mesh_files(config.mesh_files))
        return EllipsoidGenerator(SampleFormGenerator(semi_axes, mode, seed))
    if kind == ShapeKind.ELLIPSOID_FORM_DISTRIBUTION:
        return EllipsoidGenerator(DistributionFormGenerator(config.elongation_mean, config.elongation_std,
                                                            config.flatness_mean, config.flatness_std, mode, seed))
    if kind == ShapeKind.MESH:
        return MeshesGenerator(collect_mesh_files(config.mesh_files), mode, ConstFormGenerator(mode), seed)
    if kind == ShapeKind.MESH_FORM_DISTRIBUTION:
        form_generator = DistributionFormGenerator(config.elongation_mean, config.elongation_std,
                                                   config.flatness_mean, config.flatness_std, mode, seed)
        return MeshesGenerator(collect_mesh_files(config.mesh_files), mode, form_generator, seed)
    raise ConfigurationError(f"Unknown particle shape {kind}")
