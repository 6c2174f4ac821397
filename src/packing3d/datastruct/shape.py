"""
Particle shape descriptors.

Every shape is immutable after creation and described in its body frame. Finite
shapes provide a support mapping (the farthest surface point in a direction),
the unit-density inertia tensor and their principal semi-axes (sorted
ascending), which drive the shape statistics. Infinite shapes (half-spaces and
the cylindrical container wall) are only used as global boundary particles.
"""

import math

import numpy as np

#=====================================
# Shape type tags
#=====================================
SPHERE = 0
ELLIPSOID = 1
CONVEX_POLYHEDRON = 2
HALF_SPACE = 3
CYLINDRICAL_BOUNDARY = 4


class Shape:
    shape_type = -1
    is_infinite = False

    def volume(self) -> float:
        raise NotImplementedError

    def inertia_bf(self, density: float) -> np.ndarray:
        """Body frame inertia tensor for the given density."""
        raise NotImplementedError

    def support(self, direction: np.ndarray) -> np.ndarray:
        """Farthest point of the shape (body frame) along `direction` (body frame)."""
        raise NotImplementedError

    def bounding_radius(self) -> float:
        raise NotImplementedError

    def semi_axes(self) -> np.ndarray:
        raise NotImplementedError

    def scaled(self, factor: float) -> 'Shape':
        raise NotImplementedError


class Sphere(Shape):
    shape_type = SPHERE

    def __init__(self, radius: float):
        self.radius = float(radius)

    def volume(self):
        return 4.0 / 3.0 * math.pi * self.radius ** 3

    def inertia_bf(self, density):
        mass = density * self.volume()
        return 0.4 * mass * self.radius ** 2 * np.eye(3)

    def support(self, direction):
        norm = np.linalg.norm(direction)
        if norm == 0.0:
            return np.zeros(3)
        return self.radius * direction / norm

    def bounding_radius(self):
        return self.radius

    def semi_axes(self):
        return np.full(3, self.radius)

    def scaled(self, factor):
        return Sphere(self.radius * factor)

    def __repr__(self):
        return f"Sphere(radius={self.radius:.6g})"


class Ellipsoid(Shape):
    shape_type = ELLIPSOID

    def __init__(self, semi_axes):
        self.axes = np.asarray(semi_axes, dtype=float).copy()

    def volume(self):
        return 4.0 / 3.0 * math.pi * float(np.prod(self.axes))

    def inertia_bf(self, density):
        a, b, c = self.axes
        mass = density * self.volume()
        return mass / 5.0 * np.diag([b * b + c * c, a * a + c * c, a * a + b * b])

    def support(self, direction):
        # argmax over the surface of x.d is A^2 d / |A d|
        scaled = self.axes * direction
        norm = np.linalg.norm(scaled)
        if norm == 0.0:
            return np.zeros(3)
        return self.axes * scaled / norm

    def bounding_radius(self):
        return float(np.max(self.axes))

    def semi_axes(self):
        return np.sort(self.axes)

    def scaled(self, factor):
        return Ellipsoid(self.axes * factor)

    def __repr__(self):
        return f"Ellipsoid(semi_axes={np.array2string(self.axes, precision=4)})"


class ConvexPolyhedron(Shape):
    """Convex hull of a vertex cloud, centred at its centre of mass and aligned with its principal axes."""
    shape_type = CONVEX_POLYHEDRON

    def __init__(self, vertices, volume: float, unit_inertia):
        self.vertices = np.asarray(vertices, dtype=float).copy()
        self._volume = float(volume)
        self._unit_inertia = np.asarray(unit_inertia, dtype=float).copy()

    def volume(self):
        return self._volume

    def inertia_bf(self, density):
        return density * self._unit_inertia

    def support(self, direction):
        return self.vertices[int(np.argmax(self.vertices @ direction))]

    def bounding_radius(self):
        return float(np.max(np.linalg.norm(self.vertices, axis=1)))

    def semi_axes(self):
        extent = 0.5 * (self.vertices.max(axis=0) - self.vertices.min(axis=0))
        return np.sort(extent)

    def scaled(self, factor):
        return ConvexPolyhedron(self.vertices * factor, self._volume * factor ** 3,
                                self._unit_inertia * factor ** 5)

    def __repr__(self):
        return f"ConvexPolyhedron(num_vertices={len(self.vertices)}, volume={self._volume:.6g})"


class HalfSpace(Shape):
    """Solid half-space {x : (x - p).n <= 0}; the normal points into the free region."""
    shape_type = HALF_SPACE
    is_infinite = True

    def __init__(self, normal):
        normal = np.asarray(normal, dtype=float)
        self.normal = normal / np.linalg.norm(normal)

    def volume(self):
        return math.inf

    def inertia_bf(self, density):
        return np.zeros((3, 3))

    def bounding_radius(self):
        return math.inf

    def semi_axes(self):
        return np.full(3, math.inf)

    def __repr__(self):
        return f"HalfSpace(normal={self.normal})"


class CylindricalBoundary(Shape):
    """Inside of a vertical cylinder of the given radius; the solid region is outside."""
    shape_type = CYLINDRICAL_BOUNDARY
    is_infinite = True

    def __init__(self, radius: float, axis=(0.0, 0.0, 1.0)):
        self.radius = float(radius)
        axis = np.asarray(axis, dtype=float)
        self.axis = axis / np.linalg.norm(axis)

    def volume(self):
        return math.inf

    def inertia_bf(self, density):
        return np.zeros((3, 3))

    def bounding_radius(self):
        return math.inf

    def semi_axes(self):
        return np.full(3, math.inf)

    def __repr__(self):
        return f"CylindricalBoundary(radius={self.radius:.6g})"
