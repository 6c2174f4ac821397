"""
Narrow-phase contact detection.

All functions follow one convention: particle 1 is the finite particle with the
lower uid (infinite particles are always particle 2), the normal points from
particle 2 towards particle 1, and the signed distance is negative when the
particles overlap. Displacements between finite particles use the periodic
minimum image, so every rank holding the same two particles computes the very
same contact point. Detection never raises on degenerate geometry.
"""

import numpy as np
import taichi as ti

from ..datastruct import INFINITE
from ..datastruct.shape import CONVEX_POLYHEDRON, CYLINDRICAL_BOUNDARY, ELLIPSOID, HALF_SPACE, SPHERE
from ..datastruct.utils import DoublePrecisionTolerance, quat2RotMatrix

_FALLBACK_NORMAL = np.array([0.0, 0.0, 1.0])


def canonical_order(storage, I, J):
    """Swap pairs so that particle 1 is finite and has the lower uid."""
    I = np.asarray(I, dtype=np.int64)
    J = np.asarray(J, dtype=np.int64)
    inf_i = (storage.flags[I] & INFINITE) != 0
    inf_j = (storage.flags[J] & INFINITE) != 0
    swap = inf_i | (~inf_j & (storage.uid[I] > storage.uid[J]))
    return np.where(swap, J, I), np.where(swap, I, J)


def _empty():
    z = np.zeros(0)
    z3 = np.zeros((0, 3))
    zi = np.zeros(0, dtype=np.int64)
    return zi, zi, z, z3, z3, z3, z3


#=====================================
# Analytic (sphere) detection, vectorised
#=====================================

def sphere_sphere(positions, radii, I, J, domain, threshold: float = 0.0):
    """Vectorised sphere-sphere contacts; returns (I, J, distance, normal, point, r1, r2) of touching pairs."""
    if len(I) == 0:
        return _empty()
    delta = domain.min_image(positions[I] - positions[J])
    dist = np.linalg.norm(delta, axis=1)
    degenerate = dist <= DoublePrecisionTolerance
    safe = np.where(degenerate, 1.0, dist)
    normal = np.where(degenerate[:, None], _FALLBACK_NORMAL, delta / safe[:, None])
    penetration = dist - radii[I] - radii[J]
    hit = penetration < threshold
    x1 = positions[I][hit]
    x2 = x1 - delta[hit]
    n = normal[hit]
    pen = penetration[hit]
    point = x2 + n * (radii[J][hit] + 0.5 * pen)[:, None]
    return I[hit], J[hit], pen, n, point, point - x1, point - x2


def sphere_halfspace(positions, radii, I, J, storage, threshold: float = 0.0):
    if len(I) == 0:
        return _empty()
    plane_normal = np.array([storage.shapes[j].normal for j in J]).reshape(-1, 3)
    distance_center = np.einsum("ij,ij->i", positions[I] - positions[J], plane_normal)
    penetration = distance_center - radii[I]
    hit = penetration < threshold
    n = plane_normal[hit]
    x1 = positions[I][hit]
    pen = penetration[hit]
    point = x1 - n * (radii[I][hit] + 0.5 * pen)[:, None]
    return I[hit], J[hit], pen, n, point, point - x1, point - positions[J][hit]


def sphere_cylinder(positions, radii, I, J, storage, threshold: float = 0.0):
    if len(I) == 0:
        return _empty()
    axis = np.array([storage.shapes[j].axis for j in J]).reshape(-1, 3)
    cyl_radius = np.array([storage.shapes[j].radius for j in J])
    rel = positions[I] - positions[J]
    radial = rel - np.einsum("ij,ij->i", rel, axis)[:, None] * axis
    rho = np.linalg.norm(radial, axis=1)
    degenerate = rho <= DoublePrecisionTolerance
    outward = np.where(degenerate[:, None], np.array([1.0, 0.0, 0.0]),
                       radial / np.where(degenerate, 1.0, rho)[:, None])
    penetration = cyl_radius - rho - radii[I]
    hit = penetration < threshold
    n = -outward[hit]
    x1 = positions[I][hit]
    pen = penetration[hit]
    point = x1 - n * (radii[I][hit] + 0.5 * pen)[:, None]
    return I[hit], J[hit], pen, n, point, point - x1, point - positions[J][hit]


def analytic_contacts(storage, I, J, domain, radii=None, threshold: float = 0.0):
    """
    Sphere contacts of canonically ordered candidate pairs.

    `radii` defaults to the interaction radii, which for spheres are the sphere
    radii; passing interaction radii of other shapes gives the bounding sphere check.
    """
    positions = storage.position
    radii = storage.interaction_radius if radii is None else radii
    types = np.array([shape.shape_type for shape in storage.shapes], dtype=np.int64)
    shape_type = types[J]
    inf_j = (storage.flags[J] & INFINITE) != 0
    parts = [
        sphere_sphere(positions, radii, I[~inf_j], J[~inf_j], domain, threshold),
        sphere_halfspace(positions, radii, I[shape_type == HALF_SPACE], J[shape_type == HALF_SPACE],
                         storage, threshold),
        sphere_cylinder(positions, radii, I[shape_type == CYLINDRICAL_BOUNDARY],
                        J[shape_type == CYLINDRICAL_BOUNDARY], storage, threshold),
    ]
    return tuple(np.concatenate([p[k] for p in parts]) for k in range(7))


#=====================================
# General (support mapping) detection
#=====================================

Vector3 = ti.types.vector(3, ti.f64)


@ti.kernel
def _support_contacts(ids: ti.types.ndarray(), deltas: ti.types.ndarray(), position: ti.types.ndarray(),
                      rotation: ti.types.ndarray(), shape_type: ti.types.ndarray(), params: ti.types.ndarray(),
                      vertex_range: ti.types.ndarray(), vertices: ti.types.ndarray(),
                      distance: ti.types.ndarray(), normal: ti.types.ndarray(), point: ti.types.ndarray()):
    # params: sphere [r], ellipsoid [a, b, c], half-space [normal], cylinder [R, _, _, axis]
    for c in range(ids.shape[0]):
        i = ids[c, 0]
        j = ids[c, 1]
        x1 = Vector3(position[i, 0], position[i, 1], position[i, 2])
        xj = Vector3(position[j, 0], position[j, 1], position[j, 2])
        delta = Vector3(deltas[c, 0], deltas[c, 1], deltas[c, 2])
        n = Vector3(0.0, 0.0, 1.0)
        direction = Vector3(0.0, 0.0, -1.0)
        if shape_type[j] == HALF_SPACE:
            n = Vector3(params[j, 0], params[j, 1], params[j, 2])
            direction = -n
        elif shape_type[j] == CYLINDRICAL_BOUNDARY:
            axis = Vector3(params[j, 3], params[j, 4], params[j, 5])
            rel = x1 - xj
            radial = rel - rel.dot(axis) * axis
            rho = radial.norm()
            outward = Vector3(1.0, 0.0, 0.0)
            if rho > DoublePrecisionTolerance:
                outward = radial / rho
            n = -outward
            direction = outward
        else:
            length = delta.norm()
            if length > DoublePrecisionTolerance:
                n = delta / length
            direction = -n

        # support offsets from the centres: particle 1 along `direction`, particle 2 along n
        offsets = ti.Matrix.zero(ti.f64, 2, 3)
        for side in ti.static(range(2)):
            idx = ids[c, side]
            d = direction
            if ti.static(side == 1):
                d = n
            R = ti.Matrix.zero(ti.f64, 3, 3)
            for a in ti.static(range(3)):
                for b in ti.static(range(3)):
                    R[a, b] = rotation[idx, a, b]
            db = R.transpose() @ d
            s = Vector3(0.0, 0.0, 0.0)
            if shape_type[idx] == SPHERE:
                norm = db.norm()
                if norm > 0.0:
                    s = params[idx, 0] * db / norm
            elif shape_type[idx] == ELLIPSOID:
                ax = Vector3(params[idx, 0], params[idx, 1], params[idx, 2])
                scaled = ax * db
                norm = scaled.norm()
                if norm > 0.0:
                    s = ax * scaled / norm
            elif shape_type[idx] == CONVEX_POLYHEDRON:
                start = vertex_range[idx, 0]
                best = ti.cast(-1.0e300, ti.f64)
                for v in range(start, start + vertex_range[idx, 1]):
                    vertex = Vector3(vertices[v, 0], vertices[v, 1], vertices[v, 2])
                    value = vertex.dot(db)
                    if value > best:
                        best = value
                        s = vertex
            off = R @ s
            for k in ti.static(range(3)):
                offsets[side, k] = off[k]

        deepest = x1 + Vector3(offsets[0, 0], offsets[0, 1], offsets[0, 2])
        dist = ti.cast(0.0, ti.f64)
        p = deepest
        if shape_type[j] == HALF_SPACE:
            dist = (deepest - xj).dot(n)
            p = deepest - 0.5 * dist * n
        elif shape_type[j] == CYLINDRICAL_BOUNDARY:
            axis = Vector3(params[j, 3], params[j, 4], params[j, 5])
            rel_deep = deepest - xj
            radial_deep = rel_deep - rel_deep.dot(axis) * axis
            dist = params[j, 0] - radial_deep.norm()
            p = deepest - 0.5 * dist * n
        else:
            b = x1 - delta + Vector3(offsets[1, 0], offsets[1, 1], offsets[1, 2])
            dist = (deepest - b).dot(n)
            p = 0.5 * (deepest + b)
        distance[c] = dist
        for k in ti.static(range(3)):
            normal[c, k] = n[k]
            point[c, k] = p[k]


def shape_tables(storage):
    """Shape type, parameters and polyhedron vertices of every particle, as kernel arguments."""
    num = len(storage)
    shape_type = np.zeros(num, dtype=np.int32)
    params = np.zeros((num, 6))
    vertex_range = np.zeros((num, 2), dtype=np.int32)
    vertices = [np.zeros((1, 3))]
    offset = 1
    for k, shape in enumerate(storage.shapes[:num]):
        shape_type[k] = shape.shape_type
        if shape.shape_type == SPHERE:
            params[k, 0] = shape.radius
        elif shape.shape_type == ELLIPSOID:
            params[k, :3] = shape.axes
        elif shape.shape_type == CONVEX_POLYHEDRON:
            vertex_range[k] = offset, len(shape.vertices)
            vertices.append(shape.vertices)
            offset += len(shape.vertices)
        elif shape.shape_type == HALF_SPACE:
            params[k, :3] = shape.normal
        elif shape.shape_type == CYLINDRICAL_BOUNDARY:
            params[k, 0] = shape.radius
            params[k, 3:] = shape.axis
    return shape_type, params, vertex_range, np.ascontiguousarray(np.concatenate(vertices))


def general_contacts(storage, I, J, domain, threshold: float = 0.0):
    """
    Contacts of canonically ordered pairs of arbitrary shapes, (I, J, distance, normal, point, r1, r2).

    Finite pairs are tested along the centre line: the overlap of the support
    extents along the line through both centres gives the signed distance and
    the midpoint of the two support points the contact point. Planes and the
    container wall use the deepest support point of the finite particle.
    """
    I = np.asarray(I, dtype=np.int64)
    J = np.asarray(J, dtype=np.int64)
    m = len(I)
    if m == 0:
        return _empty()
    positions = np.ascontiguousarray(storage.position)
    deltas = np.ascontiguousarray(domain.min_image(positions[I] - positions[J]), dtype=np.float64)
    shape_type, params, vertex_range, vertices = shape_tables(storage)
    distance = np.zeros(m)
    normal = np.zeros((m, 3))
    point = np.zeros((m, 3))
    _support_contacts(np.ascontiguousarray(np.stack([I, J], axis=1), dtype=np.int32), deltas, positions,
                      np.ascontiguousarray(quat2RotMatrix(storage.quaternion)), shape_type, params,
                      vertex_range, vertices, distance, normal, point)

    infinite = (storage.flags[J] & INFINITE) != 0
    x1 = positions[I]
    x2 = np.where(infinite[:, None], positions[J], x1 - deltas)
    hit = distance < threshold
    return I[hit], J[hit], distance[hit], normal[hit], point[hit], (point - x1)[hit], (point - x2)[hit]


def general_contact(storage, i: int, j: int, domain, threshold: float = 0.0):
    """Contact (distance, normal, point, r1, r2) of a single canonically ordered pair, or None."""
    _, _, distance, normal, point, r1, r2 = general_contacts(storage, [i], [j], domain, threshold)
    if len(distance) == 0:
        return None
    return float(distance[0]), normal[0], point[0], r1[0], r2[0]
