"""
Taichi kernels for per-particle and per-contact updates.

The kernels operate on numpy arrays passed as ``ti.types.ndarray()``; the
Python wrappers below pack the particle storage into contiguous blocks, launch
the kernel and copy the results back. All vector types and scalar arguments are
double precision regardless of the ``default_fp`` of ``ti.init``.
"""

import numpy as np
import taichi as ti

from ..datastruct.utils import DoublePrecisionTolerance

#=====================================
# Type Definitions
#=====================================

Vector3 = ti.types.vector(3, ti.f64)
Vector4 = ti.types.vector(4, ti.f64)
Matrix3 = ti.types.matrix(3, 3, ti.f64)


#=====================================
# Kernels
#=====================================

@ti.kernel
def _semi_implicit_euler(state: ti.types.ndarray(), quaternion: ti.types.ndarray(),
                         inertia: ti.types.ndarray(), inv_mass: ti.types.ndarray(),
                         active: ti.types.ndarray(), dt: ti.f64):
    # state: [position, velocity, omega, force, torque]; inertia: [I_world, I_world^-1]
    for i in range(active.shape[0]):
        if active[i] == 1:
            f = Vector3(state[i, 3, 0], state[i, 3, 1], state[i, 3, 2])
            t = Vector3(state[i, 4, 0], state[i, 4, 1], state[i, 4, 2])
            w = Vector3(state[i, 2, 0], state[i, 2, 1], state[i, 2, 2])
            v = Vector3(state[i, 1, 0], state[i, 1, 1], state[i, 1, 2]) + f * inv_mass[i] * dt

            # Euler's equation for the rigid body in the world frame
            Iw = Vector3(0.0, 0.0, 0.0)
            for a in ti.static(range(3)):
                for b in ti.static(range(3)):
                    Iw[a] += inertia[i, 0, a, b] * w[b]
            rhs = t - w.cross(Iw)
            alpha = Vector3(0.0, 0.0, 0.0)
            for a in ti.static(range(3)):
                for b in ti.static(range(3)):
                    alpha[a] += inertia[i, 1, a, b] * rhs[b]
            w += alpha * dt

            for k in ti.static(range(3)):
                state[i, 1, k] = v[k]
                state[i, 2, k] = w[k]
                state[i, 0, k] += v[k] * dt
                state[i, 3, k] = 0.0
                state[i, 4, k] = 0.0

            # Quaternion differential equation with world frame angular velocity
            q = Vector4(quaternion[i, 0], quaternion[i, 1], quaternion[i, 2], quaternion[i, 3])
            dq0 = - 0.5 * (w[0] * q[1] + w[1] * q[2] + w[2] * q[3])
            dq1 = + 0.5 * (w[0] * q[0] + w[1] * q[3] - w[2] * q[2])
            dq2 = + 0.5 * (w[1] * q[0] + w[2] * q[1] - w[0] * q[3])
            dq3 = + 0.5 * (w[2] * q[0] + w[0] * q[2] - w[1] * q[1])
            q += Vector4(dq0, dq1, dq2, dq3) * dt
            q = q.normalized()
            for k in ti.static(range(4)):
                quaternion[i, k] = q[k]


@ti.kernel
def _integrate_positions(state: ti.types.ndarray(), quaternion: ti.types.ndarray(),
                         active: ti.types.ndarray(), dt: ti.f64):
    # state: [position, velocity, omega]
    for i in range(active.shape[0]):
        if active[i] == 1:
            w = Vector3(state[i, 2, 0], state[i, 2, 1], state[i, 2, 2])
            for k in ti.static(range(3)):
                state[i, 0, k] += state[i, 1, k] * dt
            q = Vector4(quaternion[i, 0], quaternion[i, 1], quaternion[i, 2], quaternion[i, 3])
            dq0 = - 0.5 * (w[0] * q[1] + w[1] * q[2] + w[2] * q[3])
            dq1 = + 0.5 * (w[0] * q[0] + w[1] * q[3] - w[2] * q[2])
            dq2 = + 0.5 * (w[1] * q[0] + w[2] * q[1] - w[0] * q[3])
            dq3 = + 0.5 * (w[2] * q[0] + w[0] * q[2] - w[1] * q[1])
            q += Vector4(dq0, dq1, dq2, dq3) * dt
            q = q.normalized()
            for k in ti.static(range(4)):
                quaternion[i, k] = q[k]


@ti.kernel
def _damp_velocities(velocity: ti.types.ndarray(), omega: ti.types.ndarray(),
                     active: ti.types.ndarray(), factor: ti.f64):
    for i in range(active.shape[0]):
        if active[i] == 1:
            for k in ti.static(range(3)):
                velocity[i, k] *= factor
                omega[i, k] *= factor


@ti.kernel
def _limit_velocity(velocity: ti.types.ndarray(), active: ti.types.ndarray(), limit: ti.f64):
    for i in range(active.shape[0]):
        if active[i] == 1:
            v = Vector3(velocity[i, 0], velocity[i, 1], velocity[i, 2])
            magnitude = v.norm()
            if magnitude > limit:
                for k in ti.static(range(3)):
                    velocity[i, k] = v[k] * limit / magnitude


@ti.kernel
def _add_acceleration_force(force: ti.types.ndarray(), inv_mass: ti.types.ndarray(),
                            active: ti.types.ndarray(), ax: ti.f64, ay: ti.f64, az: ti.f64):
    for i in range(active.shape[0]):
        if active[i] == 1:
            mass = 1.0 / inv_mass[i]
            force[i, 0] += ax * mass
            force[i, 1] += ay * mass
            force[i, 2] += az * mass


@ti.kernel
def _count_contacts(ids: ti.types.ndarray(), num_contacts: ti.types.ndarray()):
    for c in range(ids.shape[0]):
        num_contacts[ids[c, 0]] += 1
        num_contacts[ids[c, 1]] += 1


@ti.kernel
def _linear_spring_dashpot(ids: ti.types.ndarray(), scalars: ti.types.ndarray(),
                           vectors: ti.types.ndarray(), contact_out: ti.types.ndarray(),
                           kinematics: ti.types.ndarray(), loads: ti.types.ndarray(),
                           friction_static: ti.f64, friction_dynamic: ti.f64, dt: ti.f64):
    # scalars: [distance, kn, dn, kt, dt]; vectors: [normal, r1, r2, old tangential spring]
    # kinematics: [velocity, omega]; loads: [force, torque]; contact_out: [tangential spring, force]
    for c in range(ids.shape[0]):
        for k in ti.static(range(3)):
            contact_out[c, 0, k] = 0.0
            contact_out[c, 1, k] = 0.0
        distance = scalars[c, 0]
        if distance < 0.0:
            i = ids[c, 0]
            j = ids[c, 1]
            kn = scalars[c, 1]
            dn = scalars[c, 2]
            kt = scalars[c, 3]
            dtn = scalars[c, 4]
            n = Vector3(vectors[c, 0, 0], vectors[c, 0, 1], vectors[c, 0, 2])
            r1 = Vector3(vectors[c, 1, 0], vectors[c, 1, 1], vectors[c, 1, 2])
            r2 = Vector3(vectors[c, 2, 0], vectors[c, 2, 1], vectors[c, 2, 2])
            s_old = Vector3(vectors[c, 3, 0], vectors[c, 3, 1], vectors[c, 3, 2])

            v1 = Vector3(kinematics[i, 0, 0], kinematics[i, 0, 1], kinematics[i, 0, 2]) \
                + Vector3(kinematics[i, 1, 0], kinematics[i, 1, 1], kinematics[i, 1, 2]).cross(r1)
            v2 = Vector3(kinematics[j, 0, 0], kinematics[j, 0, 1], kinematics[j, 0, 2]) \
                + Vector3(kinematics[j, 1, 0], kinematics[j, 1, 1], kinematics[j, 1, 2]).cross(r2)
            v_rel = v1 - v2
            vn = v_rel.dot(n)
            v_t = v_rel - vn * n

            # Normal direction - the force towards particle 1
            f_n = (kn * (-distance) - dn * vn) * n

            # Tangential spring, rotated into the current tangential plane
            s = s_old - s_old.dot(n) * n
            s_len = s.norm()
            if s_len > 1e-15:
                s = s * (s_old.norm() / s_len)
            s += v_t * dt
            f_t = -kt * s - dtn * v_t
            f_t_abs = f_t.norm()
            f_n_abs = f_n.norm()
            if f_t_abs > friction_static * f_n_abs:  # Sliding
                f_t = f_t * (friction_dynamic * f_n_abs / f_t_abs)
                s = -(f_t + dtn * v_t) / kt

            f = f_n + f_t
            t1 = r1.cross(f)
            t2 = r2.cross(-f)
            for k in ti.static(range(3)):
                contact_out[c, 0, k] = s[k]
                contact_out[c, 1, k] = f[k]
                loads[i, 0, k] += f[k]
                loads[j, 0, k] -= f[k]
                loads[i, 1, k] += t1[k]
                loads[j, 1, k] += t2[k]


#=====================================
# HCSITS relaxation
#=====================================

# Relaxation model codes, compile time constants of the sweep kernel
FRICTIONLESS = 0
APPROXIMATE_DECOUPLING = 1
APPROXIMATE_ORTHOGONAL = 2
COULOMB_DECOUPLING = 3
COULOMB_ORTHOGONAL = 4
GENERALIZED_MAXIMUM_DISSIPATION = 5
PROJECTED_GAUSS_SEIDEL = 6

_FIXED_POINT_ITERATIONS = 20
_GMD_ITERATIONS = 30


@ti.func
def _cone_projection(p, mu):
    # Euclidean projection of a contact frame impulse onto the Coulomb cone
    result = p
    tau = ti.sqrt(p[1] * p[1] + p[2] * p[2])
    if tau > mu * p[0]:
        if mu * tau <= -p[0]:
            result = Vector3(0.0, 0.0, 0.0)
        else:
            p_n = (p[0] + mu * tau) / (1.0 + mu * mu)
            scale = mu * p_n / tau
            result = Vector3(p_n, p[1] * scale, p[2] * scale)
    return result


@ti.func
def _radial_clamp(p, mu):
    # Cut the tangential impulse back to the cone, keeping its direction and the normal impulse
    p_n = ti.max(p[0], 0.0)
    t1 = p[1]
    t2 = p[2]
    tau = ti.sqrt(t1 * t1 + t2 * t2)
    limit = mu * p_n
    if tau > limit:
        scale = ti.cast(0.0, ti.f64)
        if tau > DoublePrecisionTolerance:
            scale = limit / tau
        t1 *= scale
        t2 *= scale
    return Vector3(p_n, t1, t2)


@ti.kernel
def _project_impulses(p: ti.types.ndarray(), mu: ti.types.ndarray(), radially: ti.template()):
    for c in range(p.shape[0]):
        q = Vector3(p[c, 0], p[c, 1], p[c, 2])
        if ti.static(radially):
            q = _radial_clamp(q, mu[c])
        else:
            q = _cone_projection(q, mu[c])
        for k in ti.static(range(3)):
            p[c, k] = q[k]


@ti.kernel
def _relax_contacts(ids: ti.types.ndarray(), frames: ti.types.ndarray(), levers: ti.types.ndarray(),
                    k_cf: ti.types.ndarray(), k_inv: ti.types.ndarray(), k_to_inv: ti.types.ndarray(),
                    scalars: ti.types.ndarray(), impulse: ti.types.ndarray(), kinematics: ti.types.ndarray(),
                    corrections: ti.types.ndarray(), inv_mass: ti.types.ndarray(),
                    inv_inertia: ti.types.ndarray(), dt_inv: ti.f64, restitution: ti.f64,
                    model: ti.template()):
    # scalars: [diag_n_inv, mu, corrected distance, pre-step normal velocity, descent step]
    # levers: [r1, r2]; kinematics: [velocity, omega]; corrections: [dv, dw]
    # Gauss-Seidel: every contact sees the corrections of the contacts before it
    ti.loop_config(serialize=True)
    for c in range(ids.shape[0]):
        i = ids[c, 0]
        j = ids[c, 1]
        r1 = Vector3(levers[c, 0, 0], levers[c, 0, 1], levers[c, 0, 2])
        r2 = Vector3(levers[c, 1, 0], levers[c, 1, 1], levers[c, 1, 2])
        basis = ti.Matrix.zero(ti.f64, 3, 3)
        K = ti.Matrix.zero(ti.f64, 3, 3)
        Kinv = ti.Matrix.zero(ti.f64, 3, 3)
        I1 = ti.Matrix.zero(ti.f64, 3, 3)
        I2 = ti.Matrix.zero(ti.f64, 3, 3)
        for a in ti.static(range(3)):
            for b in ti.static(range(3)):
                basis[a, b] = frames[c, a, b]
                K[a, b] = k_cf[c, a, b]
                Kinv[a, b] = k_inv[c, a, b]
                I1[a, b] = inv_inertia[i, a, b]
                I2[a, b] = inv_inertia[j, a, b]
        diag_n_inv = scalars[c, 0]
        mu = scalars[c, 1]

        # Remove the reaction of this contact from the velocity corrections
        p_old = Vector3(impulse[c, 0], impulse[c, 1], impulse[c, 2])
        dv1 = Vector3(corrections[i, 0, 0], corrections[i, 0, 1], corrections[i, 0, 2]) - inv_mass[i] * p_old
        dw1 = Vector3(corrections[i, 1, 0], corrections[i, 1, 1], corrections[i, 1, 2]) - I1 @ r1.cross(p_old)
        dv2 = Vector3(corrections[j, 0, 0], corrections[j, 0, 1], corrections[j, 0, 2]) + inv_mass[j] * p_old
        dw2 = Vector3(corrections[j, 1, 0], corrections[j, 1, 1], corrections[j, 1, 2]) + I2 @ r2.cross(p_old)

        v1 = Vector3(kinematics[i, 0, 0], kinematics[i, 0, 1], kinematics[i, 0, 2]) + dv1
        w1 = Vector3(kinematics[i, 1, 0], kinematics[i, 1, 1], kinematics[i, 1, 2]) + dw1
        v2 = Vector3(kinematics[j, 0, 0], kinematics[j, 0, 1], kinematics[j, 0, 2]) + dv2
        w2 = Vector3(kinematics[j, 1, 0], kinematics[j, 1, 1], kinematics[j, 1, 2]) + dw2
        g = basis @ ((v1 + w1.cross(r1)) - (v2 + w2.cross(r2)))
        # positional constraint in normal direction expressed as a velocity
        g[0] += scalars[c, 2] * dt_inv

        p = Vector3(0.0, 0.0, 0.0)
        if ti.static(model == PROJECTED_GAUSS_SEIDEL):
            # restitution acts on the approaching normal velocity before the step
            target = g[0] + restitution * ti.min(scalars[c, 3], 0.0)
            p[0] = ti.max(0.0, -target / K[0, 0])
            limit = mu * p[0]
            for k in ti.static(range(1, 3)):
                residual = g + K @ p
                p[k] = ti.min(ti.max(p[k] - residual[k] / K[k, k], -limit), limit)
        elif g[0] < 0.0:
            if ti.static(model == FRICTIONLESS):
                p[0] = -diag_n_inv * g[0]
            if ti.static(model == APPROXIMATE_DECOUPLING or model == COULOMB_DECOUPLING):
                p[0] = -diag_n_inv * g[0]
                p[1] = -(k_to_inv[c, 0, 0] * g[1] + k_to_inv[c, 0, 1] * g[2])
                p[2] = -(k_to_inv[c, 1, 0] * g[1] + k_to_inv[c, 1, 1] * g[2])
            if ti.static(model == APPROXIMATE_DECOUPLING):
                p = _radial_clamp(p, mu)
            if ti.static(model == APPROXIMATE_ORTHOGONAL):
                p = -(Kinv @ g)
                if p[0] < 0.0:
                    p = Vector3(0.0, 0.0, 0.0)
                else:
                    p = _radial_clamp(p, mu)
            if ti.static(model == COULOMB_DECOUPLING):
                limit = mu * p[0]
                if ti.sqrt(p[1] * p[1] + p[2] * p[2]) > limit:
                    # Dynamic friction: the impulse opposes the post-impact sliding velocity
                    for _ in range(_FIXED_POINT_ITERATIONS):
                        s1 = g[1] + K[1, 1] * p[1] + K[1, 2] * p[2]
                        s2 = g[2] + K[2, 1] * p[1] + K[2, 2] * p[2]
                        speed = ti.sqrt(s1 * s1 + s2 * s2)
                        if speed <= DoublePrecisionTolerance:
                            break
                        n1 = -limit * s1 / speed
                        n2 = -limit * s2 / speed
                        change = ti.sqrt((n1 - p[1]) ** 2 + (n2 - p[2]) ** 2)
                        p[1] = n1
                        p[2] = n2
                        if change <= 1e-10 * ti.max(limit, DoublePrecisionTolerance):
                            break
            if ti.static(model == COULOMB_ORTHOGONAL):
                p = _cone_projection(-(Kinv @ g), mu)
            if ti.static(model == GENERALIZED_MAXIMUM_DISSIPATION):
                # projected gradient descent on 0.5 p^T K p + p^T g over the friction cone
                step = scalars[c, 4]
                p[0] = -diag_n_inv * g[0]
                for _ in range(_GMD_ITERATIONS):
                    p_next = _cone_projection(p - step * (K @ p + g), mu)
                    change = (p_next - p).norm()
                    bound = 1e-12 * ti.max(p.norm(), DoublePrecisionTolerance)
                    p = p_next
                    if change <= bound:
                        break

        p_wf = basis.transpose() @ p
        dv1 += inv_mass[i] * p_wf
        dw1 += I1 @ r1.cross(p_wf)
        dv2 -= inv_mass[j] * p_wf
        dw2 -= I2 @ r2.cross(p_wf)
        for k in ti.static(range(3)):
            corrections[i, 0, k] = dv1[k]
            corrections[i, 1, k] = dw1[k]
            corrections[j, 0, k] = dv2[k]
            corrections[j, 1, k] = dw2[k]
            impulse[c, k] = p_wf[k]


#=====================================
# Python wrappers
#=====================================

def _as_int_mask(mask):
    return np.ascontiguousarray(mask, dtype=np.int32)


def semi_implicit_euler(storage, active, dt: float):
    """Integrate the masked particles and clear their force and torque."""
    if len(storage) == 0 or not np.any(active):
        return
    state = np.ascontiguousarray(np.stack([storage.position, storage.linear_velocity, storage.angular_velocity,
                                           storage.force, storage.torque], axis=1))
    quaternion = np.ascontiguousarray(storage.quaternion)
    inertia, inv_inertia = storage.world_inertia()
    inertia_pack = np.ascontiguousarray(np.stack([inertia, inv_inertia], axis=1))
    inv_mass = np.ascontiguousarray(storage.inv_mass)
    _semi_implicit_euler(state, quaternion, inertia_pack, inv_mass, _as_int_mask(active), dt)
    storage.position[:] = state[:, 0]
    storage.linear_velocity[:] = state[:, 1]
    storage.angular_velocity[:] = state[:, 2]
    storage.force[:] = state[:, 3]
    storage.torque[:] = state[:, 4]
    storage.quaternion[:] = quaternion


def integrate_positions(storage, active, dt: float):
    if len(storage) == 0 or not np.any(active):
        return
    state = np.ascontiguousarray(np.stack([storage.position, storage.linear_velocity,
                                           storage.angular_velocity], axis=1))
    quaternion = np.ascontiguousarray(storage.quaternion)
    _integrate_positions(state, quaternion, _as_int_mask(active), dt)
    storage.position[:] = state[:, 0]
    storage.quaternion[:] = quaternion


def damp_velocities(storage, active, factor: float):
    if len(storage) == 0 or not np.any(active):
        return
    velocity = np.ascontiguousarray(storage.linear_velocity)
    omega = np.ascontiguousarray(storage.angular_velocity)
    _damp_velocities(velocity, omega, _as_int_mask(active), factor)
    storage.linear_velocity[:] = velocity
    storage.angular_velocity[:] = omega


def limit_velocity(storage, active, limit: float):
    if len(storage) == 0 or not np.any(active):
        return
    velocity = np.ascontiguousarray(storage.linear_velocity)
    _limit_velocity(velocity, _as_int_mask(active), limit)
    storage.linear_velocity[:] = velocity


def add_acceleration_force(storage, active, acceleration):
    """Add mass x acceleration to the force of the masked particles."""
    if len(storage) == 0 or not np.any(active):
        return
    force = np.ascontiguousarray(storage.force)
    inv_mass = np.ascontiguousarray(storage.inv_mass)
    ax, ay, az = (float(a) for a in acceleration)
    _add_acceleration_force(force, inv_mass, _as_int_mask(active), ax, ay, az)
    storage.force[:] = force


def count_contacts(storage, contacts):
    storage.num_contacts[:] = 0
    if len(contacts) == 0 or len(storage) == 0:
        return
    ids = np.ascontiguousarray(np.stack([contacts.id1, contacts.id2], axis=1), dtype=np.int32)
    num_contacts = np.ascontiguousarray(storage.num_contacts, dtype=np.int32)
    _count_contacts(ids, num_contacts)
    storage.num_contacts[:] = num_contacts


def linear_spring_dashpot(storage, contacts, stiffness_damping, history_in,
                          friction_static: float, friction_dynamic: float, dt: float):
    """
    Accumulate spring-dashpot contact forces and torques into the storage.

    Returns the updated tangential spring and the force on particle 1 of every
    contact, both zero for separated contacts.
    """
    nc = len(contacts)
    if nc == 0:
        return np.zeros((0, 3)), np.zeros((0, 3))
    ids = np.ascontiguousarray(np.stack([contacts.id1, contacts.id2], axis=1), dtype=np.int32)
    kn, dn, kt, dtn = stiffness_damping
    scalars = np.ascontiguousarray(np.stack([contacts.distance, kn, dn, kt, dtn], axis=1))
    vectors = np.ascontiguousarray(np.stack([contacts.normal, contacts.r1, contacts.r2, history_in], axis=1))
    contact_out = np.zeros((nc, 2, 3))
    kinematics = np.ascontiguousarray(np.stack([storage.linear_velocity, storage.angular_velocity], axis=1))
    loads = np.ascontiguousarray(np.stack([storage.force, storage.torque], axis=1))
    _linear_spring_dashpot(ids, scalars, vectors, contact_out, kinematics, loads,
                           friction_static, friction_dynamic, dt)
    storage.force[:] = loads[:, 0]
    storage.torque[:] = loads[:, 1]
    return contact_out[:, 0], contact_out[:, 1]


def project_impulses(p_cf, mu, radially: bool = False):
    """
    Contact frame impulses projected onto their friction cones.

    `p_cf` is a single impulse (normal, tangent, second tangent) or a stack of
    them. The default is the Euclidean cone projection; `radially` instead cuts
    the tangential part back to the cone and keeps the normal impulse.
    """
    p = np.array(p_cf, dtype=np.float64, ndmin=2)
    mu = np.array(np.broadcast_to(mu, (p.shape[0],)), dtype=np.float64)
    if p.shape[0] > 0:
        _project_impulses(p, mu, bool(radially))
    return p.reshape(np.shape(p_cf))


def relax_contacts(storage, contacts, model: int, dt: float, restitution: float):
    """One Gauss-Seidel sweep over the contacts, updating the impulses and the velocity corrections."""
    nc = len(contacts)
    if nc == 0:
        return
    data = contacts.solver_data
    ids = np.ascontiguousarray(np.stack([contacts.id1, contacts.id2], axis=1), dtype=np.int32)
    levers = np.ascontiguousarray(np.stack([contacts.r1, contacts.r2], axis=1))
    scalars = np.ascontiguousarray(np.stack([data["diag_n_inv"], data["mu"], data["distance"],
                                             data["gdot_n_pre"], data["gmd_step"]], axis=1))
    kinematics = np.ascontiguousarray(np.stack([storage.linear_velocity, storage.angular_velocity], axis=1))
    corrections = np.ascontiguousarray(np.stack([storage.dv, storage.dw], axis=1))
    impulse = np.ascontiguousarray(data["p"])
    _relax_contacts(ids, np.ascontiguousarray(data["basis"]), levers, np.ascontiguousarray(data["diag_nto"]),
                    np.ascontiguousarray(data["diag_nto_inv"]), np.ascontiguousarray(data["diag_to_inv"]),
                    scalars, impulse, kinematics, corrections, np.ascontiguousarray(storage.inv_mass),
                    np.ascontiguousarray(data["inv_inertia"]), 1.0 / dt, restitution, model)
    storage.dv[:] = corrections[:, 0]
    storage.dw[:] = corrections[:, 1]
    data["p"] = impulse
