import numpy as np

#=====================================
# Environmental Variables
#=====================================
DoublePrecisionTolerance: float = 1e-12  # Boundary between zeros and non-zeros


# Quaternion to rotation matrix, vectorised over the leading axis
# References:
# https://en.wikipedia.org/wiki/Quaternions_and_spatial_rotation
def quat2RotMatrix(quat: np.ndarray) -> np.ndarray:
    # w i j k
    # 0 1 2 3
    quat = np.asarray(quat, dtype=float)
    w, i, j, k = quat[..., 0], quat[..., 1], quat[..., 2], quat[..., 3]
    w2, i2, j2, k2 = w * w, i * i, j * j, k * k

    twoij = 2.0 * i * j
    twoik = 2.0 * i * k
    twojk = 2.0 * j * k
    twoiw = 2.0 * i * w
    twojw = 2.0 * j * w
    twokw = 2.0 * k * w

    result = np.empty(quat.shape[:-1] + (3, 3))
    result[..., 0, 0] = w2 + i2 - j2 - k2
    result[..., 0, 1] = twoij - twokw
    result[..., 0, 2] = twojw + twoik
    result[..., 1, 0] = twoij + twokw
    result[..., 1, 1] = w2 - i2 + j2 - k2
    result[..., 1, 2] = twojk - twoiw
    result[..., 2, 0] = twoik - twojw
    result[..., 2, 1] = twojk + twoiw
    result[..., 2, 2] = w2 - i2 - j2 + k2
    return result


def orthonormal_basis(normal: np.ndarray) -> np.ndarray:
    """Rows (n, t, s) of a right-handed orthonormal basis with first axis `normal`, vectorised."""
    n = np.asarray(normal, dtype=float)
    helper = np.where((np.abs(n[..., 0]) < 0.6)[..., None], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])
    t = np.cross(n, helper)
    t /= np.linalg.norm(t, axis=-1, keepdims=True)
    s = np.cross(n, t)
    return np.stack([n, t, s], axis=-2)


def skew(v: np.ndarray) -> np.ndarray:
    """Cross product matrices [v]x, vectorised over the leading axes."""
    v = np.asarray(v, dtype=float)
    result = np.zeros(v.shape[:-1] + (3, 3))
    result[..., 0, 1] = -v[..., 2]
    result[..., 0, 2] = v[..., 1]
    result[..., 1, 0] = v[..., 2]
    result[..., 1, 2] = -v[..., 0]
    result[..., 2, 0] = -v[..., 1]
    result[..., 2, 1] = v[..., 0]
    return result
