"""
Per-rank particle storage for packing simulations.

Particles are kept as a structure of numpy arrays so that they can be handed
directly to taichi kernels (``ti.types.ndarray()``). A particle is either owned
by this rank or a ghost replica of a particle owned elsewhere. Global particles
(the bounding planes and the container wall) exist on every rank and are never
ghosts.
"""

import numpy as np

from .shape import Shape
from .utils import quat2RotMatrix

#=====================================
# Particle flags
#=====================================
GHOST = 1
INFINITE = 2
FIXED = 4
GLOBAL = 8

#=====================================
# Field layout: name -> (per-particle shape, dtype)
#=====================================
_FIELDS = {
    "uid": ((), np.int64),                  # Globally unique identifier
    "owner": ((), np.int32),                # Rank holding the authoritative copy
    "flags": ((), np.int32),                # GHOST | INFINITE | FIXED | GLOBAL
    "position": ((3,), np.float64),         # Centre of mass
    "quaternion": ((4,), np.float64),       # Orientation [w, x, y, z]
    "linear_velocity": ((3,), np.float64),
    "angular_velocity": ((3,), np.float64), # World frame
    "force": ((3,), np.float64),
    "torque": ((3,), np.float64),
    "dv": ((3,), np.float64),               # HCSITS velocity correction
    "dw": ((3,), np.float64),               # HCSITS angular velocity correction
    "inv_mass": ((), np.float64),
    "inertia_bf": ((3, 3), np.float64),     # Body frame inertia
    "inv_inertia_bf": ((3, 3), np.float64),
    "interaction_radius": ((), np.float64), # Bounding sphere radius
    "num_contacts": ((), np.int32),
}

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


class ParticleStorage:
    """Growable structure-of-arrays particle container of a single rank."""

    def __init__(self, capacity: int = 64):
        self._size = 0
        self._capacity = max(int(capacity), 1)
        self._data = {name: np.zeros((self._capacity,) + shape, dtype=dtype)
                      for name, (shape, dtype) in _FIELDS.items()}
        self.shapes = []
        self.old_contact_history = []   # partner uid -> tangential spring displacement
        self.new_contact_history = []
        self.ghost_owners = []          # ranks holding a ghost (meaningful on the owner)
        self._uid_index = {}

    def __len__(self):
        return self._size

    def __getattr__(self, name):
        data = self.__dict__.get("_data")
        if data is not None and name in data:
            return data[name][:self.__dict__["_size"]]
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def _grow(self, minimum: int):
        if minimum <= self._capacity:
            return
        capacity = self._capacity
        while capacity < minimum:
            capacity *= 2
        for name, (shape, dtype) in _FIELDS.items():
            grown = np.zeros((capacity,) + shape, dtype=dtype)
            grown[:self._size] = self._data[name][:self._size]
            self._data[name] = grown
        self._capacity = capacity

    # ------------------------------------------------------------------
    # creation and removal
    # ------------------------------------------------------------------

    def create(self, uid: int, owner: int, position, shape: Shape, density: float,
               flags: int = 0, interaction_radius=None, linear_velocity=None,
               angular_velocity=None, quaternion=None) -> int:
        if uid in self._uid_index:
            raise ValueError(f"Particle uid {uid} already exists on this rank")
        self._grow(self._size + 1)
        i = self._size
        self._size += 1

        for name in _FIELDS:
            self._data[name][i] = 0
        d = self._data
        d["uid"][i] = uid
        d["owner"][i] = owner
        if shape.is_infinite:
            flags |= INFINITE | FIXED
        d["flags"][i] = flags
        d["position"][i] = position
        d["quaternion"][i] = IDENTITY_QUATERNION if quaternion is None else quaternion
        if linear_velocity is not None:
            d["linear_velocity"][i] = linear_velocity
        if angular_velocity is not None:
            d["angular_velocity"][i] = angular_velocity
        if not (flags & FIXED):
            d["inv_mass"][i] = 1.0 / (density * shape.volume())
            inertia = shape.inertia_bf(density)
            d["inertia_bf"][i] = inertia
            d["inv_inertia_bf"][i] = np.linalg.inv(inertia)
        d["interaction_radius"][i] = shape.bounding_radius() if interaction_radius is None else interaction_radius

        self.shapes.append(shape)
        self.old_contact_history.append({})
        self.new_contact_history.append({})
        self.ghost_owners.append(set())
        self._uid_index[int(uid)] = i
        return i

    def remove(self, indices):
        """Remove the particles at `indices`; remaining particles keep their relative order."""
        indices = np.unique(np.asarray(indices, dtype=np.int64))
        if len(indices) == 0:
            return
        keep = np.ones(self._size, dtype=bool)
        keep[indices] = False
        self._apply_permutation(np.nonzero(keep)[0])

    def clear(self):
        self._apply_permutation(np.zeros(0, dtype=np.int64))

    def _apply_permutation(self, order):
        n = len(order)
        for name in _FIELDS:
            self._data[name][:n] = self._data[name][:self._size][order]
        self._size = n
        self.shapes = [self.shapes[i] for i in order]
        self.old_contact_history = [self.old_contact_history[i] for i in order]
        self.new_contact_history = [self.new_contact_history[i] for i in order]
        self.ghost_owners = [self.ghost_owners[i] for i in order]
        self._uid_index = {int(uid): i for i, uid in enumerate(self.uid)}

    def sort_by(self, keys):
        """Reorder all particles by ascending `keys` (stable)."""
        order = np.argsort(np.asarray(keys), kind="stable")
        self._apply_permutation(order)

    def find(self, uid: int) -> int:
        return self._uid_index.get(int(uid), -1)

    # ------------------------------------------------------------------
    # selections
    # ------------------------------------------------------------------

    def has_flag(self, flag: int) -> np.ndarray:
        return (self.flags & flag) != 0

    @property
    def ghost_mask(self) -> np.ndarray:
        return self.has_flag(GHOST)

    @property
    def local_mask(self) -> np.ndarray:
        """Not a ghost (owned particles and global particles)."""
        return ~self.has_flag(GHOST)

    @property
    def owned_mask(self) -> np.ndarray:
        """Finite particles owned by this rank."""
        return ~self.has_flag(GHOST | GLOBAL)

    @property
    def finite_mask(self) -> np.ndarray:
        return ~self.has_flag(INFINITE)

    @property
    def mobile_mask(self) -> np.ndarray:
        return ~self.has_flag(FIXED)

    def owned_indices(self) -> np.ndarray:
        return np.nonzero(self.owned_mask)[0]

    def ghost_indices(self) -> np.ndarray:
        return np.nonzero(self.ghost_mask)[0]

    def mass(self, i: int) -> float:
        inv_mass = self.inv_mass[i]
        return 1.0 / inv_mass if inv_mass > 0.0 else np.inf

    def volumes(self, indices=None) -> np.ndarray:
        if indices is None:
            indices = range(self._size)
        return np.array([self.shapes[i].volume() for i in indices], dtype=float)

    def world_inertia(self):
        """World frame (inertia, inverse inertia) tensors, shape (n, 3, 3) each."""
        rot = quat2RotMatrix(self.quaternion)
        rot_t = np.swapaxes(rot, 1, 2)
        inertia = rot @ self.inertia_bf @ rot_t
        inv_inertia = rot @ self.inv_inertia_bf @ rot_t
        return np.ascontiguousarray(inertia), np.ascontiguousarray(inv_inertia)

    # ------------------------------------------------------------------
    # message records
    # ------------------------------------------------------------------

    def pack(self, i: int) -> dict:
        """Copy of particle `i` as a message record."""
        record = {name: self._data[name][i].copy() for name in _FIELDS}
        record["shape"] = self.shapes[i]
        record["old_contact_history"] = {k: v.copy() for k, v in self.old_contact_history[i].items()}
        record["new_contact_history"] = {k: v.copy() for k, v in self.new_contact_history[i].items()}
        record["ghost_owners"] = set(self.ghost_owners[i])
        return record

    def unpack(self, record: dict, ghost: bool) -> int:
        """Insert or overwrite the particle described by `record`; returns its index."""
        uid = int(record["uid"])
        i = self.find(uid)
        if i < 0:
            self._grow(self._size + 1)
            i = self._size
            self._size += 1
            self.shapes.append(None)
            self.old_contact_history.append({})
            self.new_contact_history.append({})
            self.ghost_owners.append(set())
            self._uid_index[uid] = i
        for name in _FIELDS:
            self._data[name][i] = record[name]
        if ghost:
            self._data["flags"][i] |= GHOST
            self.ghost_owners[i] = set()
        else:
            self._data["flags"][i] &= ~GHOST
            self.ghost_owners[i] = set(record["ghost_owners"])
        self.shapes[i] = record["shape"]
        self.old_contact_history[i] = {k: v.copy() for k, v in record["old_contact_history"].items()}
        self.new_contact_history[i] = {k: v.copy() for k, v in record["new_contact_history"].items()}
        return i
