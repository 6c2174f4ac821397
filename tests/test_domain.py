"""
Tests for the block partition, the in-process communicator and the owner/ghost
synchronisation.
"""

import numpy as np
import pytest

from packing3d.datastruct import GHOST, HalfSpace, Sphere
from packing3d.domain import (FORCE_TORQUE, BlockDomain, Communicator, GhostOwnerSync, NextNeighborSync,
                              assoc_to_block, broadcast_property, check_ghost_consistency, reduce_property,
                              select_sync_strategy, velocity_update)


# ==============================================================================
# BLOCK DOMAIN
# ==============================================================================

class TestBlockDomain:

    def test_every_point_has_exactly_one_owner(self):
        domain = BlockDomain((0.0, 0.0, 0.0), (4.0, 4.0, 4.0), (2, 2, 1), (True, True, False), 3)
        rng = np.random.default_rng(0)
        points = rng.uniform(-2.0, 6.0, size=(200, 3))
        owners = domain.find_owner(points)
        assert np.all((owners >= 0) & (owners < 3))
        for point, owner in zip(points, owners):
            holders = [r for r in range(3) if domain.is_contained_in_local_subdomain(r, point)]
            assert holders == [owner]

    def test_block_boundaries_are_half_open(self):
        domain = BlockDomain((0.0, 0.0, 0.0), (4.0, 4.0, 4.0), (2, 1, 1), (False, False, False), 2)
        assert domain.find_owner(np.array([1.999, 1.0, 1.0])) == 0
        assert domain.find_owner(np.array([2.0, 1.0, 1.0])) == 1

    def test_periodic_mapping_and_minimum_image(self):
        domain = BlockDomain((-2.0, -2.0, 0.0), (2.0, 2.0, 4.0), (1, 1, 1), (True, True, False))
        mapped = domain.periodically_map_to_domain([[2.5, -2.5, 5.0]])
        np.testing.assert_allclose(mapped, [[-1.5, 1.5, 5.0]])
        np.testing.assert_allclose(domain.min_image([3.5, -3.0, 3.0]), [-0.5, 1.0, 3.0])

    def test_neighbor_ranks_wrap_on_periodic_axes(self):
        periodic = BlockDomain((0.0, 0.0, 0.0), (6.0, 2.0, 2.0), (3, 1, 1), (True, False, False), 3)
        closed = BlockDomain((0.0, 0.0, 0.0), (6.0, 2.0, 2.0), (3, 1, 1), (False, False, False), 3)
        assert periodic.neighbor_ranks(0) == {1, 2}
        assert closed.neighbor_ranks(0) == {1}

    def test_ranks_within_sees_periodic_images(self):
        domain = BlockDomain((0.0, 0.0, 0.0), (6.0, 2.0, 2.0), (3, 1, 1), (True, False, False), 3)
        assert domain.ranks_within(np.array([5.8, 1.0, 1.0]), 0.5) == {0, 2}

    def test_too_many_ranks(self):
        with pytest.raises(ValueError):
            BlockDomain((0.0, 0.0, 0.0), (1.0, 1.0, 1.0), (1, 1, 1), (False, False, False), 2)


# ==============================================================================
# COMMUNICATOR
# ==============================================================================

class TestCommunicator:

    def test_exchange_orders_by_sender(self):
        comm = Communicator(3)
        comm.send(2, 0, "a", 2)
        comm.send(1, 0, "a", 1)
        comm.send(0, 1, "b", 0)
        inboxes = comm.exchange()
        assert inboxes[0] == [(1, "a", 1), (2, "a", 2)]
        assert inboxes[1] == [(0, "b", 0)]
        assert inboxes[2] == []
        assert comm.exchange() == [[], [], []]

    def test_collectives(self):
        comm = Communicator(3)
        assert comm.allreduce([1, 2, 3]) == 6
        assert comm.allreduce([1.0, 5.0, 2.0], op="max") == 5.0
        assert comm.allreduce([1.0, 5.0, 2.0], op="min") == 1.0
        np.testing.assert_allclose(comm.allreduce([np.ones(2), np.ones(2), np.ones(2)]), [3.0, 3.0])
        np.testing.assert_allclose(comm.allgather([[1.0], [], [2.0, 3.0]]), [1.0, 2.0, 3.0])
        copies = comm.broadcast({"id": 1})
        assert copies == [{"id": 1}] * 3
        assert copies[1] is not copies[0]

    def test_wrong_number_of_contributions(self):
        with pytest.raises(ValueError):
            Communicator(2).allreduce([1])
        with pytest.raises(ValueError):
            Communicator(2).allreduce([1, 2], op="prod")


# ==============================================================================
# SYNCHRONISATION
# ==============================================================================

class TestSync:

    def test_strategy_selection(self):
        assert select_sync_strategy(2.0, 1.0) == (NextNeighborSync, 1)
        strategy, repetitions = select_sync_strategy(1.0, 2.5)
        assert strategy is GhostOwnerSync
        assert repetitions == 3

    def test_ghosts_follow_their_owner(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (6.0, 2.0, 2.0), blocks=(3, 1, 1), num_ranks=3)
        setup.add_sphere(10, (1.8, 1.0, 1.0), 0.5)
        setup.sync()
        assert setup.ranks[1].storage.find(10) >= 0
        assert setup.ranks[1].storage.ghost_mask.all()
        assert setup.ranks[2].storage.find(10) < 0

        # move into block 1: ownership migrates, rank 0 keeps a ghost
        s = setup.ranks[0].storage
        s.position[s.find(10)] = (2.2, 1.0, 1.0)
        s.linear_velocity[s.find(10)] = (0.5, 0.0, 0.0)
        setup.sync()
        assert setup.ranks[1].storage.owned_indices().tolist() == [setup.ranks[1].storage.find(10)]
        assert setup.ranks[0].storage.flags[setup.ranks[0].storage.find(10)] & GHOST
        assert check_ghost_consistency(setup.ranks, setup.domain) == []

        # far from rank 0: its ghost is deleted
        s = setup.ranks[1].storage
        s.position[s.find(10)] = (3.0, 1.0, 1.0)
        setup.sync()
        assert setup.ranks[0].storage.find(10) < 0
        assert sum(len(r.storage) for r in setup.ranks) == 1

    def test_periodic_owner_change(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (6.0, 2.0, 2.0), blocks=(3, 1, 1), periodic=(True, False, False),
                           num_ranks=3)
        setup.add_sphere(4, (5.9, 1.0, 1.0), 0.3)
        setup.sync()
        assert setup.ranks[0].storage.find(4) >= 0
        s = setup.ranks[2].storage
        s.position[s.find(4)] = (6.1, 1.0, 1.0)
        setup.sync()
        s = setup.ranks[0].storage
        i = s.find(4)
        assert not s.flags[i] & GHOST
        assert s.position[i, 0] == pytest.approx(0.1)
        assert check_ghost_consistency(setup.ranks, setup.domain) == []

    def test_ghost_owner_sync_reaches_further(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (8.0, 2.0, 2.0), blocks=(4, 1, 1), num_ranks=4)
        setup.add_sphere(7, (1.0, 1.0, 1.0), 3.5)
        assoc_to_block(setup.ranks, setup.domain)
        sync = GhostOwnerSync(setup.domain, setup.comm)
        sync(setup.ranks)
        assert setup.ranks[2].storage.find(7) < 0
        sync(setup.ranks)
        assert setup.ranks[2].storage.find(7) >= 0
        assert check_ghost_consistency(setup.ranks, setup.domain) == []

    def test_global_particles_are_never_synchronised(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 2.0, 2.0), blocks=(2, 1, 1), num_ranks=2)
        setup.add_global(0, (0.0, 0.0, 0.0), HalfSpace((0.0, 0.0, 1.0)))
        setup.sync()
        for r in setup.ranks:
            assert len(r.storage) == 1
            assert r.storage.find(0) == 0


# ==============================================================================
# REDUCE AND BROADCAST
# ==============================================================================

class TestNotifications:

    @pytest.fixture
    def shared(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 2.0, 2.0), blocks=(2, 1, 1), num_ranks=2)
        setup.add_sphere(3, (1.9, 1.0, 1.0), 0.5)
        setup.sync()
        return setup

    def test_reduce_adds_ghost_values_to_owner(self, shared):
        owner, ghost = shared.ranks[0].storage, shared.ranks[1].storage
        owner.force[owner.find(3)] = (1.0, 0.0, 0.0)
        ghost.force[ghost.find(3)] = (2.0, 1.0, 0.0)
        reduce_property(shared.ranks, shared.comm, FORCE_TORQUE)
        np.testing.assert_allclose(owner.force[owner.find(3)], [3.0, 1.0, 0.0])
        np.testing.assert_allclose(ghost.force[ghost.find(3)], [0.0, 0.0, 0.0])

    def test_broadcast_overwrites_ghosts(self, shared):
        owner, ghost = shared.ranks[0].storage, shared.ranks[1].storage
        owner.torque[owner.find(3)] = (0.0, 0.0, 4.0)
        broadcast_property(shared.ranks, shared.comm, ("torque",))
        np.testing.assert_allclose(ghost.torque[ghost.find(3)], [0.0, 0.0, 4.0])

    def test_velocity_update(self, shared):
        owner, ghost = shared.ranks[0].storage, shared.ranks[1].storage
        ghost.dv[ghost.find(3)] = (0.0, 0.0, -2.0)
        reduce_property(shared.ranks, shared.comm, ("dv", "dw"))
        velocity_update(shared.ranks, shared.comm, 0.5)
        np.testing.assert_allclose(owner.linear_velocity[owner.find(3)], [0.0, 0.0, -1.0])
        np.testing.assert_allclose(ghost.linear_velocity[ghost.find(3)], [0.0, 0.0, -1.0])
        assert np.all(owner.dv == 0.0) and np.all(ghost.dv == 0.0)


class TestParticleStorage:

    def test_create_remove_and_find(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 4.0, 4.0))
        for uid in range(5):
            setup.add_sphere(uid + 3, (0.5 + 0.6 * uid, 1.0, 1.0), 0.25)
        s = setup.ranks[0].storage
        s.remove([1, 3])
        assert s.uid.tolist() == [3, 5, 7]
        assert s.find(5) == 1
        assert s.find(4) == -1
        with pytest.raises(ValueError):
            s.create(5, 0, (1.0, 1.0, 1.0), Sphere(0.1), 1.0)

    def test_storage_grows(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 4.0, 4.0))
        s = setup.ranks[0].storage
        for uid in range(100):
            s.create(uid, 0, (1.0, 1.0, 1.0), Sphere(0.1), 1.0)
        assert len(s) == 100
        assert s.position.shape == (100, 3)

    def test_infinite_shapes_are_fixed(self, make_setup):
        setup = make_setup((0.0, 0.0, 0.0), (4.0, 4.0, 4.0))
        setup.add_global(0, (0.0, 0.0, 0.0), HalfSpace((0.0, 0.0, 1.0)))
        s = setup.ranks[0].storage
        assert not s.mobile_mask[0]
        assert not s.finite_mask[0]
        assert not s.owned_mask[0]
        assert s.inv_mass[0] == 0.0
        assert np.isinf(s.interaction_radius[0])
