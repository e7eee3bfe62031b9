"""
Unit Tests for the tower registry and find-or-create assignment
(geowhisper.towers)
"""

import asyncio

import pytest

from geowhisper.errors import NotFoundError, TransactionConflictError, ValidationError
from geowhisper.service import GeoWhisperService
from geowhisper.stores.memory import InMemoryContentStore, InMemoryMessageFeed
from geowhisper.towers.directory import TOWERS_COLLECTION, TowerDirectory
from geowhisper.tools.config_loader import TowerSettings
from geowhisper.tools.retry import full_jitter_backoff

from tests.conftest import ORIGIN, FlakyContentStore, make_settings, offset


# ==============================================================================
# Tower directory
# ==============================================================================

class TestTowerDirectory:

    @pytest.fixture
    def directory(self, content_store):
        return TowerDirectory(content_store)

    def test_create_and_get(self, directory):
        async def scenario():
            created = await directory.create(ORIGIN, 50, "post-1")
            return created, await directory.get_by_id(created.id)

        created, fetched = asyncio.run(scenario())

        assert fetched == created
        assert fetched.anchor == ORIGIN
        assert fetched.radius_m == 50
        assert fetched.member_ids == ["post-1"]
        assert fetched.member_count == 1

    def test_missing_tower(self, directory):
        assert asyncio.run(directory.get_by_id("nope")) is None
        with pytest.raises(NotFoundError, match="Tower not found: nope"):
            asyncio.run(directory.require("nope"))

    def test_add_member_is_idempotent(self, directory):
        async def scenario():
            tower = await directory.create(ORIGIN, 50, "post-1")
            await directory.add_member(tower.id, "post-2")
            return await directory.add_member(tower.id, "post-2")

        tower = asyncio.run(scenario())

        assert tower.member_ids == ["post-1", "post-2"]
        assert tower.member_count == 2

    def test_remove_absent_member_is_noop(self, directory):
        async def scenario():
            tower = await directory.create(ORIGIN, 50, "post-1")
            return await directory.remove_member(tower.id, "ghost")

        assert asyncio.run(scenario()).member_ids == ["post-1"]

    def test_empty_tower_is_kept(self, directory):
        async def scenario():
            tower = await directory.create(ORIGIN, 50, "post-1")
            await directory.remove_member(tower.id, "post-1")
            return await directory.get_by_id(tower.id)

        tower = asyncio.run(scenario())

        assert tower is not None
        assert tower.member_count == 0
        assert tower.anchor == ORIGIN

    def test_update_of_missing_tower_raises(self, directory):
        with pytest.raises(NotFoundError):
            asyncio.run(directory.add_member("missing", "post-1"))

    def test_find_nearest_respects_radius(self, directory):
        async def scenario():
            await directory.create(ORIGIN, 50, "post-1")
            inside = await directory.find_nearest(offset(ORIGIN, east_m=49), 50)
            outside = await directory.find_nearest(offset(ORIGIN, east_m=51), 50)
            return inside, outside

        inside, outside = asyncio.run(scenario())

        assert inside is not None
        assert outside is None

    def test_find_nearest_picks_closest(self, directory):
        async def scenario():
            near = await directory.create(offset(ORIGIN, east_m=10), 50, "near")
            await directory.create(offset(ORIGIN, east_m=-30), 50, "far")
            return near, await directory.find_nearest(ORIGIN, 50)

        near, nearest = asyncio.run(scenario())

        assert nearest.id == near.id

    def test_find_nearest_tie_resolves_to_lowest_id(self, directory):
        async def scenario():
            a = await directory.create(ORIGIN, 50, "a")
            b = await directory.create(ORIGIN, 50, "b")
            return a, b, await directory.find_nearest(offset(ORIGIN, north_m=5), 50)

        a, b, nearest = asyncio.run(scenario())

        assert nearest.id == min(a.id, b.id)

    def test_list_all_largest_first(self, directory):
        async def scenario():
            small = await directory.create(ORIGIN, 50, "s1")
            big = await directory.create(offset(ORIGIN, east_m=500), 50, "b1")
            await directory.add_member(big.id, "b2")
            return small, big, await directory.list_all()

        small, big, towers = asyncio.run(scenario())

        assert [t.id for t in towers] == [big.id, small.id]

    def test_towers_in_area_nearest_first(self, directory):
        async def scenario():
            far = await directory.create(offset(ORIGIN, east_m=800), 50, "far")
            near = await directory.create(offset(ORIGIN, east_m=100), 50, "near")
            await directory.create(offset(ORIGIN, east_m=5000), 50, "outside")
            return near, far, await directory.towers_in_area(ORIGIN, 1000)

        near, far, towers = asyncio.run(scenario())

        assert [t.id for t in towers] == [near.id, far.id]

    def test_create_rejects_bad_input(self, directory):
        with pytest.raises(ValidationError):
            asyncio.run(directory.create((95.0, 0.0), 50, "post-1"))
        with pytest.raises(ValidationError):
            asyncio.run(directory.create(ORIGIN, 0, "post-1"))
        with pytest.raises(ValidationError):
            asyncio.run(directory.create(ORIGIN, 50, ""))

    def test_reads_retry_transient_failures(self):
        store = FlakyContentStore(failures=2)
        directory = TowerDirectory(store, read_retries=3)

        assert asyncio.run(directory.list_all()) == []
        assert store.read_calls == 3


# ==============================================================================
# Concurrent member updates
# ==============================================================================

@pytest.mark.slow
class TestConcurrentMembership:

    @pytest.mark.parametrize("writers,latency", [(50, 0.002), (200, 0.0), (200, 0.002)])
    def test_concurrent_adds_lose_nothing_with_default_settings(self, writers, latency):
        directory = TowerDirectory(InMemoryContentStore(latency=latency), TowerSettings())
        member_ids = [f"post-{i}" for i in range(writers)]

        async def scenario():
            tower = await directory.create(ORIGIN, 50, "seed")
            results = await asyncio.gather(
                *(directory.add_member(tower.id, m) for m in member_ids),
                return_exceptions=True,
            )
            return results, await directory.require(tower.id)

        results, tower = asyncio.run(scenario())

        assert [r for r in results if isinstance(r, Exception)] == []
        assert set(tower.member_ids) == {"seed", *member_ids}
        assert tower.member_count == writers + 1
        assert len(tower.member_ids) == len(set(tower.member_ids))

    def test_concurrent_adds_and_removes(self):
        directory = TowerDirectory(InMemoryContentStore(latency=0.001), TowerSettings())
        initial = [f"old-{i}" for i in range(10)]
        added = [f"new-{i}" for i in range(5)]

        async def scenario():
            tower = await directory.create(ORIGIN, 50, initial[0])
            for m in initial[1:]:
                await directory.add_member(tower.id, m)
            await asyncio.gather(
                *(directory.remove_member(tower.id, m) for m in initial[:5]),
                *(directory.add_member(tower.id, m) for m in added),
            )
            return await directory.require(tower.id)

        tower = asyncio.run(scenario())

        assert set(tower.member_ids) == set(initial[5:]) | set(added)
        assert tower.member_count == 10


class AlwaysConflicting(InMemoryContentStore):
    async def compare_and_set(self, collection, doc_id, expected_version, fields):
        await super().compare_and_set(collection, doc_id, expected_version, fields)
        return False


class TestUpdateBudget:

    def test_conflict_error_after_attempt_cap(self):
        directory = TowerDirectory(
            AlwaysConflicting(), TowerSettings(max_update_attempts=3, conflict_backoff_s=0.0)
        )

        async def scenario():
            tower = await directory.create(ORIGIN, 50, "seed")
            await directory.add_member(tower.id, "post-1")

        with pytest.raises(TransactionConflictError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.attempts == 3

    def test_conflict_error_after_deadline(self):
        directory = TowerDirectory(
            AlwaysConflicting(),
            TowerSettings(update_deadline_s=0.05, conflict_backoff_s=0.001, max_conflict_backoff_s=0.01),
        )

        async def scenario():
            tower = await directory.create(ORIGIN, 50, "seed")
            await directory.add_member(tower.id, "post-1")

        with pytest.raises(TransactionConflictError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.attempts > 3

    def test_default_settings_have_no_attempt_cap(self):
        settings = TowerSettings()

        assert settings.max_update_attempts is None
        assert settings.update_deadline_s > 0

    def test_full_jitter_stays_under_the_ceiling(self):
        delays = [full_jitter_backoff(attempt, 0.005, 0.25) for attempt in range(12) for _ in range(20)]

        assert all(0.0 <= d <= 0.25 for d in delays)
        assert max(full_jitter_backoff(0, 0.005, 0.25) for _ in range(50)) <= 0.01


# ==============================================================================
# Find-or-create assignment through the service
# ==============================================================================

class TestAssignTower:

    def test_close_items_share_a_tower(self, service):
        """Two items 10m apart at radius 50 end up in one tower."""
        async def scenario():
            first = await service.assign_tower("post-1", ORIGIN)
            second = await service.assign_tower("post-2", offset(ORIGIN, east_m=10))
            return first, second, await service.get_tower(first)

        first, second, tower = asyncio.run(scenario())

        assert first == second
        assert tower.member_count == 2

    def test_distant_items_get_separate_towers(self, service):
        """Two items 1000m apart at radius 50 get a tower each."""
        async def scenario():
            first = await service.assign_tower("post-1", ORIGIN)
            second = await service.assign_tower("post-2", offset(ORIGIN, east_m=1000))
            return first, second, await service.list_towers()

        first, second, towers = asyncio.run(scenario())

        assert first != second
        assert len(towers) == 2
        assert all(t.member_count == 1 for t in towers)

    def test_repeated_assignment_is_idempotent(self, service):
        async def scenario():
            first = await service.assign_tower("post-1", ORIGIN)
            again = await service.assign_tower("post-1", ORIGIN)
            return first, again, await service.get_tower(first)

        first, again, tower = asyncio.run(scenario())

        assert first == again
        assert tower.member_ids == ["post-1"]

    def test_anchor_never_moves(self, service):
        async def scenario():
            tower_id = await service.assign_tower("post-1", ORIGIN)
            for i, east in enumerate((20, 35, 45)):
                await service.assign_tower(f"post-{i + 2}", offset(ORIGIN, east_m=east))
            return await service.get_tower(tower_id)

        tower = asyncio.run(scenario())

        assert tower.anchor == ORIGIN
        assert tower.member_count == 4

    def test_distance_measured_from_anchor_not_members(self, service):
        """Members 45m apart step by step never drag the tower along."""
        async def scenario():
            first = await service.assign_tower("post-1", ORIGIN)
            await service.assign_tower("post-2", offset(ORIGIN, east_m=45))
            third = await service.assign_tower("post-3", offset(ORIGIN, east_m=90))
            return first, third

        first, third = asyncio.run(scenario())

        assert first != third

    def test_invalid_location_creates_nothing(self, service, content_store):
        with pytest.raises(ValidationError):
            asyncio.run(service.assign_tower("post-1", (0.0, 200.0)))
        assert content_store.count(TOWERS_COLLECTION) == 0

    def test_concurrent_assignment_race_then_reconcile(self):
        """
        Two simultaneous submissions at an unclaimed spot both create a tower;
        reconciliation merges them into the older one.
        """
        service = GeoWhisperService(InMemoryContentStore(), InMemoryMessageFeed(), make_settings())

        async def scenario():
            await asyncio.gather(
                service.submit_content("post-a", ORIGIN),
                service.submit_content("post-b", ORIGIN),
            )
            before = await service.list_towers()
            report = await service.reconcile_duplicate_towers()
            after = await service.list_towers()
            items = [await service.get_content(c) for c in ("post-a", "post-b")]
            again = await service.reconcile_duplicate_towers()
            return before, report, after, items, again

        before, report, after, items, again = asyncio.run(scenario())

        assert len(before) == 2
        assert len(report.merged) == 1
        assert report.members_moved == 1

        assert len(after) == 1
        survivor = after[0]
        assert set(survivor.member_ids) == {"post-a", "post-b"}
        assert all(item.tower_id == survivor.id for item in items)

        assert again.merged == {}
