import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import OTHER_RUNNER_ID, RUNNER_ID, ScriptedPositionSource, coords
from errands.exceptions import NetworkError
from errands.models import ActorPosition, ErrandStatus
from tracking.eta_feed import EtaFeed
from tracking.location_store import InMemoryLocationStore
from tracking.location_tracker import LocationTracker
from tracking.scheduler import ErrandScheduler, PeriodicJob


class FailingLocationStore(InMemoryLocationStore):
    async def set_actor_location(self, actor_id, coords, sampled_at):
        raise NetworkError("store unreachable")


@pytest.fixture
def source():
    return ScriptedPositionSource({RUNNER_ID: [coords(6.5100, 3.3700), coords(6.5000, 3.3800)]})


def test_tick_publishes_and_notifies_listeners(source, location_store):
    tracker = LocationTracker(source, location_store)
    heard = []

    async def listener(position):
        heard.append(position)

    tracker.add_listener(listener)

    async def scenario():
        published = await tracker.tick(RUNNER_ID)
        stored = await location_store.get_actor_location(RUNNER_ID)
        return published, stored

    published, stored = asyncio.run(scenario())
    assert published == stored
    assert stored.coordinates == coords(6.5100, 3.3700)
    assert heard == [published]


def test_failed_read_drops_the_sample(location_store):
    tracker = LocationTracker(ScriptedPositionSource(), location_store)

    async def scenario():
        published = await tracker.tick(RUNNER_ID)
        return published, await location_store.get_actor_location(RUNNER_ID)

    published, stored = asyncio.run(scenario())
    assert published is None
    assert stored is None
    assert tracker.dropped_samples == 1


def test_failed_publish_drops_the_sample(source):
    tracker = LocationTracker(source, FailingLocationStore())

    assert asyncio.run(tracker.tick(RUNNER_ID)) is None
    assert tracker.dropped_samples == 1


def test_start_and_stop(source, location_store):
    tracker = LocationTracker(source, location_store)

    async def scenario():
        tracker.start(RUNNER_ID, interval_ms=10)
        assert tracker.is_tracking(RUNNER_ID)
        await asyncio.sleep(0.06)
        tracker.stop(RUNNER_ID)
        calls_at_stop = source.calls
        await asyncio.sleep(0.03)
        return calls_at_stop, await location_store.get_actor_location(RUNNER_ID)

    calls_at_stop, stored = asyncio.run(scenario())
    assert calls_at_stop >= 2
    assert source.calls == calls_at_stop
    assert not tracker.is_tracking(RUNNER_ID)
    # the scripted source ends on its last position
    assert stored.coordinates == coords(6.5000, 3.3800)


def test_aclose_cancels_everything(source, location_store):
    tracker = LocationTracker(source, location_store)

    async def scenario():
        tracker.start(RUNNER_ID, interval_ms=10)
        tracker.start(OTHER_RUNNER_ID, interval_ms=10)
        await asyncio.sleep(0)
        await tracker.aclose()
        return tracker.tracked_actors

    assert asyncio.run(scenario()) == []


def test_store_keeps_newest_sample(location_store):
    now = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    async def scenario():
        await location_store.set_actor_location(RUNNER_ID, coords(6.5, 3.3), now)
        await location_store.set_actor_location(RUNNER_ID, coords(6.4, 3.2), now - timedelta(seconds=30))
        return await location_store.get_actor_location(RUNNER_ID)

    assert asyncio.run(scenario()).coordinates == coords(6.5, 3.3)


def test_nearby_actors(location_store, pickup):
    now = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    async def scenario():
        await location_store.set_actor_location("near", coords(6.5250, 3.3800), now)
        await location_store.set_actor_location("far", coords(6.9000, 3.9000), now)
        await location_store.set_actor_location("self", coords(6.5244, 3.3792), now)
        return await location_store.nearby_actors(pickup.coordinates, 5, exclude="self")

    found = asyncio.run(scenario())
    assert [position.actor_id for position, _ in found] == ["near"]


def test_eta_feed_follows_runner_positions(source, location_store, make_errand):
    feed = EtaFeed()
    tracker = LocationTracker(source, location_store)
    tracker.add_listener(feed.on_position)

    errand = make_errand(status=ErrandStatus.ACCEPTED, runner_id=RUNNER_ID)
    feed.watch(errand)
    received = []
    feed.subscribe(errand.id, received.append)

    async def scenario():
        await tracker.tick(RUNNER_ID)
        feed.watch(errand.evolve(status=ErrandStatus.PICKED_UP))
        await tracker.tick(RUNNER_ID)

    asyncio.run(scenario())

    assert [estimate.anchor for estimate in received] == [errand.pickup, errand.dropoff]
    assert feed.latest(errand.id) == received[-1]


def test_eta_feed_ignores_other_actors(make_errand):
    feed = EtaFeed()
    errand = make_errand(status=ErrandStatus.ACCEPTED, runner_id=RUNNER_ID)
    feed.watch(errand)
    received = []
    unsubscribe = feed.subscribe(errand.id, received.append)

    stranger = ActorPosition(OTHER_RUNNER_ID, coords(6.5, 3.38))
    assert asyncio.run(feed.on_position(stranger)) == []

    unsubscribe()
    asyncio.run(feed.on_position(ActorPosition(RUNNER_ID, coords(6.5, 3.38))))
    assert received == []
    assert feed.latest(errand.id) is not None


def test_periodic_job_survives_failing_ticks():
    async def boom():
        raise RuntimeError("transient")

    job = PeriodicJob("boom", 5, boom)

    async def scenario():
        job.start()
        await asyncio.sleep(0.05)
        await job.aclose()

    asyncio.run(scenario())
    assert job.failures >= 2
    assert job.failures == job.ticks or job.failures == job.ticks - 1
    assert not job.running


def test_errand_scheduler_lifecycle():
    ticks = {"status": 0, "eta": 0}

    def counter(name):
        async def tick():
            ticks[name] += 1
        return tick

    scheduler = ErrandScheduler("errand_1")
    scheduler.every("status", 10, counter("status"))

    async def scenario():
        scheduler.start()
        scheduler.every("eta", 10, counter("eta"))
        await asyncio.sleep(0.035)
        await scheduler.aclose()
        frozen = dict(ticks)
        await asyncio.sleep(0.02)
        return frozen

    frozen = asyncio.run(scenario())
    assert scheduler.job_names == ["eta", "status"]
    assert not scheduler.running
    assert frozen["status"] >= 1 and frozen["eta"] >= 1
    assert ticks == frozen


def test_periodic_job_rejects_bad_interval():
    async def noop():
        return None

    with pytest.raises(ValueError):
        PeriodicJob("bad", 0, noop)


def test_periodic_job_stops_when_a_tick_swallows_the_cancel():
    async def stubborn():
        try:
            await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    job = PeriodicJob("stubborn", 60_000, stubborn)

    async def scenario():
        job.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(job.aclose(), timeout=1)

    asyncio.run(scenario())
    assert job.ticks == 1
    assert not job.running


def test_eta_feed_unwatch_forgets_the_estimate(source, location_store, make_errand):
    feed = EtaFeed()
    tracker = LocationTracker(source, location_store)
    tracker.add_listener(feed.on_position)
    errand = make_errand(status=ErrandStatus.ACCEPTED, runner_id=RUNNER_ID)
    feed.watch(errand)

    asyncio.run(tracker.tick(RUNNER_ID))
    assert feed.latest(errand.id) is not None

    feed.unwatch(errand.id)
    assert feed.latest(errand.id) is None
    assert not feed.watching(errand.id)
