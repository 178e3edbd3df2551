import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import Session

from errors import StateConflict
from lifecycle import ResourceLifecycleManager
from models import ResourceStatus
from store import ResourceStore


def _claim_race(engine, resource_id, callers):
    barrier = threading.Barrier(len(callers))

    def attempt(caller):
        with Session(engine) as session:
            manager = ResourceLifecycleManager(session)
            barrier.wait()
            try:
                return manager.claim(caller, resource_id)
            except StateConflict as exc:
                return exc

    with ThreadPoolExecutor(max_workers=len(callers)) as pool:
        return list(pool.map(attempt, callers))


@pytest.mark.parametrize("round_", range(5))
def test_concurrent_claims_have_exactly_one_winner(
    engine, manager, donor, receiver, other_receiver, resource_payload, round_
):
    resource = manager.publish(donor, resource_payload)

    results = _claim_race(engine, resource.id, [receiver, other_receiver])

    winners = [r for r in results if not isinstance(r, StateConflict)]
    losers = [r for r in results if isinstance(r, StateConflict)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].current_status == ResourceStatus.CLAIMED

    with Session(engine) as session:
        final = ResourceLifecycleManager(session).get_by_id(receiver, resource.id)
    assert final.status == ResourceStatus.CLAIMED
    assert final.receiver_id == winners[0].receiver_id


def test_claim_on_stale_read_is_rejected(engine, donor, receiver, other_receiver, resource_payload, monkeypatch):
    with Session(engine) as session_a, Session(engine) as session_b:
        manager_a = ResourceLifecycleManager(session_a)
        manager_b = ResourceLifecycleManager(session_b)
        resource_id = manager_a.publish(donor, resource_payload).id

        stale = manager_a.store.get(resource_id)
        assert stale.status == ResourceStatus.AVAILABLE

        manager_b.claim(other_receiver, resource_id)
        monkeypatch.setattr(manager_a.store, "get", lambda _id: stale)

        with pytest.raises(StateConflict) as exc:
            manager_a.claim(receiver, resource_id)
        assert exc.value.current_status == ResourceStatus.CLAIMED

    with Session(engine) as session:
        final = ResourceLifecycleManager(session).get_by_id(receiver, resource_id)
    assert final.receiver_id == other_receiver.user_id


def test_claim_loses_to_concurrent_cancel(engine, donor, receiver, resource_payload, monkeypatch):
    with Session(engine) as session_a, Session(engine) as session_b:
        manager_a = ResourceLifecycleManager(session_a)
        manager_b = ResourceLifecycleManager(session_b)
        resource_id = manager_a.publish(donor, resource_payload).id

        stale = manager_a.store.get(resource_id)
        manager_b.cancel(donor, resource_id)
        monkeypatch.setattr(manager_a.store, "get", lambda _id: stale)

        with pytest.raises(StateConflict) as exc:
            manager_a.claim(receiver, resource_id)
        assert exc.value.current_status == ResourceStatus.CANCELLED

    with Session(engine) as session:
        final = ResourceLifecycleManager(session).get_by_id(donor, resource_id)
    assert final.receiver_id is None
    assert final.claimed_at is None


def test_claim_rejected_when_auto_confirm_flipped_underneath(
    engine, donor, receiver, resource_payload, monkeypatch
):
    with Session(engine) as session_a, Session(engine) as session_b:
        manager_a = ResourceLifecycleManager(session_a)
        manager_b = ResourceLifecycleManager(session_b)
        resource_id = manager_a.publish(donor, resource_payload).id

        stale = manager_a.store.get(resource_id)
        manager_b.toggle_auto_confirm(donor, resource_id)
        monkeypatch.setattr(manager_a.store, "get", lambda _id: stale)

        with pytest.raises(StateConflict) as exc:
            manager_a.claim(receiver, resource_id)
        assert exc.value.current_status == ResourceStatus.AVAILABLE


def test_compare_and_set_checks_expected_status(session, manager, donor, resource_payload):
    resource_id = manager.publish(donor, resource_payload).id
    store = ResourceStore(session)

    assert not store.compare_and_set(
        resource_id, ResourceStatus.CLAIMED, {"status": ResourceStatus.IN_TRANSIT}
    )
    assert store.reload(resource_id).status == ResourceStatus.AVAILABLE

    assert store.compare_and_set(
        resource_id, ResourceStatus.AVAILABLE, {"status": ResourceStatus.CANCELLED}
    )
    assert store.reload(resource_id).status == ResourceStatus.CANCELLED
