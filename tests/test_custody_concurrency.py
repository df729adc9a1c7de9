import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.db.models import ClientOrder, Custodian, LedgerEntry, RemittanceRecord
from app.custody.repos.ledger import LedgerRepository
from app.custody.services.allocation import AllocationItem, AllocationService
from app.custody.services.availability import AvailabilityService
from app.custody.services.notifications import ChangeBus
from app.custody.services.remittance import RemittanceService
from app.custody.services.transactions import ledger_transaction

from tests.custody_helpers import allocate, place_order, stock_team


def _entry(db, custodian, variant) -> LedgerEntry:
    return LedgerRepository(db).get_entry(custodian.id, variant.id)


def test_stale_parent_version_fails_at_flush(client, db_session, make_session):
    _, leader, _, variant = stock_team(client, db_session, suffix="STALE")
    first, second = make_session(), make_session()

    stale = _entry(first, leader, variant)
    fresh = _entry(second, leader, variant)
    LedgerRepository(second).touch(fresh)
    second.commit()

    LedgerRepository(first).touch(stale)
    with pytest.raises(StaleDataError):
        first.flush()
    first.rollback()


def test_version_conflict_surfaces_as_concurrent_modification(client, db_session, make_session):
    _, leader, _, variant = stock_team(client, db_session, suffix="CONF")
    first, second = make_session(), make_session()

    stale = _entry(first, leader, variant)
    fresh = _entry(second, leader, variant)
    LedgerRepository(second).debit(fresh, 1)
    second.commit()

    with pytest.raises(AppError) as exc_info:
        with ledger_transaction(first, "allocation"):
            LedgerRepository(first).touch(stale)
    assert exc_info.value.error == ErrorCatalog.CONCURRENT_MODIFICATION
    assert exc_info.value.details["type"] == "StaleDataError"

    first.expire_all()
    assert _entry(first, leader, variant).quantity == 999


def test_allocation_bumps_parent_version_without_changing_quantity(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="VER")
    before = _entry(db_session, leader, variant).version

    service = AllocationService(db_session, bus=ChangeBus(debounce_ms=0))
    actor = db_session.get(Custodian, leader.id)
    result = service.allocate(actor, agent.id, AllocationItem(variant_id=variant.id, quantity=10))
    assert result.allocated is True

    db_session.expire_all()
    entry = _entry(db_session, leader, variant)
    assert entry.quantity == 1000
    assert entry.version == before + 1
    assert _entry(db_session, agent, variant).version == 1


def test_failed_unit_rolls_back_every_write(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="RB")
    service = AllocationService(db_session, bus=ChangeBus(debounce_ms=0))
    actor = db_session.get(Custodian, leader.id)

    with pytest.raises(RuntimeError):
        with ledger_transaction(db_session, "allocation"):
            service.transfer(
                performed_by=actor.id,
                parent=actor,
                child=db_session.get(Custodian, agent.id),
                variant_id=variant.id,
                quantity=5,
                prices={},
            )
            raise RuntimeError("boom")

    db_session.expire_all()
    assert _entry(db_session, agent, variant) is None


def _pause_once(barrier: threading.Barrier, original):
    """Wrap ``original`` so each thread waits at ``barrier`` after its first call."""
    seen = threading.local()

    def wrapper(*args, **kwargs):
        result = original(*args, **kwargs)
        if not getattr(seen, "done", False):
            seen.done = True
            try:
                barrier.wait(timeout=2)
            except threading.BrokenBarrierError:
                # Row locks serialise the writers on databases that honour FOR UPDATE.
                pass
        return result

    return wrapper


def _race(workers) -> list[str]:
    outcomes = []
    lock = threading.Lock()

    def run(work):
        try:
            work()
            outcome = "ok"
        except AppError as exc:
            outcome = exc.error.code
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=run, args=(work,)) for work in workers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return sorted(outcomes)


def test_racing_allocations_never_over_allocate(client, db_session, make_session, monkeypatch):
    _, leader, (first_agent, second_agent), variant = stock_team(client, db_session, suffix="RACE", agents=2)
    barrier = threading.Barrier(2)
    monkeypatch.setattr(AvailabilityService, "snapshot", _pause_once(barrier, AvailabilityService.snapshot))

    def allocate_to(agent):
        def work():
            db = make_session()
            service = AllocationService(db, bus=ChangeBus(debounce_ms=0))
            service.allocate(db.get(Custodian, leader.id), agent.id, AllocationItem(variant_id=variant.id, quantity=600))

        return work

    outcomes = _race([allocate_to(first_agent), allocate_to(second_agent)])

    assert outcomes[1] == "ok"
    assert outcomes[0] in {"CONCURRENT_MODIFICATION", "INSUFFICIENT_STOCK"}
    db_session.expire_all()
    snapshot = AvailabilityService(db_session).snapshot(leader.id, variant.id)
    assert snapshot.total == 1000
    assert snapshot.allocated_below == 600
    assert snapshot.available == 400


def test_racing_remittances_create_one_record(client, db_session, make_session, monkeypatch):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="RRACE")
    allocate(client, leader, agent, variant, 30)
    for quantity in (4, 6):
        assert place_order(client, agent, variant, quantity).status_code == 201
    barrier = threading.Barrier(2)
    monkeypatch.setattr(RemittanceService, "_select_orders", _pause_once(barrier, RemittanceService._select_orders))

    def remit():
        db = make_session()
        service = RemittanceService(db, bus=ChangeBus(debounce_ms=0))
        service.remit(db.get(Custodian, agent.id), leader.id, signature_url="https://signatures.example/race.png")

    outcomes = _race([remit, remit])

    assert outcomes == ["CONCURRENT_MODIFICATION", "ok"]
    db_session.expire_all()
    (record,) = db_session.execute(select(RemittanceRecord).where(RemittanceRecord.agent_id == agent.id)).scalars().all()
    assert record.orders_count == 2
    assert record.total_units == 20
    remitted = db_session.execute(
        select(func.count()).select_from(ClientOrder).where(
            ClientOrder.agent_id == agent.id, ClientOrder.remittance_id == record.id
        )
    ).scalar_one()
    assert remitted == 2
    assert _entry(db_session, agent, variant).quantity == 0
