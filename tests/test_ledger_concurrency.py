import threading
from concurrent.futures import ThreadPoolExecutor

from battlebucks.errors import CapacityExceeded
from battlebucks.ledger import RegistrationLedger
from battlebucks.models import TOURNAMENTS, PaymentStatus
from battlebucks.store import InMemoryStore

from conftest import add_registration, add_tournament, payment_status, slots_allotted


class LockstepStore(InMemoryStore):
    """Holds every armed thread right after its first tournament read until all of them have read."""

    def __init__(self, parties):
        super().__init__(max_attempts=5)
        self.barrier = threading.Barrier(parties, timeout=5)
        self.local = threading.local()
        self.armed = False

    def _read(self, collection, doc_id):
        result = super()._read(collection, doc_id)
        if self.armed and collection == TOURNAMENTS and not getattr(self.local, "waited", False):
            self.local.waited = True
            self.barrier.wait()
        return result


def _confirm(ledger, registration_id):
    try:
        ledger.confirm_payment(registration_id, "t1")
        return "confirmed"
    except CapacityExceeded:
        return "full"


def test_two_admins_racing_for_the_last_slot():
    store = LockstepStore(parties=2)
    ledger = RegistrationLedger(store)
    add_tournament(store, slots_total=10, slots_allotted=9)
    add_registration(store, "r1")
    add_registration(store, "r2")

    store.armed = True
    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(lambda rid: _confirm(ledger, rid), ["r1", "r2"]))
    store.armed = False

    assert sorted(outcomes) == ["confirmed", "full"]
    assert slots_allotted(store) == 10
    statuses = sorted(payment_status(store, rid) for rid in ("r1", "r2"))
    assert statuses == [PaymentStatus.CONFIRMED, PaymentStatus.PENDING]


def test_many_concurrent_confirmations_never_overbook():
    store = InMemoryStore(max_attempts=50)
    ledger = RegistrationLedger(store)
    add_tournament(store, slots_total=5)
    registration_ids = [add_registration(store, f"r{i}") for i in range(20)]

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(lambda rid: _confirm(ledger, rid), registration_ids))

    assert outcomes.count("confirmed") == 5
    assert outcomes.count("full") == 15
    assert slots_allotted(store) == 5
    confirmed = [rid for rid in registration_ids if payment_status(store, rid) == PaymentStatus.CONFIRMED]
    assert len(confirmed) == 5


def test_confirmations_on_different_tournaments_do_not_interfere():
    store = InMemoryStore(max_attempts=50)
    ledger = RegistrationLedger(store)
    add_tournament(store, "t1", slots_total=3)
    add_tournament(store, "t2", slots_total=3)
    for i in range(3):
        add_registration(store, f"a{i}", "t1")
        add_registration(store, f"b{i}", "t2")

    jobs = [(f"a{i}", "t1") for i in range(3)] + [(f"b{i}", "t2") for i in range(3)]
    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(lambda job: ledger.confirm_payment(*job), jobs))

    assert slots_allotted(store, "t1") == 3
    assert slots_allotted(store, "t2") == 3
