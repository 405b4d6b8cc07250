import random

import pytest

from battlebucks.errors import (
    CapacityExceeded, InvalidReference, LedgerError, NotFound, StatusConflict, TransactionAborted,
)
from battlebucks.ledger import RegistrationLedger
from battlebucks.models import REGISTRATIONS, PaymentStatus
from battlebucks.notifications import NotificationDispatcher

from conftest import (
    RecordingSink, add_registration, add_tournament, add_user, payment_status, slots_allotted,
)


class TestConfirmPayment:
    def test_takes_the_last_slot(self, store, ledger):
        add_tournament(store, slots_total=10, slots_allotted=9)
        add_registration(store)

        change = ledger.confirm_payment("r1", "t1")

        assert slots_allotted(store) == 10
        assert payment_status(store) == PaymentStatus.CONFIRMED
        assert change.tournament.slotsAllotted == 10
        assert change.registration.paymentStatus == PaymentStatus.CONFIRMED

    def test_full_tournament_is_rejected_and_nothing_changes(self, store, ledger, sink):
        add_tournament(store, slots_total=10, slots_allotted=10)
        add_registration(store)

        with pytest.raises(CapacityExceeded) as excinfo:
            ledger.confirm_payment("r1", "t1")

        assert excinfo.value.message == "No slots left in this tournament."
        assert excinfo.value.status_code == 409
        assert slots_allotted(store) == 10
        assert payment_status(store) == PaymentStatus.PENDING
        assert sink.messages == []

    @pytest.mark.parametrize("tournament_id", [None, "", "   ", 42, "tournaments/t1"])
    def test_bad_tournament_reference_never_reaches_the_store(self, store, sink, tournament_id):
        def explode(fn):
            raise AssertionError("store must not be touched")

        store.run_transaction = explode
        ledger = RegistrationLedger(store, dispatcher=NotificationDispatcher(sink))

        with pytest.raises(InvalidReference):
            ledger.confirm_payment("r1", tournament_id)

    def test_registration_without_tournament_id_is_invalid(self, store, ledger):
        add_tournament(store)
        add_registration(store, tournament_id=None)
        stored = store.get(REGISTRATIONS, "r1")

        with pytest.raises(InvalidReference):
            ledger.confirm_payment("r1", stored["tournamentId"])
        assert slots_allotted(store) == 0

    def test_missing_tournament(self, store, ledger):
        add_registration(store, tournament_id="gone")

        with pytest.raises(NotFound) as excinfo:
            ledger.confirm_payment("r1", "gone")
        assert excinfo.value.message == "Tournament not found!"
        assert payment_status(store) == PaymentStatus.PENDING

    def test_missing_registration(self, store, ledger):
        add_tournament(store)

        with pytest.raises(NotFound):
            ledger.confirm_payment("nope", "t1")
        assert slots_allotted(store) == 0

    def test_registration_for_another_tournament(self, store, ledger):
        add_tournament(store, "t1")
        add_tournament(store, "t2")
        add_registration(store, tournament_id="t2")

        with pytest.raises(InvalidReference):
            ledger.confirm_payment("r1", "t1")
        assert slots_allotted(store, "t1") == 0
        assert slots_allotted(store, "t2") == 0

    def test_confirming_twice_does_not_take_a_second_slot(self, store, ledger):
        add_tournament(store)
        add_registration(store)
        ledger.confirm_payment("r1", "t1")

        with pytest.raises(StatusConflict):
            ledger.confirm_payment("r1", "t1")
        assert slots_allotted(store) == 1

    def test_aborted_commit_leaves_no_partial_write(self, store, ledger, monkeypatch):
        add_tournament(store, slots_allotted=3)
        add_registration(store)

        def refuse(txn):
            raise TransactionAborted("UNAVAILABLE: connection reset")

        monkeypatch.setattr(store, "_commit", refuse)

        with pytest.raises(TransactionAborted) as excinfo:
            ledger.confirm_payment("r1", "t1")

        assert excinfo.value.reason == "UNAVAILABLE: connection reset"
        assert excinfo.value.status_code == 503
        assert slots_allotted(store) == 3
        assert payment_status(store) == PaymentStatus.PENDING


class TestConfirmationNotice:
    def test_draft_uses_profile_name_and_is_dispatched(self, store, ledger, sink):
        add_tournament(store)
        add_registration(store)
        add_user(store, name="SniperQueen")

        change = ledger.confirm_payment("r1", "t1")

        assert change.notification.recipient == "player-1@example.com"
        assert change.notification.body.startswith("Hi SniperQueen,")
        assert "Weekend Warriors Cup" in change.notification.subject
        assert sink.messages == [change.notification]

    def test_falls_back_to_email_without_profile(self, store, ledger):
        add_tournament(store)
        add_registration(store)

        change = ledger.confirm_payment("r1", "t1")
        assert change.notification.body.startswith("Hi player-1@example.com,")

    def test_failing_sink_does_not_fail_the_confirmation(self, store):
        add_tournament(store)
        add_registration(store)
        ledger = RegistrationLedger(store, dispatcher=NotificationDispatcher(RecordingSink(fail=True)))

        change = ledger.confirm_payment("r1", "t1")

        assert change.notification is not None
        assert slots_allotted(store) == 1
        assert payment_status(store) == PaymentStatus.CONFIRMED

    def test_broken_dispatcher_does_not_fail_the_confirmation(self, store):
        class BrokenDispatcher:
            def dispatch(self, message):
                raise RuntimeError("scheduler is shut down")

        add_tournament(store)
        add_registration(store)
        ledger = RegistrationLedger(store, dispatcher=BrokenDispatcher())

        change = ledger.confirm_payment("r1", "t1")

        assert change.notification is None
        assert slots_allotted(store) == 1


class TestRevertToPending:
    def test_round_trip_restores_counter_and_status(self, store, ledger):
        add_tournament(store, slots_allotted=4)
        add_registration(store)

        ledger.confirm_payment("r1", "t1")
        change = ledger.revert_to_pending("r1", "t1")

        assert slots_allotted(store) == 4
        assert payment_status(store) == PaymentStatus.PENDING
        assert change.tournament.slotsAllotted == 4

    def test_reverting_a_pending_registration_is_refused(self, store, ledger):
        add_tournament(store, slots_allotted=2)
        add_registration(store)

        with pytest.raises(StatusConflict):
            ledger.revert_to_pending("r1", "t1")
        assert slots_allotted(store) == 2

    def test_counter_never_drops_below_zero(self, store, ledger):
        add_tournament(store, slots_allotted=0)
        add_registration(store, status=PaymentStatus.CONFIRMED)

        ledger.revert_to_pending("r1", "t1")

        assert slots_allotted(store) == 0
        assert payment_status(store) == PaymentStatus.PENDING

    @pytest.mark.parametrize("tournament_id", [None, "", "   ", 42, "tournaments/t1"])
    def test_bad_reference_never_reaches_the_store(self, store, tournament_id):
        add_tournament(store, slots_allotted=1)
        add_registration(store, status=PaymentStatus.CONFIRMED)

        def explode(fn):
            raise AssertionError("store must not be touched")

        store.run_transaction = explode
        ledger = RegistrationLedger(store)

        with pytest.raises(InvalidReference):
            ledger.revert_to_pending("r1", tournament_id)
        assert slots_allotted(store) == 1
        assert payment_status(store) == PaymentStatus.CONFIRMED

    def test_unconditional_mode_decrements_without_checks(self, store):
        add_tournament(store, slots_allotted=0)
        add_registration(store)
        ledger = RegistrationLedger(store, strict_revert=False)

        change = ledger.revert_to_pending("r1", "t1")

        assert slots_allotted(store) == -1
        assert change.tournament.slotsAllotted == -1
        assert payment_status(store) == PaymentStatus.PENDING

    def test_unconditional_mode_on_missing_tournament_aborts(self, store):
        add_registration(store, status=PaymentStatus.CONFIRMED)
        ledger = RegistrationLedger(store, strict_revert=False)

        with pytest.raises(TransactionAborted):
            ledger.revert_to_pending("r1", "t1")
        assert payment_status(store) == PaymentStatus.CONFIRMED


def test_random_operation_sequences_keep_the_counter_exact(store):
    rng = random.Random(20261018)
    ledger = RegistrationLedger(store)
    add_tournament(store, slots_total=5)
    registration_ids = [add_registration(store, f"r{i}") for i in range(12)]

    for _ in range(300):
        registration_id = rng.choice(registration_ids)
        operation = rng.choice([ledger.confirm_payment, ledger.revert_to_pending])
        try:
            operation(registration_id, "t1")
        except (CapacityExceeded, StatusConflict):
            pass

        confirmed = sum(1 for rid in registration_ids if payment_status(store, rid) == PaymentStatus.CONFIRMED)
        allotted = slots_allotted(store)
        assert 0 <= allotted <= 5
        assert allotted == confirmed


class TestReconcile:
    def test_clean_ledger_reports_nothing(self, store, ledger):
        add_tournament(store, slots_allotted=1)
        add_registration(store, status=PaymentStatus.CONFIRMED)

        report = ledger.reconcile_slots()
        assert report == {"checked": 1, "drifts": [], "orphanRegistrations": [], "repaired": False}

    def test_reports_and_repairs_drift(self, store, ledger):
        add_tournament(store, "t1", slots_allotted=3)
        add_tournament(store, "t2", slots_allotted=0)
        add_registration(store, "r1", "t1", status=PaymentStatus.CONFIRMED)
        add_registration(store, "r2", "t2", status=PaymentStatus.CONFIRMED)
        add_registration(store, "r3", "deleted", status=PaymentStatus.CONFIRMED)

        report = ledger.reconcile_slots()
        assert {d["tournamentId"]: (d["slotsAllotted"], d["confirmedCount"]) for d in report["drifts"]} == {
            "t1": (3, 1),
            "t2": (0, 1),
        }
        assert report["orphanRegistrations"] == ["r3"]
        assert slots_allotted(store, "t1") == 3

        repaired = ledger.reconcile_slots(repair=True)
        assert repaired["repaired"] is True
        assert slots_allotted(store, "t1") == 1
        assert slots_allotted(store, "t2") == 1
        assert ledger.reconcile_slots()["drifts"] == []


def test_every_ledger_error_carries_a_message():
    for error in (InvalidReference(), NotFound(), CapacityExceeded(), TransactionAborted("x")):
        assert isinstance(error, LedgerError)
        assert error.message
