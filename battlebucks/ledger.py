# battlebucks/ledger.py - Slot accounting for tournament registrations.
#
# A tournament's `slotsAllotted` counter must always equal the number of its
# registrations whose payment is Confirmed. Every change to either side goes
# through one store transaction here.

import traceback
from collections import Counter
from dataclasses import dataclass

from .errors import CapacityExceeded, InvalidReference, LedgerError, NotFound, StatusConflict
from .models import REGISTRATIONS, TOURNAMENTS, USERS, PaymentStatus, Registration, Tournament
from .notifications import ConfirmationMessage, draft_confirmation_email
from .store import Increment


@dataclass
class SlotChange:
    registration: Registration
    tournament: Tournament
    notification: ConfirmationMessage = None


def _check_reference(doc_id, message):
    if not isinstance(doc_id, str) or not doc_id.strip() or '/' in doc_id:
        raise InvalidReference(message)


def _actor(caller):
    return caller.uid if caller is not None else 'system'


class RegistrationLedger:
    """
    Confirms and reverses registration payments against a tournament's capacity.

    `strict_revert` controls RevertToPending: when on, the registration must
    currently be Confirmed and the counter never drops below zero; when off,
    the counter is decremented unconditionally without reading anything.
    """

    def __init__(self, store, dispatcher=None, strict_revert=True):
        self.store = store
        self.dispatcher = dispatcher
        self.strict_revert = strict_revert

    def _check_references(self, registration_id, tournament_id):
        _check_reference(tournament_id, "This registration has an invalid or missing tournament ID.")
        _check_reference(registration_id, "Registration ID is missing or invalid.")

    def _read_pair(self, txn, registration_id, tournament_id):
        tournament_data = txn.get(TOURNAMENTS, tournament_id)
        registration_data = txn.get(REGISTRATIONS, registration_id)
        if tournament_data is None:
            raise NotFound("Tournament not found!")
        if registration_data is None:
            raise NotFound("Registration not found.")

        registration = Registration.from_dict(registration_id, registration_data)
        if registration.tournamentId != tournament_id:
            raise InvalidReference(
                f"Registration {registration_id} does not belong to tournament {tournament_id}."
            )
        return Tournament.from_dict(tournament_id, tournament_data), registration

    def confirm_payment(self, registration_id, tournament_id, caller=None):
        """Marks the registration Confirmed and takes one slot, or fails without writing."""
        self._check_references(registration_id, tournament_id)
        print(f"Ledger: {_actor(caller)} confirming registration {registration_id} for tournament {tournament_id}")

        def confirm(txn):
            tournament, registration = self._read_pair(txn, registration_id, tournament_id)
            if registration.is_confirmed:
                raise StatusConflict("This registration is already confirmed.")
            if tournament.slotsAllotted >= tournament.slotsTotal:
                raise CapacityExceeded()

            txn.update(REGISTRATIONS, registration_id, {'paymentStatus': PaymentStatus.CONFIRMED})
            txn.update(TOURNAMENTS, tournament_id, {'slotsAllotted': Increment(1)})

            registration.paymentStatus = PaymentStatus.CONFIRMED
            tournament.slotsAllotted += 1
            return SlotChange(registration=registration, tournament=tournament)

        try:
            change = self.store.run_transaction(confirm)
        except LedgerError as e:
            print(f"Ledger: confirm of {registration_id} failed: {e.message}")
            raise

        print(f"✅ Ledger: registration {registration_id} confirmed. "
              f"{tournament_id} now {change.tournament.slotsAllotted}/{change.tournament.slotsTotal}")
        change.notification = self._send_confirmation(change.registration, change.tournament)
        return change

    def revert_to_pending(self, registration_id, tournament_id, caller=None):
        """Marks the registration Pending again and releases its slot."""
        self._check_references(registration_id, tournament_id)
        print(f"Ledger: {_actor(caller)} reverting registration {registration_id} for tournament {tournament_id}")

        def revert_strict(txn):
            tournament, registration = self._read_pair(txn, registration_id, tournament_id)
            if not registration.is_confirmed:
                raise StatusConflict("This registration is already pending.")

            new_count = max(0, tournament.slotsAllotted - 1)
            txn.update(REGISTRATIONS, registration_id, {'paymentStatus': PaymentStatus.PENDING})
            txn.update(TOURNAMENTS, tournament_id, {'slotsAllotted': new_count})

            registration.paymentStatus = PaymentStatus.PENDING
            tournament.slotsAllotted = new_count
            return SlotChange(registration=registration, tournament=tournament)

        def revert_unconditional(txn):
            txn.update(REGISTRATIONS, registration_id, {'paymentStatus': PaymentStatus.PENDING})
            txn.update(TOURNAMENTS, tournament_id, {'slotsAllotted': Increment(-1)})

        try:
            if self.strict_revert:
                change = self.store.run_transaction(revert_strict)
            else:
                self.store.run_transaction(revert_unconditional)
                change = SlotChange(
                    registration=Registration.from_dict(registration_id, self.store.get(REGISTRATIONS, registration_id)),
                    tournament=Tournament.from_dict(tournament_id, self.store.get(TOURNAMENTS, tournament_id)),
                )
        except LedgerError as e:
            print(f"Ledger: revert of {registration_id} failed: {e.message}")
            raise

        print(f"Ledger: registration {registration_id} back to Pending. "
              f"{tournament_id} now {change.tournament.slotsAllotted}/{change.tournament.slotsTotal}")
        return change

    def _send_confirmation(self, registration, tournament):
        """Drafts the player's confirmation and hands it off. Never raises."""
        try:
            user_name = registration.userEmail
            if registration.userId:
                profile = self.store.get(USERS, registration.userId)
                if profile and profile.get('name'):
                    user_name = profile['name']

            message = draft_confirmation_email(user_name, registration.userEmail, tournament)
            if self.dispatcher is not None:
                self.dispatcher.dispatch(message)
            return message
        except Exception as e:
            print(f"Could not send confirmation for registration {registration.id}: {e}")
            traceback.print_exc()
            return None

    def reconcile_slots(self, repair=False):
        """
        Compares every tournament's `slotsAllotted` with its count of Confirmed
        registrations. With `repair`, drifted counters are overwritten with the
        count; this is meant for quiet periods, as confirmations landing between
        the count and the write are not accounted for.
        """
        tournaments = self.store.query(TOURNAMENTS)
        confirmed = self.store.query(REGISTRATIONS, filters=[('paymentStatus', '==', PaymentStatus.CONFIRMED)])
        counts = Counter(reg.get('tournamentId') for reg in confirmed)

        known_ids = set()
        drifts = []
        for data in tournaments:
            tournament = Tournament.from_dict(data['id'], data)
            known_ids.add(tournament.id)
            confirmed_count = counts.get(tournament.id, 0)
            if confirmed_count != tournament.slotsAllotted:
                drifts.append({
                    'tournamentId': tournament.id,
                    'title': tournament.title,
                    'slotsAllotted': tournament.slotsAllotted,
                    'confirmedCount': confirmed_count,
                })

        orphans = sorted(reg['id'] for reg in confirmed if reg.get('tournamentId') not in known_ids)

        for drift in drifts:
            print(f"⚠️ Slot drift on {drift['tournamentId']}: counter {drift['slotsAllotted']}, "
                  f"confirmed registrations {drift['confirmedCount']}")
        if orphans:
            print(f"⚠️ {len(orphans)} confirmed registrations point at missing tournaments: {orphans}")

        if repair:
            for drift in drifts:
                self._overwrite_counter(drift['tournamentId'], drift['confirmedCount'])

        return {
            'checked': len(tournaments),
            'drifts': drifts,
            'orphanRegistrations': orphans,
            'repaired': bool(repair and drifts),
        }

    def _overwrite_counter(self, tournament_id, count):
        def overwrite(txn):
            if txn.get(TOURNAMENTS, tournament_id) is None:
                return False
            txn.update(TOURNAMENTS, tournament_id, {'slotsAllotted': count})
            return True

        if self.store.run_transaction(overwrite):
            print(f"Ledger: slotsAllotted of {tournament_id} reset to {count}")
