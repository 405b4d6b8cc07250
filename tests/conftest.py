from datetime import datetime, timezone

import pytest

from battlebucks.api import create_app
from battlebucks.config import Config
from battlebucks.ledger import RegistrationLedger
from battlebucks.models import REGISTRATIONS, TOURNAMENTS, USERS, PaymentStatus
from battlebucks.notifications import NotificationDispatcher
from battlebucks.store import InMemoryStore

ADMIN_UID = "admin-1"
PLAYER_UID = "player-1"

TOKENS = {
    "admin-token": {"uid": ADMIN_UID, "email": "admin@battlebucks.gg"},
    "player-token": {"uid": PLAYER_UID, "email": "sniperqueen@example.com"},
    "other-token": {"uid": "player-2", "email": "clutchgod@example.com"},
}


class RecordingSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.messages = []

    def notify(self, message):
        if self.fail:
            raise RuntimeError("SMTP relay unreachable")
        self.messages.append(message)
        return True


def fake_verify_token(token):
    if token not in TOKENS:
        raise ValueError("Invalid ID token")
    return dict(TOKENS[token])


def add_tournament(store, tournament_id="t1", slots_total=10, slots_allotted=0, **extra):
    data = {
        "title": "Weekend Warriors Cup",
        "game": "PUBG",
        "date": "2026-11-01",
        "time": "18:30",
        "entryFee": 50,
        "prizePool": 5000,
        "slotsTotal": slots_total,
        "slotsAllotted": slots_allotted,
        "status": "Upcoming",
        "rules": ["No emulators"],
    }
    data.update(extra)
    store.set(TOURNAMENTS, tournament_id, data)
    return tournament_id


def add_registration(store, registration_id="r1", tournament_id="t1",
                     status=PaymentStatus.PENDING, user_id=PLAYER_UID, **extra):
    data = {
        "tournamentId": tournament_id,
        "tournamentTitle": "Weekend Warriors Cup",
        "userId": user_id,
        "userEmail": f"{user_id}@example.com",
        "gameId": f"GID-{registration_id}",
        "teamName": "Night Owls",
        "upiId": f"{user_id}@upi",
        "paymentStatus": status,
        "registeredAt": datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
    }
    data.update(extra)
    store.set(REGISTRATIONS, registration_id, data)
    return registration_id


def add_user(store, uid=PLAYER_UID, **extra):
    data = {"uid": uid, "name": "SniperQueen", "email": f"{uid}@example.com", "status": "active"}
    data.update(extra)
    store.set(USERS, uid, data)
    return uid


def slots_allotted(store, tournament_id="t1"):
    return store.get(TOURNAMENTS, tournament_id)["slotsAllotted"]


def payment_status(store, registration_id="r1"):
    return store.get(REGISTRATIONS, registration_id)["paymentStatus"]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def ledger(store, sink):
    return RegistrationLedger(store, dispatcher=NotificationDispatcher(sink))


@pytest.fixture
def config():
    return Config(ADMIN_UIDS=[ADMIN_UID], STORE_BACKEND="memory", LEDGER_STRICT_REVERT=True)


@pytest.fixture
def app(config, store, ledger):
    app = create_app(config, store, ledger=ledger, verify_token=fake_verify_token)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def auth(token):
    return {"Authorization": f"Bearer {token}"}
