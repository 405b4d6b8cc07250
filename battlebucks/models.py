# battlebucks/models.py - Document shapes stored in Firestore.
# Field names on the wire and in the store are camelCase, matching the web client.

from dataclasses import dataclass, field
from datetime import datetime

from .errors import ValidationError

TOURNAMENTS = 'tournaments'
REGISTRATIONS = 'registrations'
USERS = 'users'
INQUIRIES = 'inquiries'
COMMUNITIES = 'communities'

GAMES = ('PUBG', 'Free Fire')
TOURNAMENT_STATUSES = ('Upcoming', 'Ongoing', 'Completed')
USER_STATUSES = ('active', 'banned')
INQUIRY_STATUSES = ('New', 'Read')


class PaymentStatus:
    PENDING = 'Pending'
    CONFIRMED = 'Confirmed'

    ALL = (PENDING, CONFIRMED)


@dataclass
class CallerIdentity:
    """The authenticated actor behind a request. Passed explicitly, never global."""
    uid: str
    email: str = ''
    is_admin: bool = False


@dataclass
class Tournament:
    id: str
    title: str = ''
    game: str = 'PUBG'
    date: str = ''
    time: str = ''
    entryFee: float = 0
    prizePool: float = 0
    slotsTotal: int = 0
    slotsAllotted: int = 0
    status: str = 'Upcoming'
    rules: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, doc_id, data):
        data = data or {}
        return cls(
            id=doc_id,
            title=data.get('title', ''),
            game=data.get('game', 'PUBG'),
            date=data.get('date', ''),
            time=data.get('time', ''),
            entryFee=data.get('entryFee', 0),
            prizePool=data.get('prizePool', 0),
            slotsTotal=int(data.get('slotsTotal', 0)),
            slotsAllotted=int(data.get('slotsAllotted', 0)),
            status=data.get('status', 'Upcoming'),
            rules=list(data.get('rules', [])),
        )

    @property
    def slots_left(self):
        return self.slotsTotal - self.slotsAllotted

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'game': self.game,
            'date': self.date,
            'time': self.time,
            'entryFee': self.entryFee,
            'prizePool': self.prizePool,
            'slotsTotal': self.slotsTotal,
            'slotsAllotted': self.slotsAllotted,
            'status': self.status,
            'rules': list(self.rules),
        }


@dataclass
class Registration:
    id: str
    tournamentId: str = None
    tournamentTitle: str = ''
    userId: str = ''
    userEmail: str = ''
    gameId: str = ''
    teamName: str = ''
    upiId: str = ''
    paymentStatus: str = PaymentStatus.PENDING
    registeredAt: datetime = None

    @classmethod
    def from_dict(cls, doc_id, data):
        data = data or {}
        return cls(
            id=doc_id,
            tournamentId=data.get('tournamentId'),
            tournamentTitle=data.get('tournamentTitle', ''),
            userId=data.get('userId', ''),
            userEmail=data.get('userEmail', ''),
            gameId=data.get('gameId', ''),
            teamName=data.get('teamName', ''),
            upiId=data.get('upiId', ''),
            paymentStatus=data.get('paymentStatus', PaymentStatus.PENDING),
            registeredAt=data.get('registeredAt'),
        )

    @property
    def is_confirmed(self):
        return self.paymentStatus == PaymentStatus.CONFIRMED


def _require_text(data, key):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{key}' is required.")
    return value.strip()


def _require_number(data, key, minimum=0):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{key}' must be a number.")
    if value < minimum:
        raise ValidationError(f"'{key}' must be at least {minimum}.")
    return value


def _check_schedule(date_str, time_str):
    try:
        datetime.strptime(f"{date_str} {time_str}", '%Y-%m-%d %H:%M')
    except ValueError:
        raise ValidationError("Tournament date must be YYYY-MM-DD and time HH:MM.")


def tournament_fields_for_create(data):
    """
    Validates an admin's new-tournament payload and returns the document to store.
    `slotsAllotted` always starts at 0; whatever the payload says is ignored.
    """
    if not isinstance(data, dict):
        raise ValidationError("Tournament data is missing.")

    slots_total = data.get('slotsTotal')
    if isinstance(slots_total, bool) or not isinstance(slots_total, int) or slots_total < 1:
        raise ValidationError("'slotsTotal' must be a positive whole number.")

    game = data.get('game')
    if game not in GAMES:
        raise ValidationError(f"'game' must be one of: {', '.join(GAMES)}.")

    status = data.get('status', 'Upcoming')
    if status not in TOURNAMENT_STATUSES:
        raise ValidationError(f"'status' must be one of: {', '.join(TOURNAMENT_STATUSES)}.")

    date_str = _require_text(data, 'date')
    time_str = _require_text(data, 'time')
    _check_schedule(date_str, time_str)

    rules = data.get('rules', [])
    if not isinstance(rules, list) or not all(isinstance(rule, str) for rule in rules):
        raise ValidationError("'rules' must be a list of strings.")

    return {
        'title': _require_text(data, 'title'),
        'game': game,
        'date': date_str,
        'time': time_str,
        'entryFee': _require_number(data, 'entryFee'),
        'prizePool': _require_number(data, 'prizePool'),
        'slotsTotal': slots_total,
        'slotsAllotted': 0,
        'status': status,
        'rules': rules,
    }


def tournament_fields_for_update(data, current=None):
    """
    Validates a partial update. Capacity counters are owned by the ledger and cannot be edited.
    When the patch moves the date or the time, the result is checked together with
    the stored half of the schedule from `current`.
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("Tournament data is missing for update.")

    locked = {'slotsTotal', 'slotsAllotted', 'id'} & set(data)
    if locked:
        raise ValidationError(f"Fields cannot be changed after creation: {', '.join(sorted(locked))}.")

    update = {}
    for key, value in data.items():
        if key in ('title', 'date', 'time'):
            update[key] = _require_text(data, key)
        elif key in ('entryFee', 'prizePool'):
            update[key] = _require_number(data, key)
        elif key == 'game':
            if value not in GAMES:
                raise ValidationError(f"'game' must be one of: {', '.join(GAMES)}.")
            update[key] = value
        elif key == 'status':
            if value not in TOURNAMENT_STATUSES:
                raise ValidationError(f"'status' must be one of: {', '.join(TOURNAMENT_STATUSES)}.")
            update[key] = value
        elif key == 'rules':
            if not isinstance(value, list) or not all(isinstance(rule, str) for rule in value):
                raise ValidationError("'rules' must be a list of strings.")
            update[key] = value
        else:
            raise ValidationError(f"Unknown tournament field '{key}'.")

    if 'date' in update or 'time' in update:
        current = current or {}
        _check_schedule(update.get('date', current.get('date')), update.get('time', current.get('time')))
    return update


def registration_fields_from_form(data):
    """The three fields a player types into the registration form."""
    if not isinstance(data, dict):
        raise ValidationError("Registration data is missing.")
    return {
        'gameId': _require_text(data, 'gameId'),
        'teamName': _require_text(data, 'teamName'),
        'upiId': _require_text(data, 'upiId'),
    }


def _require_length(data, key, minimum, maximum):
    value = _require_text(data, key)
    if not minimum <= len(value) <= maximum:
        raise ValidationError(f"'{key}' must be {minimum} to {maximum} characters long.")
    return value


def community_fields_from_form(data, creator_id):
    """New community document. Every community starts with its creator as the only member."""
    if not isinstance(data, dict):
        raise ValidationError("Community data is missing.")
    return {
        'name': _require_length(data, 'name', 3, 30),
        'description': _require_length(data, 'description', 10, 100),
        'avatar': _require_text(data, 'avatar'),
        'creatorId': creator_id,
        'members': 1,
        'game': 'All',
    }
