"""BattleBucks tournament backend: registrations, slot ledger and admin API."""

__version__ = "1.0.0"
