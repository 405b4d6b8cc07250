# battlebucks/reports.py - Admin dashboard and revenue figures.
# Revenue is the entry fee of every Confirmed registration, priced at the tournament's current fee.

from collections import defaultdict
from datetime import datetime

from .models import REGISTRATIONS, TOURNAMENTS, USERS, PaymentStatus
from .timeutil import IST_TIMEZONE, format_timestamp


def _registration_month(registered_at):
    if isinstance(registered_at, datetime):
        return registered_at.astimezone(IST_TIMEZONE).strftime('%Y-%m')
    if hasattr(registered_at, 'to_datetime'):
        return registered_at.to_datetime().astimezone(IST_TIMEZONE).strftime('%Y-%m')
    return None


def _fees_by_tournament(tournaments):
    return {t['id']: t.get('entryFee', 0) or 0 for t in tournaments}


def dashboard_stats(store, recent_limit=5):
    users = store.query(USERS)
    tournaments = store.query(TOURNAMENTS)
    registrations = store.query(REGISTRATIONS, order_by='registeredAt', descending=True)

    fees = _fees_by_tournament(tournaments)
    confirmed = [r for r in registrations if r.get('paymentStatus') == PaymentStatus.CONFIRMED]

    recent = []
    for reg in registrations[:recent_limit]:
        recent.append({
            'id': reg['id'],
            'userEmail': reg.get('userEmail', ''),
            'tournamentTitle': reg.get('tournamentTitle', ''),
            'paymentStatus': reg.get('paymentStatus'),
            'registeredAt': format_timestamp(reg.get('registeredAt')),
        })

    return {
        'totalPlayers': len(users),
        'liveTournaments': sum(1 for t in tournaments if t.get('status') == 'Ongoing'),
        'totalRevenue': sum(fees.get(r.get('tournamentId'), 0) for r in confirmed),
        'pendingPayments': len(registrations) - len(confirmed),
        'recentRegistrations': recent,
    }


def revenue_summary(store, top_n=5):
    tournaments = store.query(TOURNAMENTS)
    confirmed = store.query(REGISTRATIONS, filters=[('paymentStatus', '==', PaymentStatus.CONFIRMED)])

    fees = _fees_by_tournament(tournaments)
    titles = {t['id']: t.get('title', '') for t in tournaments}

    by_month = defaultdict(float)
    by_tournament = defaultdict(float)
    for reg in confirmed:
        fee = fees.get(reg.get('tournamentId'), 0)
        month = _registration_month(reg.get('registeredAt'))
        if month:
            by_month[month] += fee
        by_tournament[reg.get('tournamentId')] += fee

    top = sorted(
        ({'tournamentId': tid, 'name': titles.get(tid, 'Unknown'), 'revenue': revenue}
         for tid, revenue in by_tournament.items() if revenue > 0),
        key=lambda item: item['revenue'],
        reverse=True,
    )

    return {
        'totalRevenue': sum(by_tournament.values()),
        'revenueByMonth': [{'month': month, 'revenue': by_month[month]} for month in sorted(by_month)],
        'topTournaments': top[:top_n],
    }
