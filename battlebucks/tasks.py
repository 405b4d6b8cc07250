# battlebucks/tasks.py - Background jobs run by the APScheduler BackgroundScheduler.

import traceback

from apscheduler.schedulers.background import BackgroundScheduler

from .models import TOURNAMENTS
from .timeutil import IST_TIMEZONE, expected_tournament_status


def audit_slots(ledger):
    """Reports (never repairs) drift between slot counters and confirmed registrations."""
    print("🔍 Auditing tournament slot counters...")
    try:
        report = ledger.reconcile_slots(repair=False)
        if report['drifts'] or report['orphanRegistrations']:
            print(f"⚠️ Slot audit found {len(report['drifts'])} drifted tournaments "
                  f"and {len(report['orphanRegistrations'])} orphaned registrations")
        else:
            print(f"✅ Slot audit clean ({report['checked']} tournaments)")
        return report
    except Exception as e:
        print(f"❌ Slot audit failed: {e}")
        traceback.print_exc()
        return None


def advance_tournament_statuses(store, at=None):
    """Moves tournaments from Upcoming to Ongoing to Completed as their start time passes."""
    updated = []
    try:
        for data in store.query(TOURNAMENTS, filters=[('status', 'in', ['Upcoming', 'Ongoing'])]):
            current = data.get('status')
            expected = expected_tournament_status(data.get('date'), data.get('time'), current, at=at)
            if expected != current:
                store.update(TOURNAMENTS, data['id'], {'status': expected})
                updated.append(data['id'])
                print(f"  Tournament {data['id']} moved from {current} to {expected}")
    except Exception as e:
        print(f"❌ Error advancing tournament statuses: {e}")
        traceback.print_exc()
    return updated


def create_scheduler():
    return BackgroundScheduler(timezone=IST_TIMEZONE)


def register_jobs(scheduler, ledger, store, audit_interval_minutes=30):
    scheduler.add_job(audit_slots, 'interval', minutes=audit_interval_minutes, args=[ledger], id='slot_audit')
    scheduler.add_job(advance_tournament_statuses, 'interval', minutes=5, args=[store], id='tournament_status')
    return scheduler.get_jobs()
