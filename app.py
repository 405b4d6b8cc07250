# app.py - BattleBucks Tournament Backend Application
# Entry point: loads configuration, connects to Firestore, wires the registration
# ledger and background jobs, and exposes the Flask app for gunicorn / `flask run`.

# =====================================================================
# IMPORTS
# =====================================================================
import json
import traceback # For printing full tracebacks during debugging

import firebase_admin
from firebase_admin import credentials, firestore

from battlebucks.api import create_app
from battlebucks.config import Config
from battlebucks.ledger import RegistrationLedger
from battlebucks.notifications import NotificationDispatcher, TelegramNotifier
from battlebucks.store import FirestoreStore, InMemoryStore
from battlebucks.tasks import create_scheduler, register_jobs

config = Config()

# =====================================================================
# FIREBASE INITIALIZATION
# =====================================================================
# FIREBASE_SERVICE_ACCOUNT_KEY_JSON holds the service account key downloaded from
# Firebase Console -> Project settings -> Service accounts, as a JSON string.

def init_firestore_client():
    firebase_key = config.FIREBASE_SERVICE_ACCOUNT_KEY_JSON
    if not firebase_key:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY_JSON env variable missing!")

    print("🔐 Raw key loaded from environment, parsing JSON...")
    key_data = json.loads(firebase_key)
    key_data["private_key"] = key_data["private_key"].replace("\\n", "\n")

    if not firebase_admin._apps:
        cred = credentials.Certificate(key_data)
        firebase_admin.initialize_app(cred)
        print("✅ Firebase Admin SDK initialized")

    return firestore.client()


def build_store():
    if config.STORE_BACKEND == 'memory':
        print("⚠️ Using the in-memory document store. Data is lost on restart.")
        return InMemoryStore(max_attempts=config.LEDGER_TRANSACTION_ATTEMPTS)

    try:
        return FirestoreStore(init_firestore_client(), max_attempts=config.LEDGER_TRANSACTION_ATTEMPTS)
    except Exception as e:
        print(f"🚨 Firebase initialization failed: {e}")
        traceback.print_exc()
        raise


# =====================================================================
# APPLICATION WIRING
# =====================================================================
store = build_store()

if not config.LEDGER_STRICT_REVERT:
    print("WARNING: LEDGER_STRICT_REVERT is off. Reverting a payment decrements slots without any checks.")

telegram = TelegramNotifier(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID)
scheduler = create_scheduler()
dispatcher = NotificationDispatcher(telegram, scheduler=scheduler)
ledger = RegistrationLedger(store, dispatcher=dispatcher, strict_revert=config.LEDGER_STRICT_REVERT)

register_jobs(scheduler, ledger, store, config.SLOT_AUDIT_INTERVAL_MINUTES)
scheduler.start()
print("⏰ Background scheduler started")

app = create_app(config, store, ledger=ledger)

# =====================================================================
# APPLICATION STARTUP
# =====================================================================
if __name__ == '__main__':
    app.run(host='0.0.0.0', port=config.PORT)
