# battlebucks/api.py - JSON API for the tournament site and the admin panel.
#
# Every response uses the {"success": bool, ...} envelope the web client expects.
# Admin routes require a Firebase ID token whose uid is listed in ADMIN_UIDS.

import traceback
from dataclasses import asdict

from flask import Flask, jsonify, request
from flask_cors import CORS # Required for handling Cross-Origin Resource Sharing

from .auth import firebase_token_verifier, resolve_caller
from .errors import CapacityExceeded, LedgerError, NotFound, ValidationError
from .ledger import RegistrationLedger
from .models import (
    COMMUNITIES, INQUIRIES, REGISTRATIONS, TOURNAMENTS, USER_STATUSES, USERS,
    PaymentStatus, Registration, Tournament,
    community_fields_from_form, registration_fields_from_form, tournament_fields_for_create,
    tournament_fields_for_update,
)
from .reports import dashboard_stats, revenue_summary
from .store import SERVER_TIMESTAMP
from .timeutil import format_time_to_12hr_ist, format_timestamp


def _tournament_json(tournament):
    data = tournament.to_dict()
    data['time12hr'] = format_time_to_12hr_ist(tournament.time)
    data['slotsLeft'] = tournament.slots_left
    return data


def _registration_json(data):
    data = dict(data)
    data['registeredAt'] = format_timestamp(data.get('registeredAt'))
    return data


def _error(message, status):
    return jsonify({"success": False, "message": message}), status


NOT_AN_OBJECT = "Request body must be a JSON object."


def _json_object():
    """The request's JSON body. Missing or unparseable gives {}, any non-object gives None."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def create_app(config, store, ledger=None, dispatcher=None, verify_token=None):
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    CORS(app, resources={r"/api/*": {"origins": config.CORS_ORIGINS}})

    if ledger is None:
        ledger = RegistrationLedger(store, dispatcher=dispatcher, strict_revert=config.LEDGER_STRICT_REVERT)
    verify_token = verify_token or firebase_token_verifier

    app.config['BATTLEBUCKS_STORE'] = store
    app.config['BATTLEBUCKS_LEDGER'] = ledger

    def current_caller():
        return resolve_caller(request.headers, verify_token, config.is_admin)

    def require_admin():
        """Returns (caller, None) for an admin, or (None, error response)."""
        caller = current_caller()
        if caller is None:
            return None, _error("Authentication required.", 401)
        if not caller.is_admin:
            return None, _error("Unauthorized: Admin privileges required.", 403)
        return caller, None

    # =====================================================================
    # PUBLIC / PLAYER ENDPOINTS
    # =====================================================================

    @app.route('/api/tournaments', methods=['GET'])
    def list_tournaments():
        """Lists tournaments, newest date first. Optional filters: search, game, status."""
        search = request.args.get('search', '').strip().lower()
        game = request.args.get('game', 'all')
        status = request.args.get('status', 'all')
        try:
            tournaments = []
            for data in store.query(TOURNAMENTS, order_by='date', descending=True):
                tournament = Tournament.from_dict(data['id'], data)
                if search and search not in tournament.title.lower() and search not in tournament.game.lower():
                    continue
                if game != 'all' and tournament.game != game:
                    continue
                if status != 'all' and tournament.status != status:
                    continue
                tournaments.append(_tournament_json(tournament))

            print(f"API: Serving {len(tournaments)} tournaments.")
            return jsonify({"success": True, "tournaments": tournaments}), 200
        except Exception as e:
            print(f"Error fetching tournaments: {e}")
            traceback.print_exc()
            return _error("Server error fetching tournaments.", 500)

    @app.route('/api/tournaments/<tournament_id>', methods=['GET'])
    def get_tournament(tournament_id):
        try:
            data = store.get(TOURNAMENTS, tournament_id)
            if data is None:
                return _error("Tournament not found.", 404)
            tournament = Tournament.from_dict(tournament_id, data)
            return jsonify({"success": True, "tournament": _tournament_json(tournament)}), 200
        except Exception as e:
            print(f"Error fetching tournament {tournament_id}: {e}")
            traceback.print_exc()
            return _error("Server error fetching tournament.", 500)

    @app.route('/api/users/profile', methods=['POST'])
    def save_profile():
        """Creates or updates the caller's own player profile."""
        caller = current_caller()
        if caller is None:
            return _error("You must be logged in to update your profile.", 401)

        data = _json_object()
        if data is None:
            return _error(NOT_AN_OBJECT, 400)
        try:
            fields = {key: data[key].strip() for key in ('name', 'gameId', 'teamName')
                      if isinstance(data.get(key), str) and data[key].strip()}
            if not fields:
                raise ValidationError("Nothing to update. Provide name, gameId or teamName.")

            existing = store.get(USERS, caller.uid)
            if existing is None:
                fields.update({
                    'uid': caller.uid,
                    'email': caller.email,
                    'status': 'active',
                    'joinedOn': SERVER_TIMESTAMP,
                })
                store.set(USERS, caller.uid, fields)
                print(f"API: Created profile for {caller.uid}")
            else:
                store.update(USERS, caller.uid, fields)
                print(f"API: Updated profile for {caller.uid}")
            return jsonify({"success": True, "message": "Profile saved."}), 200
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error saving profile for {caller.uid}: {e}")
            traceback.print_exc()
            return _error("Server error saving profile.", 500)

    @app.route('/api/registrations', methods=['POST'])
    def register_for_tournament():
        """Saves a Pending registration. The slot is only taken once an admin confirms the payment."""
        caller = current_caller()
        if caller is None:
            return _error("You must be logged in to register for a match.", 401)

        data = _json_object()
        if data is None:
            return _error(NOT_AN_OBJECT, 400)
        tournament_id = data.get('tournamentId')
        try:
            form = registration_fields_from_form(data)
            if not isinstance(tournament_id, str) or not tournament_id.strip():
                raise ValidationError("Tournament ID is required.")

            profile = store.get(USERS, caller.uid) or {}
            if profile.get('status') == 'banned':
                return _error("Your account has been banned from registering.", 403)

            tournament_data = store.get(TOURNAMENTS, tournament_id)
            if tournament_data is None:
                raise NotFound("Tournament not found!")
            tournament = Tournament.from_dict(tournament_id, tournament_data)
            if tournament.status != 'Upcoming':
                raise ValidationError(f"Registration for {tournament.title} is closed.")
            if tournament.slots_left <= 0:
                raise CapacityExceeded()

            registration = {
                'userId': caller.uid,
                'userEmail': caller.email or profile.get('email', ''),
                'tournamentId': tournament_id,
                'tournamentTitle': tournament.title,
                'registeredAt': SERVER_TIMESTAMP,
                'paymentStatus': PaymentStatus.PENDING,
            }
            registration.update(form)
            registration_id = store.add(REGISTRATIONS, registration)

            print(f"API: {caller.uid} registered for {tournament_id} as {registration_id}")
            return jsonify({
                "success": True,
                "message": "Registration saved. Your slot is confirmed once the payment is verified.",
                "registrationId": registration_id,
            }), 201
        except LedgerError as e:
            print(f"Registration validation error: {e.message}")
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error registering for tournament: {e}")
            traceback.print_exc()
            return _error("Could not save your registration details. Please try again.", 500)

    @app.route('/api/registrations/mine', methods=['GET'])
    def my_registrations():
        caller = current_caller()
        if caller is None:
            return _error("You must be logged in to view your registrations.", 401)
        try:
            docs = store.query(REGISTRATIONS, filters=[('userId', '==', caller.uid)],
                               order_by='registeredAt', descending=True)
            return jsonify({"success": True, "registrations": [_registration_json(d) for d in docs]}), 200
        except Exception as e:
            print(f"Error fetching user registrations: {e}")
            traceback.print_exc()
            return _error("Failed to fetch registrations.", 500)

    @app.route('/api/inquiries', methods=['POST'])
    def submit_inquiry():
        data = _json_object()
        if data is None:
            return _error(NOT_AN_OBJECT, 400)
        try:
            inquiry = {}
            for key in ('name', 'email', 'message'):
                value = data.get(key)
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"'{key}' is required.")
                inquiry[key] = value.strip()
            inquiry.update({'status': 'New', 'submittedAt': SERVER_TIMESTAMP})

            inquiry_id = store.add(INQUIRIES, inquiry)
            print(f"API: New inquiry {inquiry_id} from {inquiry['email']}")
            return jsonify({"success": True, "message": "Thanks! We'll get back to you soon.", "id": inquiry_id}), 201
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error saving inquiry: {e}")
            traceback.print_exc()
            return _error("Server error saving inquiry.", 500)

    @app.route('/api/players/<name>', methods=['GET'])
    def get_player(name):
        """Public profile page data, looked up by display name. Email and uid are not exposed."""
        try:
            matches = store.query(USERS, filters=[('name', '==', name)], limit=1)
            if not matches:
                return _error("Player not found.", 404)
            data = matches[0]
            player = {key: data.get(key, '') for key in ('name', 'gameId', 'teamName', 'status')}
            player['joinedOn'] = format_timestamp(data.get('joinedOn'))
            return jsonify({"success": True, "player": player}), 200
        except Exception as e:
            print(f"Error fetching player {name}: {e}")
            traceback.print_exc()
            return _error("Server error fetching player.", 500)

    @app.route('/api/communities', methods=['GET'])
    def list_communities():
        """Communities, newest first. Optional filter: search (name)."""
        search = request.args.get('search', '').strip().lower()
        try:
            communities = []
            for data in store.query(COMMUNITIES, order_by='createdAt', descending=True):
                if search and search not in (data.get('name') or '').lower():
                    continue
                data['createdAt'] = format_timestamp(data.get('createdAt'))
                communities.append(data)
            return jsonify({"success": True, "communities": communities}), 200
        except Exception as e:
            print(f"Error fetching communities: {e}")
            traceback.print_exc()
            return _error("Server error fetching communities.", 500)

    @app.route('/api/communities', methods=['POST'])
    def create_community():
        caller = current_caller()
        if caller is None:
            return _error("You must be logged in to create a community.", 401)

        data = _json_object()
        if data is None:
            return _error(NOT_AN_OBJECT, 400)
        try:
            community = community_fields_from_form(data, caller.uid)
            community['createdAt'] = SERVER_TIMESTAMP
            community_id = store.add(COMMUNITIES, community)
            print(f"API: {caller.uid} created community {community_id}")
            return jsonify({"success": True, "message": f'Community "{community["name"]}" created.',
                            "id": community_id}), 201
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error creating community: {e}")
            traceback.print_exc()
            return _error("Could not create community. Please try again.", 500)

    # =====================================================================
    # ADMIN ENDPOINTS
    # =====================================================================

    @app.route('/api/admin/tournaments', methods=['POST'])
    def create_tournament():
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            fields = tournament_fields_for_create(request.get_json(silent=True))
            tournament_id = store.add(TOURNAMENTS, fields)
            print(f"Admin {caller.uid} created tournament {tournament_id}")
            tournament = Tournament.from_dict(tournament_id, fields)
            return jsonify({"success": True, "message": "New match created.", "tournament": _tournament_json(tournament)}), 201
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error creating tournament (Admin API): {e}")
            traceback.print_exc()
            return _error("Failed to save match details.", 500)

    @app.route('/api/admin/tournaments/<tournament_id>', methods=['PUT'])
    def update_tournament(tournament_id):
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            current = store.get(TOURNAMENTS, tournament_id)
            if current is None:
                raise NotFound("Tournament not found!")
            fields = tournament_fields_for_update(request.get_json(silent=True), current)
            store.update(TOURNAMENTS, tournament_id, fields)
            print(f"Admin {caller.uid} updated tournament {tournament_id}: {sorted(fields)}")
            tournament = Tournament.from_dict(tournament_id, store.get(TOURNAMENTS, tournament_id))
            return jsonify({"success": True, "message": "Match details updated.", "tournament": _tournament_json(tournament)}), 200
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error updating tournament (Admin API): {e}")
            traceback.print_exc()
            return _error("Failed to save match details.", 500)

    @app.route('/api/admin/tournaments/<tournament_id>', methods=['DELETE'])
    def delete_tournament(tournament_id):
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            if store.get(TOURNAMENTS, tournament_id) is None:
                return _error("Tournament not found.", 404)
            store.delete(TOURNAMENTS, tournament_id)
            print(f"Admin {caller.uid} deleted tournament {tournament_id}")
            return jsonify({"success": True, "message": "The match has been removed."}), 200
        except Exception as e:
            print(f"Error deleting tournament (Admin API): {e}")
            traceback.print_exc()
            return _error("Failed to delete match.", 500)

    @app.route('/api/admin/registrations', methods=['GET'])
    def list_registrations_admin():
        """All registrations, newest first. Optional filters: search (email, game ID, UPI ID), status, tournamentId."""
        caller, denied = require_admin()
        if denied:
            return denied

        search = request.args.get('search', '').strip().lower()
        status = request.args.get('status', 'all')
        tournament_id = request.args.get('tournamentId', 'all')
        try:
            registrations = []
            for data in store.query(REGISTRATIONS, order_by='registeredAt', descending=True):
                if search and not any(search in str(data.get(key, '')).lower()
                                      for key in ('userEmail', 'gameId', 'upiId')):
                    continue
                if status != 'all' and data.get('paymentStatus') != status:
                    continue
                if tournament_id != 'all' and data.get('tournamentId') != tournament_id:
                    continue
                registrations.append(_registration_json(data))

            print(f"Admin {caller.uid} fetched {len(registrations)} registrations.")
            return jsonify({"success": True, "registrations": registrations}), 200
        except Exception as e:
            print(f"Error fetching registrations (Admin API): {e}")
            traceback.print_exc()
            return _error("Failed to fetch registrations.", 500)

    def _tournament_id_for(registration_id, body):
        """The tournament named in the request body, else the one stored on the registration."""
        if 'tournamentId' in body:
            return body.get('tournamentId')
        data = store.get(REGISTRATIONS, registration_id)
        if data is None:
            raise NotFound("Registration not found.")
        return Registration.from_dict(registration_id, data).tournamentId

    @app.route('/api/admin/registrations/<registration_id>/confirm', methods=['POST'])
    def confirm_registration(registration_id):
        caller, denied = require_admin()
        if denied:
            return denied
        body = _json_object()
        if body is None:
            return _error(NOT_AN_OBJECT, 400)
        try:
            tournament_id = _tournament_id_for(registration_id, body)
            change = ledger.confirm_payment(registration_id, tournament_id, caller=caller)
            return jsonify({
                "success": True,
                "message": "Payment confirmed.",
                "registration": _registration_json(asdict(change.registration)),
                "tournament": _tournament_json(change.tournament),
                "emailDraft": change.notification.to_dict() if change.notification else None,
            }), 200
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error confirming payment: {e}")
            traceback.print_exc()
            return _error("Failed to confirm payment.", 500)

    @app.route('/api/admin/registrations/<registration_id>/revert', methods=['POST'])
    def revert_registration(registration_id):
        caller, denied = require_admin()
        if denied:
            return denied
        body = _json_object()
        if body is None:
            return _error(NOT_AN_OBJECT, 400)
        try:
            tournament_id = _tournament_id_for(registration_id, body)
            change = ledger.revert_to_pending(registration_id, tournament_id, caller=caller)
            return jsonify({
                "success": True,
                "message": "Registration marked as pending. Slot has been freed up.",
                "registration": _registration_json(asdict(change.registration)),
                "tournament": _tournament_json(change.tournament),
            }), 200
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error marking as pending: {e}")
            traceback.print_exc()
            return _error("Failed to update registration.", 500)

    @app.route('/api/admin/dashboard', methods=['GET'])
    def admin_dashboard():
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            return jsonify({"success": True, "stats": dashboard_stats(store)}), 200
        except Exception as e:
            print(f"Error fetching dashboard data: {e}")
            traceback.print_exc()
            return _error("Failed to fetch dashboard data.", 500)

    @app.route('/api/admin/revenue', methods=['GET'])
    def admin_revenue():
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            return jsonify({"success": True, "revenue": revenue_summary(store)}), 200
        except Exception as e:
            print(f"Error fetching revenue: {e}")
            traceback.print_exc()
            return _error("Failed to fetch revenue.", 500)

    @app.route('/api/admin/users', methods=['GET'])
    def list_users_admin():
        """All player profiles by name. Optional filters: search (name or email), status."""
        caller, denied = require_admin()
        if denied:
            return denied

        search = request.args.get('search', '').strip().lower()
        status = request.args.get('status', 'all')
        try:
            users = []
            for data in store.query(USERS):
                if search and search not in (data.get('name') or '').lower() \
                        and search not in (data.get('email') or '').lower():
                    continue
                if status != 'all' and data.get('status') != status:
                    continue
                data['joinedOn'] = format_timestamp(data.get('joinedOn'))
                users.append(data)
            users.sort(key=lambda user: (user.get('name') or '').lower())
            return jsonify({"success": True, "users": users}), 200
        except Exception as e:
            print(f"Error fetching users (Admin API): {e}")
            traceback.print_exc()
            return _error("Failed to fetch users.", 500)

    @app.route('/api/admin/users/<uid>/status', methods=['POST'])
    def set_user_status(uid):
        caller, denied = require_admin()
        if denied:
            return denied
        body = _json_object()
        if body is None:
            return _error(NOT_AN_OBJECT, 400)
        status = body.get('status')
        if status not in USER_STATUSES:
            return _error(f"Status must be one of: {', '.join(USER_STATUSES)}.", 400)
        try:
            if store.get(USERS, uid) is None:
                return _error("User not found.", 404)
            store.update(USERS, uid, {'status': status})
            print(f"Admin {caller.uid} set user {uid} to {status}")
            return jsonify({"success": True, "message": f"User has been {'banned' if status == 'banned' else 'unbanned'}."}), 200
        except Exception as e:
            print(f"Error updating user status: {e}")
            traceback.print_exc()
            return _error("Failed to update user status.", 500)

    @app.route('/api/admin/users/<uid>', methods=['DELETE'])
    def delete_user(uid):
        """Removes the player's profile. Their registrations stay for the payment records."""
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            if store.get(USERS, uid) is None:
                return _error("User not found.", 404)
            store.delete(USERS, uid)
            print(f"Admin {caller.uid} deleted user {uid}")
            return jsonify({"success": True, "message": "User has been deleted."}), 200
        except Exception as e:
            print(f"Error deleting user: {e}")
            traceback.print_exc()
            return _error("Failed to delete user.", 500)

    @app.route('/api/admin/inquiries', methods=['GET'])
    def list_inquiries_admin():
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            inquiries = []
            for data in store.query(INQUIRIES, order_by='submittedAt', descending=True):
                data['submittedAt'] = format_timestamp(data.get('submittedAt'))
                inquiries.append(data)
            return jsonify({"success": True, "inquiries": inquiries}), 200
        except Exception as e:
            print(f"Error fetching inquiries: {e}")
            traceback.print_exc()
            return _error("Failed to fetch inquiries.", 500)

    @app.route('/api/admin/inquiries/<inquiry_id>/read', methods=['POST'])
    def mark_inquiry_read(inquiry_id):
        caller, denied = require_admin()
        if denied:
            return denied
        try:
            if store.get(INQUIRIES, inquiry_id) is None:
                return _error("Inquiry not found.", 404)
            store.update(INQUIRIES, inquiry_id, {'status': 'Read'})
            return jsonify({"success": True, "message": "Inquiry marked as read."}), 200
        except Exception as e:
            print(f"Error updating inquiry: {e}")
            traceback.print_exc()
            return _error("Failed to update inquiry.", 500)

    @app.route('/api/admin/reconcile', methods=['POST'])
    def reconcile_slots():
        caller, denied = require_admin()
        if denied:
            return denied
        body = _json_object()
        if body is None:
            return _error(NOT_AN_OBJECT, 400)
        repair = bool(body.get('repair', False))
        try:
            print(f"Admin {caller.uid} requested slot reconciliation (repair={repair})")
            return jsonify({"success": True, "report": ledger.reconcile_slots(repair=repair)}), 200
        except LedgerError as e:
            return _error(e.message, e.status_code)
        except Exception as e:
            print(f"Error reconciling slots: {e}")
            traceback.print_exc()
            return _error("Failed to reconcile slots.", 500)

    return app
