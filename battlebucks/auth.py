# battlebucks/auth.py - Works out who is calling from the request's Firebase ID token.

from firebase_admin import auth

from .models import CallerIdentity


def firebase_token_verifier(id_token):
    """Verifies a Firebase ID token and returns its decoded claims."""
    return auth.verify_id_token(id_token)


def bearer_token(headers):
    header = headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def resolve_caller(headers, verify_token, is_admin):
    """
    Returns the CallerIdentity for a request, or None when the request carries
    no valid token. `verify_token` decodes the token; `is_admin` decides admin
    rights from the uid.
    """
    token = bearer_token(headers)
    if not token:
        return None

    try:
        claims = verify_token(token)
    except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError, auth.CertificateFetchError) as e:
        print(f"Rejected ID token: {e}")
        return None

    uid = claims.get('uid') or claims.get('sub')
    if not uid:
        return None
    return CallerIdentity(uid=uid, email=claims.get('email', ''), is_admin=is_admin(uid))
