"""
Meta OAuth handshake.

    NO_CONNECTION --initiate--> PENDING(state) --complete--> CONNECTED
                                      \\--(bad state / rejected code)--> FAILED

`initiate` stores an opaque state per user; `complete` consumes it exactly
once before talking to Meta, so a replayed or concurrent callback with the
same state can never produce a second connection.
"""
from collections import namedtuple
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import MetaConnectionState
from services import token_store
from services.errors import BadRequestError, InvalidStateError, InvalidTokenError, TokenExchangeError
from services.meta_graph import GraphAPIError, get_graph_client
from utils.helpers import build_redirect_uri
from utils.security import generate_state_token

TokenResult = namedtuple('TokenResult', ['business_id', 'expires_at', 'ad_account_id'])


def _token_lifetime(expires_in):
    default = current_app.config.get('META_DEFAULT_TOKEN_LIFETIME', 7200)
    try:
        seconds = int(expires_in) if expires_in is not None else default
    except (TypeError, ValueError):
        seconds = default
    return timedelta(seconds=seconds if seconds > 0 else default)


def initiate(user_id, origin=None):
    """
    Starts a handshake for `user_id`.

    Args:
        user_id (int): The authenticated user.
        origin (str, optional): The requesting page's origin; the redirect URI is
                                derived from it (or from META_DEFAULT_ORIGIN).

    Returns:
        dict: {'authUrl': ..., 'redirectUri': ..., 'state': ...}

    Raises:
        ConfigurationError: If the Meta app credentials are not configured.
    """
    config = current_app.config
    client = get_graph_client()
    redirect_uri = build_redirect_uri(origin, config['META_DEFAULT_ORIGIN'], config['META_REDIRECT_PATH'])
    state = generate_state_token()

    # Builds the URL first so a missing credential fails before anything is stored.
    auth_url = client.authorization_url(redirect_uri, state, config['META_OAUTH_SCOPES'])

    db.session.add(MetaConnectionState(user_id=user_id, state=state))
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    current_app.logger.info(f"Meta handshake initiated for user {user_id} (redirect {redirect_uri}).")
    return {'authUrl': auth_url, 'redirectUri': redirect_uri, 'state': state}


def consume_state(user_id, state, now=None):
    """
    Atomically deletes the pending state for (user_id, state) if it is younger than the TTL.

    A single DELETE decides the outcome, so two concurrent callbacks cannot
    both succeed. The deletion is committed immediately.

    Raises:
        InvalidStateError: If no matching, unexpired state exists.
    """
    if not state:
        raise InvalidStateError()
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=current_app.config['META_STATE_TTL_SECONDS'])
    deleted = (MetaConnectionState.query
               .filter(MetaConnectionState.user_id == user_id,
                       MetaConnectionState.state == state,
                       MetaConnectionState.created_at >= cutoff)
               .delete(synchronize_session=False))
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    if deleted != 1:
        current_app.logger.warning(f"Rejected Meta callback for user {user_id}: unknown, expired or reused state.")
        raise InvalidStateError()


def _lookup_identity(client, access_token, error_class):
    try:
        me = client.get_me(access_token)
    except GraphAPIError as e:
        current_app.logger.warning(f"Meta identity lookup failed: {e}")
        raise error_class("Failed to verify the Meta access token.", details=e.payload) from e
    if not me.get('id'):
        raise error_class("Meta did not return an account id for this token.")
    return me


def complete(user_id, code, state, redirect_uri):
    """
    Finishes a handshake started by `initiate`.

    The state is consumed before the code is exchanged. The connection is
    only written once the code exchange and identity lookup both succeeded.

    Returns:
        TokenResult

    Raises:
        BadRequestError, InvalidStateError, TokenExchangeError, ConfigurationError
    """
    if not code or not redirect_uri:
        raise BadRequestError("Both 'code' and 'redirectUri' are required.")

    consume_state(user_id, state)

    client = get_graph_client()
    token = client.exchange_code(code, redirect_uri)
    access_token = token['access_token']
    me = _lookup_identity(client, access_token, TokenExchangeError)

    expires_at = datetime.utcnow() + _token_lifetime(token.get('expires_in'))
    connection = token_store.upsert_connection(user_id, access_token, me['id'], expires_at)
    current_app.logger.info(f"Meta handshake completed for user {user_id} (account {me['id']}).")
    return TokenResult(connection.business_id, connection.token_expires_at, connection.ad_account_id)


def complete_direct(user_id, access_token, external_user_id, expires_in=None):
    """
    Stores a token obtained client-side (JavaScript SDK login) after verifying it against `/me`.

    Raises:
        BadRequestError: If the token or the Meta user id is missing.
        InvalidTokenError: If Meta does not accept the token, or it belongs to
                           another account than `external_user_id`.
    """
    if not access_token or not external_user_id:
        raise BadRequestError("Both 'accessToken' and 'userID' are required.")

    client = get_graph_client()
    me = _lookup_identity(client, access_token, InvalidTokenError)
    if str(external_user_id) != str(me['id']):
        current_app.logger.warning(f"Direct Meta token for user {user_id} belongs to a different account than claimed.")
        raise InvalidTokenError("The access token does not belong to the given Meta user.")

    expires_at = datetime.utcnow() + _token_lifetime(expires_in)
    connection = token_store.upsert_connection(user_id, access_token, me['id'], expires_at)
    current_app.logger.info(f"Meta direct connection stored for user {user_id} (account {me['id']}).")
    return TokenResult(connection.business_id, connection.token_expires_at, connection.ad_account_id)


def prune_stale_states(max_age_seconds=None, now=None):
    """Deletes pending states older than `max_age_seconds` (default META_STATE_TTL_SECONDS). Returns the count."""
    if max_age_seconds is None:
        max_age_seconds = current_app.config['META_STATE_TTL_SECONDS']
    cutoff = (now or datetime.utcnow()) - timedelta(seconds=max_age_seconds)
    deleted = MetaConnectionState.query.filter(MetaConnectionState.created_at < cutoff).delete(synchronize_session=False)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    current_app.logger.info(f"Pruned {deleted} stale Meta handshake states.")
    return deleted
