"""
Persistence of per-user Meta connections.

One MetaConnection row per user holds the encrypted access token and its
expiry. Writes commit immediately; callers get either a fully persisted
connection or an exception with the session rolled back.
"""
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import AdAccountCache, MetaConnection, User
from services.errors import NoConnectionError, TokenExpiredError
from utils.helpers import normalize_ad_account_id


def get_connection(user_id):
    """Returns the user's MetaConnection, or None if they never connected (or disconnected)."""
    return MetaConnection.query.filter_by(user_id=user_id).first()


def get_active_connection(user_id, now=None):
    """
    Returns the user's connection if its token is still usable.

    Raises:
        NoConnectionError: If the user has no connection.
        TokenExpiredError: If the stored token is past its expiry. Tokens are
                           never refreshed here; the user must reconnect.
    """
    connection = get_connection(user_id)
    if connection is None or not connection.access_token_encrypted:
        raise NoConnectionError()
    if connection.is_expired(now):
        current_app.logger.info(f"Meta token for user {user_id} expired at {connection.token_expires_at}.")
        raise TokenExpiredError()
    return connection


def _apply(connection, access_token, business_id, token_expires_at, ad_account_id):
    connection.access_token = access_token
    connection.business_id = business_id
    connection.token_expires_at = token_expires_at
    if ad_account_id:
        connection.ad_account_id = normalize_ad_account_id(ad_account_id)


def upsert_connection(user_id, access_token, business_id, token_expires_at, ad_account_id=None):
    """
    Creates or updates the user's connection and marks their profile as connected.

    Both writes go out in a single commit. On reconnect the previously
    selected ad account is kept unless a new one is given. Reconnecting as a
    different Meta business drops the cached ad account listing.

    Returns:
        MetaConnection: The persisted connection.
    """
    connection = get_connection(user_id)
    if connection is None:
        connection = MetaConnection(user_id=user_id)
        db.session.add(connection)
    elif connection.business_id != business_id:
        AdAccountCache.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    _apply(connection, access_token, business_id, token_expires_at, ad_account_id)

    user = db.session.get(User, user_id)
    if user is not None:
        user.meta_connected = True

    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent handshake inserted the row first; update that one instead.
        db.session.rollback()
        current_app.logger.warning(f"Concurrent Meta connection insert for user {user_id}; retrying as update.", exc_info=True)
        connection = get_connection(user_id)
        if connection is None:
            raise
        if connection.business_id != business_id:
            AdAccountCache.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        _apply(connection, access_token, business_id, token_expires_at, ad_account_id)
        user = db.session.get(User, user_id)
        if user is not None:
            user.meta_connected = True
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    current_app.logger.info(f"Meta connection saved for user {user_id} (expires {token_expires_at}).")
    return connection


def set_ad_account(user_id, ad_account_id):
    """Stores the user's default ad account. Raises NoConnectionError if they are not connected."""
    connection = get_connection(user_id)
    if connection is None:
        raise NoConnectionError()
    connection.ad_account_id = normalize_ad_account_id(ad_account_id)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    current_app.logger.info(f"User {user_id} selected Meta ad account {connection.ad_account_id}.")
    return connection


def delete_connection(user_id):
    """
    Removes the user's connection. Idempotent: deleting a missing connection is not an error.

    Clearing the profile's `meta_connected` flag is best-effort; a failure there
    is logged and does not undo the disconnect. The cached ad account listing
    goes with the connection; creative tag overrides are kept.

    Returns:
        bool: True if a connection existed and was deleted.
    """
    deleted = MetaConnection.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    AdAccountCache.query.filter_by(user_id=user_id).delete(synchronize_session=False)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    try:
        User.query.filter_by(id=user_id).update({'meta_connected': False, 'updated_at': datetime.utcnow()},
                                                synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning(f"Could not clear meta_connected for user {user_id} after disconnect: {e}", exc_info=True)

    # Objects loaded before the bulk statements above may be stale.
    db.session.expire_all()
    if deleted:
        current_app.logger.info(f"Meta connection removed for user {user_id}.")
    return bool(deleted)
