from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from services import creative_aggregator, meta_oauth, token_store
from utils.decorators import json_body

# Blueprint for the Meta connection lifecycle.
# It exposes the two handshake variants (authorization code and client-side SDK token),
# the connection status, disconnect, and ad account selection.
meta_connection_bp = Blueprint('meta_connection', __name__, url_prefix='/api/meta')


@meta_connection_bp.route('/connect/init', methods=['POST'])
@login_required
def connect_init():
    """
    Starts the OAuth handshake. The redirect URI is derived from the Origin header;
    the frontend must send the same value back to /connect/complete.
    """
    result = meta_oauth.initiate(current_user.id, request.headers.get('Origin'))
    return jsonify({'authUrl': result['authUrl'], 'redirectUri': result['redirectUri']})


@meta_connection_bp.route('/connect/complete', methods=['POST'])
@login_required
@json_body(required_keys=('code', 'state', 'redirectUri'))
def connect_complete(body):
    """Exchanges the authorization code from the Meta callback page for a stored connection."""
    result = meta_oauth.complete(current_user.id, body['code'], body['state'], body['redirectUri'])
    return jsonify({
        'success': True,
        'businessId': result.business_id,
        'adAccountId': result.ad_account_id,
        'tokenExpiresAt': result.expires_at.isoformat(),
    })


@meta_connection_bp.route('/connect/direct', methods=['POST'])
@login_required
@json_body(required_keys=('accessToken', 'userID'))
def connect_direct(body):
    """Stores a token obtained by the Facebook JavaScript SDK after verifying it with Meta."""
    result = meta_oauth.complete_direct(current_user.id, body['accessToken'], body['userID'], body.get('expiresIn'))
    return jsonify({
        'success': True,
        'businessId': result.business_id,
        'adAccountId': result.ad_account_id,
        'tokenExpiresAt': result.expires_at.isoformat(),
    })


@meta_connection_bp.route('/disconnect', methods=['POST'])
@login_required
def disconnect():
    """Idempotent: disconnecting without a connection still succeeds."""
    removed = token_store.delete_connection(current_user.id)
    return jsonify({'success': True, 'removed': removed})


@meta_connection_bp.route('/connection', methods=['GET'])
@login_required
def connection_status():
    connection = token_store.get_connection(current_user.id)
    if connection is None:
        return jsonify({'connected': False, 'expired': False})
    return jsonify(connection.to_dict())


@meta_connection_bp.route('/ad-accounts', methods=['GET'])
@login_required
def ad_accounts():
    return jsonify(creative_aggregator.list_ad_accounts(current_user.id))


@meta_connection_bp.route('/ad-account', methods=['PUT'])
@login_required
@json_body(required_keys=('adAccountId',))
def select_ad_account(body):
    """Saves the default ad account used when requests omit `adAccountId`."""
    connection = token_store.set_ad_account(current_user.id, body['adAccountId'])
    return jsonify({'success': True, 'adAccountId': connection.ad_account_id})
