from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user

from services import creative_aggregator
from services.errors import UpstreamFetchError
from services.retry_policy import RetryPolicy
from utils.decorators import json_body

# Blueprint for ad performance data: creatives, themes and campaigns of the
# user's Meta ad account, plus manual theme tagging of creatives.
ads_bp = Blueprint('ads', __name__, url_prefix='/api/ads')


def _rate_limited_response(error, attempt):
    """
    429 answer carrying the next step of the caller's backoff schedule.

    The client waits until `retry.nextEligibleAt` and repeats the request with
    `retryAttempt` set to `retry.attempt`.
    """
    policy = RetryPolicy.from_config(current_app.config, attempt=attempt)
    policy.record_failure()
    payload = error.to_dict()
    payload['retry'] = policy.to_dict()
    response = jsonify(payload)
    response.status_code = 429
    response.headers['Retry-After'] = str(int(policy.current_delay))
    current_app.logger.warning(f"Meta API rate limit hit for user {current_user.id}; retry attempt {policy.attempt} in {policy.current_delay:.0f}s.")
    return response


@ads_bp.route('/creatives', methods=['POST'])
@login_required
@json_body()
def creatives(body):
    """
    Creatives of the selected ad account with aggregated metrics and themes.

    Request JSON: {adAccountId?, timeRange?, retryAttempt?}
    """
    try:
        records = creative_aggregator.fetch_creatives(current_user.id, body.get('adAccountId'),
                                                      body.get('timeRange') or 'last_30_days')
    except UpstreamFetchError as e:
        if e.rate_limited:
            return _rate_limited_response(e, body.get('retryAttempt'))
        raise
    return jsonify({'creatives': [record.to_dict() for record in records]})


@ads_bp.route('/themes', methods=['POST'])
@login_required
@json_body()
def themes(body):
    """
    Theme breakdown of the ad account's creatives.

    When the Meta API fails and SAMPLE_DATA_FALLBACK is on, illustrative sample
    themes are returned with `sample: true` instead of an error.
    """
    try:
        records = creative_aggregator.fetch_creatives(current_user.id, body.get('adAccountId'),
                                                      body.get('timeRange') or 'last_30_days')
    except UpstreamFetchError as e:
        if not current_app.config.get('SAMPLE_DATA_FALLBACK'):
            raise
        current_app.logger.warning(f"Serving sample themes to user {current_user.id}: {e.message}")
        return jsonify({'themes': creative_aggregator.sample_theme_records(), 'sample': True})
    return jsonify({'themes': creative_aggregator.build_theme_records(records), 'sample': False})


@ads_bp.route('/campaigns', methods=['POST'])
@login_required
@json_body()
def campaigns(body):
    """Campaign list with insights and account totals. Request JSON: {adAccountId?, timeRange?}"""
    try:
        result = creative_aggregator.fetch_campaigns(current_user.id, body.get('adAccountId'),
                                                     body.get('timeRange') or 'last_30_days')
    except UpstreamFetchError as e:
        if e.rate_limited:
            return _rate_limited_response(e, body.get('retryAttempt'))
        raise
    return jsonify(result)


@ads_bp.route('/creative-tags', methods=['PUT'])
@login_required
@json_body(required_keys=('creativeId',))
def creative_tags(body):
    """Replaces the manual theme tags of a creative. An empty list restores automatic themes."""
    result = creative_aggregator.update_creative_tags(current_user.id, body['creativeId'],
                                                      body.get('tags'), body.get('adAccountId'))
    return jsonify({'message': 'Creative tags updated successfully', 'data': result})
