import json

import requests
from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.requests_client import OAuth2Session
from flask import current_app

from services.errors import ConfigurationError, TokenExchangeError

GRAPH_BASE_URL = 'https://graph.facebook.com'
DIALOG_BASE_URL = 'https://www.facebook.com'

# Graph error codes Meta uses for throttling (app, user, ad-account and business-use-case limits).
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613, 80000, 80003, 80004, 80014})

CREATIVE_FIELDS = ('id', 'name', 'title', 'body', 'object_story_spec', 'thumbnail_url',
                   'image_url', 'effective_object_story_id')
AD_INSIGHT_FIELDS = ('impressions', 'clicks', 'spend', 'ctr', 'actions', 'action_values',
                     'conversion_values', 'cost_per_action_type')
CAMPAIGN_INSIGHT_FIELDS = ('spend', 'impressions', 'reach', 'clicks', 'ctr', 'cpc', 'cpm',
                           'actions', 'action_values', 'cost_per_action_type')


class GraphAPIError(Exception):
    """
    A failed Graph API call.

    `payload` is the `error` object Meta returned (or a synthesized one for
    transport failures) and is safe to hand back to API clients.
    """

    def __init__(self, payload, status_code=None):
        self.payload = payload or {}
        self.status_code = status_code
        super().__init__(self.payload.get('message') or 'Meta Graph API request failed')

    @property
    def is_rate_limited(self):
        return self.status_code == 429 or self.payload.get('code') in RATE_LIMIT_ERROR_CODES


def _insights_field(fields, since, until):
    """Field expansion for insights restricted to a date window, e.g. insights.time_range({...}){spend,...}."""
    time_range = json.dumps({'since': since.isoformat(), 'until': until.isoformat()}, separators=(',', ':'))
    return f"insights.time_range({time_range}){{{','.join(fields)}}}"


class MetaGraphClient:
    """
    Thin synchronous client for the parts of the Meta Graph API MetaMinds uses.

    Every request carries an explicit timeout. Listing calls follow
    `paging.next` links up to `max_pages` pages. Failures surface as
    GraphAPIError; the code exchange raises TokenExchangeError directly.
    """

    def __init__(self, app_id=None, app_secret=None, api_version='v18.0', timeout=30, max_pages=10):
        self.app_id = app_id
        self.app_secret = app_secret
        self.api_version = api_version
        self.timeout = timeout
        self.max_pages = max_pages

    @property
    def base_url(self):
        return f"{GRAPH_BASE_URL}/{self.api_version}"

    @property
    def authorize_url(self):
        return f"{DIALOG_BASE_URL}/{self.api_version}/dialog/oauth"

    @property
    def token_url(self):
        return f"{self.base_url}/oauth/access_token"

    def _require_credentials(self):
        if not self.app_id or not self.app_secret:
            raise ConfigurationError("Meta app credentials (META_APP_ID / META_APP_SECRET) are not configured.")

    def _oauth_session(self, redirect_uri, scope=None):
        return OAuth2Session(
            client_id=self.app_id,
            client_secret=self.app_secret,
            scope=scope,
            redirect_uri=redirect_uri,
            token_endpoint_auth_method='client_secret_post',
        )

    # --- OAuth ---

    def authorization_url(self, redirect_uri, state, scopes):
        """Builds the Facebook login dialog URL for the given state and redirect URI."""
        self._require_credentials()
        session = self._oauth_session(redirect_uri, scope=','.join(scopes))
        url, _ = session.create_authorization_url(self.authorize_url, state=state)
        return url

    def exchange_code(self, code, redirect_uri):
        """
        Exchanges an authorization code for an access token.

        The redirect URI must be byte-identical to the one used to build the
        authorization URL, otherwise Meta rejects the code.

        Returns:
            dict: The token response ('access_token', optionally 'expires_in').

        Raises:
            ConfigurationError: If the app credentials are missing.
            TokenExchangeError: If Meta rejects the code or cannot be reached.
        """
        self._require_credentials()
        session = self._oauth_session(redirect_uri)
        try:
            token = session.fetch_token(self.token_url, code=code, timeout=self.timeout)
        except OAuthError as e:
            current_app.logger.warning(f"Meta rejected the authorization code: {e.error} - {e.description}")
            details = e.error if isinstance(e.error, dict) else {'error': e.error, 'description': e.description}
            raise TokenExchangeError(details=details) from e
        except (requests.RequestException, ValueError) as e:
            current_app.logger.error(f"Meta token endpoint request failed: {e}", exc_info=True)
            raise TokenExchangeError(details={'message': str(e)}) from e
        finally:
            session.close()

        if not token.get('access_token'):
            raise TokenExchangeError("Meta token response did not contain an access token.")
        return dict(token)

    # --- Graph reads ---

    def _request(self, url, params=None):
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise GraphAPIError({'message': str(e), 'type': 'TransportError'}) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok or body is None or (isinstance(body, dict) and 'error' in body):
            payload = body.get('error') if isinstance(body, dict) else None
            if not isinstance(payload, dict):
                payload = {'message': response.text[:500] if response.text else response.reason}
            raise GraphAPIError(payload, status_code=response.status_code)
        return body

    def get(self, path, access_token, **params):
        params['access_token'] = access_token
        return self._request(f"{self.base_url}/{path.lstrip('/')}", params)

    def get_paginated(self, path, access_token, **params):
        """Returns the concatenated `data` lists of up to `max_pages` pages."""
        body = self.get(path, access_token, **params)
        items = list(body.get('data') or [])
        pages = 1
        next_url = (body.get('paging') or {}).get('next')
        while next_url and pages < self.max_pages:
            # `next` already carries the access token and every query parameter.
            body = self._request(next_url)
            items.extend(body.get('data') or [])
            pages += 1
            next_url = (body.get('paging') or {}).get('next')
        if next_url:
            current_app.logger.warning(f"Stopped following Graph pagination for '{path}' after {pages} pages ({len(items)} items).")
        return items

    def get_me(self, access_token):
        """Identity lookup; returns {'id', 'name'} of the token owner."""
        return self.get('me', access_token, fields='id,name')

    def list_ad_accounts(self, access_token):
        return self.get_paginated('me/adaccounts', access_token, fields='name,account_id', limit=100)

    def list_ad_creatives(self, ad_account_id, access_token):
        return self.get_paginated(f"{ad_account_id}/adcreatives", access_token,
                                  fields=','.join(CREATIVE_FIELDS), limit=50)

    def list_ads(self, ad_account_id, access_token, since, until):
        fields = ','.join(('id', 'name', 'status', 'creative{id}', 'adset{name,start_time,end_time}',
                           _insights_field(AD_INSIGHT_FIELDS, since, until)))
        return self.get_paginated(f"{ad_account_id}/ads", access_token, fields=fields, limit=100)

    def list_campaigns(self, ad_account_id, access_token, since, until):
        fields = ','.join(('id', 'name', 'status', 'objective', 'budget_remaining',
                           _insights_field(CAMPAIGN_INSIGHT_FIELDS, since, until)))
        return self.get_paginated(f"{ad_account_id}/campaigns", access_token, fields=fields, limit=100)

    def get_object_picture(self, object_id, access_token):
        """Picture URL of a page post (used for creatives without their own media)."""
        body = self.get(object_id, access_token, fields='full_picture,picture')
        if not isinstance(body, dict):
            return None
        return body.get('full_picture') or body.get('picture')


def get_graph_client():
    """Builds a MetaGraphClient from the current application's configuration."""
    config = current_app.config
    return MetaGraphClient(
        app_id=config.get('META_APP_ID'),
        app_secret=config.get('META_APP_SECRET'),
        api_version=config.get('META_GRAPH_API_VERSION', 'v18.0'),
        timeout=config.get('META_HTTP_TIMEOUT', 30),
        max_pages=config.get('META_MAX_PAGES', 10),
    )
