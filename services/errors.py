"""
Typed failures raised by the MetaMinds services.

Every error carries the HTTP status the API layer should answer with and a
short machine-readable ``code``. The single error handler registered in
``app.create_app`` turns any ``MetaMindsError`` into a JSON response, so the
services never build responses themselves.
"""


class MetaMindsError(Exception):
    """Base class for every error the services raise on purpose."""
    status_code = 500
    code = 'internal_error'
    message = 'An unexpected error occurred.'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details # Upstream payload or extra context, if any.

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class BadRequestError(MetaMindsError):
    status_code = 400
    code = 'bad_request'
    message = 'The request body is missing required parameters.'


class UnauthenticatedError(MetaMindsError):
    status_code = 401
    code = 'unauthenticated'
    message = 'A valid bearer token is required.'


class ConfigurationError(MetaMindsError):
    status_code = 500
    code = 'configuration_error'
    message = 'Application credentials are not configured.'


class InvalidStateError(MetaMindsError):
    status_code = 400
    code = 'invalid_state'
    message = 'Invalid, expired or already used state parameter.'


class TokenExchangeError(MetaMindsError):
    status_code = 400
    code = 'token_exchange_failed'
    message = 'Failed to exchange the authorization code for an access token.'


class InvalidTokenError(MetaMindsError):
    status_code = 400
    code = 'invalid_access_token'
    message = 'The supplied Meta access token could not be verified.'


class NoConnectionError(MetaMindsError):
    status_code = 404
    code = 'no_connection'
    message = 'No Meta connection found. Please connect your Meta account.'


class TokenExpiredError(MetaMindsError):
    status_code = 401
    code = 'token_expired'
    message = 'Your Meta connection has expired. Please reconnect your account.'


class MissingAdAccountError(MetaMindsError):
    status_code = 400
    code = 'missing_ad_account'
    message = 'No ad account ID provided and no default ad account is set.'


class AdAccountAccessError(MetaMindsError):
    status_code = 403
    code = 'ad_account_forbidden'
    message = 'You do not have access to this ad account.'


class UpstreamFetchError(MetaMindsError):
    """
    Raised when the Graph API rejects or fails a top-level fetch.

    ``rate_limited`` is True when Meta reported a throttling error code; the
    API layer answers 429 and hands the caller a retry schedule instead of
    retrying in-process.
    """
    status_code = 502
    code = 'upstream_unavailable'
    message = 'Failed to fetch data from the Meta API.'

    def __init__(self, message=None, details=None, rate_limited=False):
        super().__init__(message, details)
        self.rate_limited = rate_limited
        if rate_limited:
            self.status_code = 429
            self.code = 'upstream_rate_limited'


class UpstreamGenerationError(MetaMindsError):
    status_code = 502
    code = 'generation_failed'
    message = 'Error calling the text-generation API.'


class NoDataError(MetaMindsError):
    status_code = 400
    code = 'no_data'
    message = 'No data provided for analysis.'
