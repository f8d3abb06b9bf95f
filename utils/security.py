import secrets # Cryptographically strong random values for OAuth state tokens.
from cryptography.fernet import Fernet # Symmetric encryption library.
from flask import current_app # To access application configuration (e.g., FERNET_KEY, SECRET_KEY).
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from services.errors import ConfigurationError

API_TOKEN_SALT = 'metaminds-api-token'


def get_fernet():
    """
    Initializes and returns a Fernet instance for encryption/decryption.

    The FERNET_KEY must be a URL-safe base64-encoded 32-byte key, generated
    once and kept secret. config.py stores it as bytes.

    Raises:
        ConfigurationError: If FERNET_KEY is not configured in the application.

    Returns:
        cryptography.fernet.Fernet: An initialized Fernet cipher suite instance.
    """
    key = current_app.config.get('FERNET_KEY')
    if not key:
        current_app.logger.critical("FERNET_KEY is not configured in the application. Access tokens cannot be stored.")
        raise ConfigurationError("FERNET_KEY is not configured. Please set it in your application configuration.")
    if isinstance(key, str):
        key = key.encode('utf-8')
    return Fernet(key)


def encrypt_token(token):
    """
    Encrypts a plain-text token (e.g., a Meta access token) for storage.

    Returns:
        str or None: The encrypted token as a UTF-8 string, or None if `token` is None.
    """
    if token is None:
        return None
    return get_fernet().encrypt(token.encode('utf-8')).decode('utf-8')


def decrypt_token(encrypted_token):
    """
    Decrypts a token produced by encrypt_token.

    Raises:
        cryptography.fernet.InvalidToken: If the value was not encrypted with the
                                          configured key or has been tampered with.
    """
    if encrypted_token is None:
        return None
    return get_fernet().decrypt(encrypted_token.encode('utf-8')).decode('utf-8')


def generate_state_token():
    """Opaque, unguessable value used as the OAuth `state` (CSRF protection)."""
    return secrets.token_urlsafe(32)


def _api_token_serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=API_TOKEN_SALT)


def issue_api_token(user_id):
    """Signs a user id into a bearer token accepted by the API."""
    return _api_token_serializer().dumps({'uid': user_id})


def load_api_token(token):
    """
    Resolves a bearer token back to the user id it was issued for.

    Returns:
        int or None: The user id, or None if the token is malformed, tampered with or expired.
    """
    if not token:
        return None
    max_age = current_app.config.get('API_TOKEN_MAX_AGE')
    try:
        payload = _api_token_serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        current_app.logger.info("Rejected expired API bearer token.")
        return None
    except BadSignature:
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get('uid')
