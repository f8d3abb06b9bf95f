import pytest
from utils.security import (encrypt_token, decrypt_token, generate_state_token,
                            issue_api_token, load_api_token)
from services.errors import ConfigurationError
from cryptography.fernet import InvalidToken # Import for specific exception

def test_encrypt_decrypt_token(app_context): # app_context to ensure config (FERNET_KEY) is loaded
    original_token = "EAAGm0PX4ZCpsBAmeta_access_token_for_testing_which_is_quite_long"
    encrypted = encrypt_token(original_token)
    assert encrypted is not None
    assert encrypted != original_token

    decrypted = decrypt_token(encrypted)
    assert decrypted == original_token

def test_encrypt_decrypt_none(app_context):
    assert encrypt_token(None) is None
    assert decrypt_token(None) is None

def test_decrypt_invalid_token_format(app_context):
    # Not a Fernet token at all.
    with pytest.raises(InvalidToken):
        decrypt_token("this_is_not_a_valid_fernet_token_at_all")

def test_decrypt_tampered_token(app_context):
    invalid_b64_token = "SGVsbG8gV29ybGQh" # "Hello World!" in base64
    with pytest.raises(InvalidToken):
        decrypt_token(invalid_b64_token)

def test_decrypt_different_key_scenario_mocked(mocker, app_context):
    from cryptography.fernet import Fernet
    original_token = "token_for_key_test"
    encrypted_with_app_key = encrypt_token(original_token)

    # Decrypting with another key must fail.
    mocker.patch('utils.security.get_fernet', return_value=Fernet(Fernet.generate_key()))
    with pytest.raises(InvalidToken):
        decrypt_token(encrypted_with_app_key)

def test_missing_fernet_key_raises_configuration_error(app, app_context, monkeypatch):
    monkeypatch.setitem(app.config, 'FERNET_KEY', b'')
    with pytest.raises(ConfigurationError):
        encrypt_token("anything")

def test_state_tokens_are_unique_and_url_safe():
    tokens = {generate_state_token() for _ in range(50)}
    assert len(tokens) == 50
    for token in tokens:
        assert len(token) >= 32
        assert all(c.isalnum() or c in '-_' for c in token)

def test_api_token_round_trip(app_context):
    token = issue_api_token(42)
    assert load_api_token(token) == 42

def test_api_token_rejects_tampering_and_garbage(app_context):
    token = issue_api_token(42)
    assert load_api_token(token[:-2] + 'xx') is None
    assert load_api_token('not-a-token') is None
    assert load_api_token(None) is None

def test_api_token_expires(app, app_context, monkeypatch):
    token = issue_api_token(7)
    monkeypatch.setitem(app.config, 'API_TOKEN_MAX_AGE', -1)
    assert load_api_token(token) is None
