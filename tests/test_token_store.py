import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError

from models import MetaConnection, User, CreativeTag
from services import token_store
from services.errors import NoConnectionError, TokenExpiredError


def _connect(user, expires_in=timedelta(hours=2), ad_account_id=None):
    return token_store.upsert_connection(user.id, 'plain-access-token', 'biz-1',
                                         datetime.utcnow() + expires_in, ad_account_id=ad_account_id)


def test_get_connection_none(user):
    assert token_store.get_connection(user.id) is None


def test_upsert_creates_encrypted_connection_and_flags_user(db, user):
    connection = _connect(user)

    assert connection.access_token == 'plain-access-token'
    assert connection.access_token_encrypted != 'plain-access-token'
    assert connection.business_id == 'biz-1'
    assert db.session.get(User, user.id).meta_connected is True


def test_upsert_updates_existing_row_and_keeps_ad_account(db, user):
    _connect(user, ad_account_id='123')
    token_store.upsert_connection(user.id, 'new-token', 'biz-2', datetime.utcnow() + timedelta(days=60))

    rows = MetaConnection.query.filter_by(user_id=user.id).all()
    assert len(rows) == 1
    assert rows[0].access_token == 'new-token'
    assert rows[0].business_id == 'biz-2'
    assert rows[0].ad_account_id == 'act_123'


def test_get_active_connection(user):
    _connect(user)
    assert token_store.get_active_connection(user.id).business_id == 'biz-1'


def test_get_active_connection_without_connection(user):
    with pytest.raises(NoConnectionError):
        token_store.get_active_connection(user.id)


def test_get_active_connection_expired(user):
    _connect(user, expires_in=timedelta(seconds=-1))
    with pytest.raises(TokenExpiredError):
        token_store.get_active_connection(user.id)


def test_set_ad_account_normalizes_id(user):
    _connect(user)
    connection = token_store.set_ad_account(user.id, '987')
    assert connection.ad_account_id == 'act_987'


def test_set_ad_account_requires_connection(user):
    with pytest.raises(NoConnectionError):
        token_store.set_ad_account(user.id, 'act_987')


def test_delete_connection_is_idempotent(db, user):
    _connect(user)
    assert token_store.delete_connection(user.id) is True
    assert token_store.delete_connection(user.id) is False
    assert token_store.get_connection(user.id) is None
    assert db.session.get(User, user.id).meta_connected is False


def test_delete_connection_keeps_creative_tags(db, user):
    _connect(user)
    db.session.add(CreativeTag(creative_id='c1', user_id=user.id, tags=['Testimonials']))
    db.session.commit()

    token_store.delete_connection(user.id)
    assert CreativeTag.query.filter_by(user_id=user.id).count() == 1


def test_delete_connection_survives_profile_flag_failure(mocker, db, user):
    _connect(user)
    real_commit = db.session.commit
    calls = {'n': 0}

    def flaky_commit():
        calls['n'] += 1
        if calls['n'] == 2: # The profile-flag update commits second.
            raise SQLAlchemyError('profile table unavailable')
        return real_commit()

    mocker.patch.object(db.session, 'commit', side_effect=flaky_commit)
    assert token_store.delete_connection(user.id) is True
    mocker.stopall()
    assert token_store.get_connection(user.id) is None
