import pytest
from datetime import date, timedelta
from utils.helpers import resolve_time_range, build_redirect_uri, normalize_ad_account_id

TODAY = date(2024, 3, 15)

def test_resolve_today():
    assert resolve_time_range('today', today=TODAY) == (TODAY, TODAY)

def test_resolve_yesterday_is_a_single_day():
    yesterday = TODAY - timedelta(days=1)
    assert resolve_time_range('yesterday', today=TODAY) == (yesterday, yesterday)

@pytest.mark.parametrize('keyword, days', [
    ('last_7_days', 7),
    ('last_30_days', 30),
    ('last_90_days', 90),
])
def test_resolve_last_n_days(keyword, days):
    since, until = resolve_time_range(keyword, today=TODAY)
    assert until == TODAY
    assert since == TODAY - timedelta(days=days)

@pytest.mark.parametrize('keyword', [None, '', 'last_year', 'LAST_7_DAYS'])
def test_resolve_unknown_defaults_to_last_30_days(keyword):
    assert resolve_time_range(keyword, today=TODAY) == (TODAY - timedelta(days=30), TODAY)

def test_resolve_uses_current_date_by_default():
    since, until = resolve_time_range('today')
    assert since == until == date.today()

def test_redirect_uri_from_origin():
    assert build_redirect_uri('https://app.metaminds.io', 'http://localhost:8080') == 'https://app.metaminds.io/meta-callback'
    assert build_redirect_uri('https://app.metaminds.io/', 'http://localhost:8080') == 'https://app.metaminds.io/meta-callback'

def test_redirect_uri_falls_back_to_default_origin():
    assert build_redirect_uri(None, 'http://localhost:8080') == 'http://localhost:8080/meta-callback'
    assert build_redirect_uri('null', 'http://localhost:8080/') == 'http://localhost:8080/meta-callback'
    assert build_redirect_uri('javascript:alert(1)', 'http://localhost:8080') == 'http://localhost:8080/meta-callback'

def test_redirect_uri_custom_path():
    assert build_redirect_uri('http://localhost:3000', 'http://x', path='/cb') == 'http://localhost:3000/cb'

def test_normalize_ad_account_id():
    assert normalize_ad_account_id('123456') == 'act_123456'
    assert normalize_ad_account_id('act_123456') == 'act_123456'
    assert normalize_ad_account_id(123456) == 'act_123456'
    assert normalize_ad_account_id('') is None
    assert normalize_ad_account_id(None) is None
