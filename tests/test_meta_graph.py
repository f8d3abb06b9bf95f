import pytest
import requests
from datetime import date
from urllib.parse import urlparse, parse_qs
from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.requests_client import OAuth2Session

from services.meta_graph import MetaGraphClient, GraphAPIError, get_graph_client
from services.errors import ConfigurationError, TokenExchangeError


def _response(mocker, status=200, body=None, text=''):
    resp = mocker.Mock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.reason = 'Bad Request'
    if body is None:
        resp.json.side_effect = ValueError('no json')
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def graph(app_context):
    return MetaGraphClient(app_id='app-1', app_secret='secret-1', api_version='v18.0', timeout=12, max_pages=3)


def test_get_graph_client_reads_config(app_context):
    client = get_graph_client()
    assert client.app_id == 'test-app-id'
    assert client.base_url == 'https://graph.facebook.com/v18.0'
    assert client.timeout == 30


def test_authorization_url_contains_handshake_parameters(graph):
    url = graph.authorization_url('http://localhost:8080/meta-callback', 'state-123',
                                  ('ads_management', 'ads_read', 'business_management'))
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == 'www.facebook.com'
    assert parsed.path == '/v18.0/dialog/oauth'
    assert query['client_id'] == ['app-1']
    assert query['redirect_uri'] == ['http://localhost:8080/meta-callback']
    assert query['state'] == ['state-123']
    assert query['response_type'] == ['code']
    assert query['scope'] == ['ads_management,ads_read,business_management']


def test_missing_credentials_raise_configuration_error(app_context):
    client = MetaGraphClient(app_id=None, app_secret=None)
    with pytest.raises(ConfigurationError):
        client.authorization_url('http://x/meta-callback', 's', ('ads_read',))
    with pytest.raises(ConfigurationError):
        client.exchange_code('code', 'http://x/meta-callback')


def test_exchange_code_uses_same_redirect_uri_and_timeout(mocker, graph):
    fetch = mocker.patch.object(OAuth2Session, 'fetch_token',
                                return_value={'access_token': 'tok', 'expires_in': 5183944})
    token = graph.exchange_code('the-code', 'http://localhost:8080/meta-callback')

    assert token['access_token'] == 'tok'
    args, kwargs = fetch.call_args
    assert args[0] == 'https://graph.facebook.com/v18.0/oauth/access_token'
    assert kwargs['code'] == 'the-code'
    assert kwargs['timeout'] == 12


def test_exchange_code_rejected_by_meta(mocker, graph):
    mocker.patch.object(OAuth2Session, 'fetch_token',
                        side_effect=OAuthError(error={'message': 'Invalid verification code format.', 'code': 100}))
    with pytest.raises(TokenExchangeError) as exc_info:
        graph.exchange_code('bad', 'http://localhost:8080/meta-callback')
    assert exc_info.value.details['code'] == 100


def test_exchange_code_transport_failure(mocker, graph):
    mocker.patch.object(OAuth2Session, 'fetch_token', side_effect=requests.ConnectionError('down'))
    with pytest.raises(TokenExchangeError):
        graph.exchange_code('code', 'http://localhost:8080/meta-callback')


def test_get_me_passes_token_as_query_parameter(mocker, graph):
    get = mocker.patch('services.meta_graph.requests.get',
                       return_value=_response(mocker, body={'id': '999', 'name': 'Biz'}))
    assert graph.get_me('tok') == {'id': '999', 'name': 'Biz'}
    args, kwargs = get.call_args
    assert args[0] == 'https://graph.facebook.com/v18.0/me'
    assert kwargs['params']['access_token'] == 'tok'
    assert kwargs['timeout'] == 12


def test_graph_error_payload_is_surfaced(mocker, graph):
    error = {'message': 'Invalid OAuth access token.', 'type': 'OAuthException', 'code': 190}
    mocker.patch('services.meta_graph.requests.get', return_value=_response(mocker, 400, {'error': error}))
    with pytest.raises(GraphAPIError) as exc_info:
        graph.get_me('tok')
    assert exc_info.value.payload == error
    assert exc_info.value.status_code == 400
    assert not exc_info.value.is_rate_limited


def test_rate_limit_codes_are_flagged(mocker, graph):
    error = {'message': 'User request limit reached', 'code': 17}
    mocker.patch('services.meta_graph.requests.get', return_value=_response(mocker, 400, {'error': error}))
    with pytest.raises(GraphAPIError) as exc_info:
        graph.list_ad_accounts('tok')
    assert exc_info.value.is_rate_limited


def test_non_json_error_and_transport_failure(mocker, graph):
    mocker.patch('services.meta_graph.requests.get', return_value=_response(mocker, 502, None, text='Bad gateway'))
    with pytest.raises(GraphAPIError) as exc_info:
        graph.get_me('tok')
    assert exc_info.value.payload == {'message': 'Bad gateway'}

    mocker.patch('services.meta_graph.requests.get', side_effect=requests.Timeout('slow'))
    with pytest.raises(GraphAPIError) as exc_info:
        graph.get_me('tok')
    assert exc_info.value.payload['type'] == 'TransportError'


def test_pagination_follows_next_links_up_to_the_limit(mocker, graph):
    pages = [
        _response(mocker, body={'data': [{'id': '1'}], 'paging': {'next': 'https://graph.facebook.com/page2'}}),
        _response(mocker, body={'data': [{'id': '2'}], 'paging': {'next': 'https://graph.facebook.com/page3'}}),
        _response(mocker, body={'data': [{'id': '3'}], 'paging': {'next': 'https://graph.facebook.com/page4'}}),
    ]
    get = mocker.patch('services.meta_graph.requests.get', side_effect=pages)
    items = graph.get_paginated('act_1/ads', 'tok', fields='id')

    assert [item['id'] for item in items] == ['1', '2', '3']
    assert get.call_count == 3 # max_pages
    assert get.call_args_list[1].args[0] == 'https://graph.facebook.com/page2'


def test_list_ads_requests_insights_for_the_window(mocker, graph):
    get = mocker.patch('services.meta_graph.requests.get', return_value=_response(mocker, body={'data': []}))
    graph.list_ads('act_1', 'tok', date(2024, 3, 1), date(2024, 3, 15))
    fields = get.call_args.kwargs['params']['fields']
    assert 'creative{id}' in fields
    assert 'adset{name,start_time,end_time}' in fields
    assert 'insights.time_range({"since":"2024-03-01","until":"2024-03-15"})' in fields
    assert 'cost_per_action_type' in fields


def test_get_object_picture_prefers_full_picture(mocker, graph):
    mocker.patch('services.meta_graph.requests.get',
                 return_value=_response(mocker, body={'full_picture': 'https://cdn/full.jpg', 'picture': 'https://cdn/small.jpg'}))
    assert graph.get_object_picture('123_456', 'tok') == 'https://cdn/full.jpg'


def test_get_object_picture_ignores_non_object_body(mocker, graph):
    mocker.patch('services.meta_graph.requests.get', return_value=_response(mocker, body=['unexpected']))
    assert graph.get_object_picture('123_456', 'tok') is None
