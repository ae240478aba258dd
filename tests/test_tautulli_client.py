import pytest
import requests

import tautulli_client
from conftest import FakeResponse, activity_payload, raw_session


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [
        ('tautulli.example.com', 'https://tautulli.example.com'),
        ('http://192.168.1.10:8181/', 'http://192.168.1.10:8181'),
        ('https://tautulli.example.com/sub/', 'https://tautulli.example.com/sub'),
        ('  tautulli.local:8181  ', 'https://tautulli.local:8181'),
    ],
)
def test_normalize_base_url(raw, expected):
    assert tautulli_client.normalize_base_url(raw) == expected


def test_image_url_percent_encodes_the_thumb_reference():
    url = tautulli_client.image_url('tautulli.local', 'key', 'a/b c')
    assert url == 'https://tautulli.local/api/v2?apikey=key&cmd=pms_image_proxy&img=a%2Fb+c'


def test_fetch_activity_issues_one_bounded_get_activity_call(fake_tautulli):
    fake_tautulli.queue(FakeResponse(activity_payload([raw_session()])))

    data = tautulli_client.fetch_activity('tautulli.local', 'secret')

    assert data['stream_count'] == '1'
    assert len(fake_tautulli.calls) == 1
    call = fake_tautulli.calls[0]
    assert call['url'] == 'https://tautulli.local/api/v2'
    assert call['params'] == {'apikey': 'secret', 'cmd': 'get_activity'}
    assert call['timeout'] == 10


def test_fetch_activity_connection_error(fake_tautulli):
    fake_tautulli.queue(requests.ConnectionError('Connection refused'))

    with pytest.raises(tautulli_client.TautulliConnectionError) as excinfo:
        tautulli_client.fetch_activity('tautulli.local', 'secret')
    assert 'Connection refused' in str(excinfo.value)
    assert excinfo.value.public_message == 'Failed to connect to Tautulli'


def test_fetch_activity_timeout_is_a_connection_error(fake_tautulli):
    fake_tautulli.queue(requests.Timeout('read timed out'))

    with pytest.raises(tautulli_client.TautulliConnectionError):
        tautulli_client.fetch_activity('tautulli.local', 'secret', timeout=1)
    assert fake_tautulli.calls[0]['timeout'] == 1


def test_fetch_activity_http_error_status(fake_tautulli):
    fake_tautulli.queue(FakeResponse({}, status_code=401))

    with pytest.raises(tautulli_client.TautulliResponseError) as excinfo:
        tautulli_client.fetch_activity('tautulli.local', 'bad-key')
    assert 'HTTP 401' in str(excinfo.value)


def test_fetch_activity_envelope_error_result(fake_tautulli):
    fake_tautulli.queue(FakeResponse({'response': {'result': 'error', 'message': 'Invalid apikey', 'data': {}}}))

    with pytest.raises(tautulli_client.TautulliResponseError) as excinfo:
        tautulli_client.fetch_activity('tautulli.local', 'bad-key')
    assert 'Invalid apikey' in str(excinfo.value)


@pytest.mark.parametrize(
    'reply',
    [
        FakeResponse(text='<html>502 Bad Gateway</html>'),
        FakeResponse(['not', 'an', 'object']),
        FakeResponse({'response': 'nope'}),
        FakeResponse({'response': {'result': 'success', 'data': ['sessions']}}),
    ],
)
def test_fetch_activity_unparseable_bodies(fake_tautulli, reply):
    fake_tautulli.queue(reply)

    with pytest.raises(tautulli_client.TautulliParseError) as excinfo:
        tautulli_client.fetch_activity('tautulli.local', 'secret')
    assert excinfo.value.public_message == 'Failed to parse Tautulli response'


def test_fetch_activity_missing_data_is_empty(fake_tautulli):
    fake_tautulli.queue(FakeResponse({'response': {'result': 'success'}}))

    assert tautulli_client.fetch_activity('tautulli.local', 'secret') == {}


def test_fetch_image_streams_from_pms_image_proxy(fake_tautulli):
    reply = fake_tautulli.queue(FakeResponse(headers={'Content-Type': 'image/jpeg'}, chunks=[b'jpg']))

    response = tautulli_client.fetch_image('http://tautulli.local:8181', 'secret', '/library/metadata/1/thumb')

    assert response is reply
    call = fake_tautulli.calls[0]
    assert call['url'] == 'http://tautulli.local:8181/api/v2'
    assert call['params'] == {'apikey': 'secret', 'cmd': 'pms_image_proxy', 'img': '/library/metadata/1/thumb'}
    assert call['stream'] is True


def test_fetch_image_connection_error(fake_tautulli):
    fake_tautulli.queue(requests.ConnectionError('no route to host'))

    with pytest.raises(tautulli_client.TautulliConnectionError):
        tautulli_client.fetch_image('tautulli.local', 'secret', '/thumb')
