import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests
from requests.structures import CaseInsensitiveDict

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep the suite away from a real config volume and the host's relay settings
os.environ['CONFIG_PATH'] = str(ROOT / 'tests' / '.no-config')
for _key in ('CONFIG_SOURCE', 'TAUTULLI_URL', 'TAUTULLI_API_KEY', 'OUTPUT_FORMAT',
             'POSTER_MODE', 'MARKUP_LAYOUT', 'REQUEST_TIMEOUT', 'VERSION'):
    os.environ.pop(_key, None)

import tautulli_client  # noqa: E402


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None, headers=None, chunks=None):
        self._payload = payload
        self._text = text
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._chunks = chunks or []
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self):
        if self._text is not None:
            raise ValueError(f"Expecting value: {self._text[:20]!r}")
        return self._payload

    def iter_content(self, chunk_size=1):
        yield from self._chunks

    def close(self):
        self.closed = True


def activity_payload(sessions, stream_count=None):
    if stream_count is None:
        stream_count = str(len(sessions))
    return {
        'response': {
            'result': 'success',
            'message': None,
            'data': {'stream_count': stream_count, 'sessions': sessions},
        }
    }


def raw_session(**fields):
    session = {
        'user': 'alice',
        'player': 'Living Room',
        'grandparent_title': '',
        'title': 'Arrival',
        'media_type': 'movie',
        'thumb': '/library/metadata/100/thumb/1700000000',
        'progress_percent': '42',
    }
    session.update(fields)
    return session


@pytest.fixture
def fake_tautulli(monkeypatch):
    """Replaces requests.get for tautulli_client; queue FakeResponses or exceptions."""
    state = SimpleNamespace(calls=[], replies=[])

    def queue(reply):
        state.replies.append(reply)
        return reply

    def _get(url, params=None, timeout=None, stream=False):
        state.calls.append({'url': url, 'params': params, 'timeout': timeout, 'stream': stream})
        reply = state.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    state.queue = queue
    monkeypatch.setattr(tautulli_client.requests, 'get', _get)
    return state
