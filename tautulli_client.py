import logging
from urllib.parse import urlencode

import requests

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class TautulliError(Exception):
    """Base class for failures talking to Tautulli."""
    public_message = "Failed to communicate with Tautulli"


class TautulliConnectionError(TautulliError):
    public_message = "Failed to connect to Tautulli"


class TautulliResponseError(TautulliError):
    public_message = "Tautulli returned an error"


class TautulliParseError(TautulliError):
    public_message = "Failed to parse Tautulli response"


def normalize_base_url(url):
    """Adds https:// when the URL has no scheme and drops trailing slashes."""
    url = (url or '').strip()
    if not url.startswith('http://') and not url.startswith('https://'):
        url = f"https://{url}"
    return url.rstrip('/')


def api_url(base_url):
    return f"{normalize_base_url(base_url)}/api/v2"


def image_url(base_url, api_key, img):
    """Tautulli's pms_image_proxy URL for a single thumb reference."""
    params = {"apikey": api_key, "cmd": "pms_image_proxy", "img": img}
    return f"{api_url(base_url)}?{urlencode(params)}"


def fetch_activity(base_url, api_key, timeout=DEFAULT_TIMEOUT):
    """
    Fetches the current activity from Tautulli and returns the envelope's
    `data` object. Raises a TautulliError subclass on any failure; the
    call is never retried.
    """
    params = {"apikey": api_key, "cmd": "get_activity"}
    try:
        response = requests.get(api_url(base_url), params=params, timeout=timeout)
        response.raise_for_status()
    except requests.HTTPError as e:
        raise TautulliResponseError(f"Tautulli answered get_activity with HTTP {getattr(e.response, 'status_code', '?')}") from e
    except requests.RequestException as e:
        raise TautulliConnectionError(f"Could not reach Tautulli at {normalize_base_url(base_url)}: {e}") from e

    try:
        payload = response.json()
    except ValueError as e:
        raise TautulliParseError(f"Tautulli get_activity body is not valid JSON: {e}") from e

    envelope = payload.get('response') if isinstance(payload, dict) else None
    if not isinstance(envelope, dict):
        raise TautulliParseError("Tautulli get_activity body has no 'response' object")

    if envelope.get('result') == 'error':
        raise TautulliResponseError(f"Tautulli get_activity failed: {envelope.get('message') or 'no message'}")

    data = envelope.get('data')
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise TautulliParseError(f"Tautulli get_activity 'data' is a {type(data).__name__}, expected an object")
    return data


def fetch_image(base_url, api_key, img, timeout=DEFAULT_TIMEOUT):
    """
    Opens a streaming request for a poster through Tautulli's image proxy.
    The caller owns the returned response and must close it.
    """
    params = {"apikey": api_key, "cmd": "pms_image_proxy", "img": img}
    try:
        return requests.get(api_url(base_url), params=params, timeout=timeout, stream=True)
    except requests.RequestException as e:
        raise TautulliConnectionError(f"Could not fetch image '{img}' from Tautulli: {e}") from e
