import logging
from datetime import datetime
from urllib.parse import urlencode

import tautulli_client

log = logging.getLogger(__name__)

MAX_SESSIONS = 4
PLACEHOLDER_POSTER_URL = "https://placehold.co/120x180/eee/ccc?text=No+Art"
IMAGE_PROXY_PATH = "/image"


def _to_int(value, field):
    """Parses Tautulli's numeric-as-string fields, falling back to 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        if value not in (None, ''):
            log.warning(f"Could not parse {field} '{value}' as an integer. Using 0.")
        return 0


def parse_stream_count(value):
    return _to_int(value, 'stream_count')


def parse_progress(value):
    """Progress percent as an int clamped to 0-100."""
    progress = _to_int(value, 'progress_percent')
    return max(0, min(100, progress))


def resolve_titles(raw_session):
    """
    Episodes show the series as the title and the episode as the subtitle.
    Everything else (movies, tracks, clips) only has a title.
    """
    if raw_session.get('media_type') == 'episode':
        return raw_session.get('grandparent_title') or '', raw_session.get('title') or ''
    return raw_session.get('title') or '', None


def resolve_poster_url(thumb, connection):
    """
    Builds the poster URL for a thumb reference.

    connection keys:
      - poster_mode: 'proxy' for a local /image reference, 'direct' for
        Tautulli's own pms_image_proxy URL.
      - base_url / api_key: the Tautulli connection.
      - embed_credentials: when true the proxy reference carries the
        tautulli_url/api_key so /image can resolve it without server config.
    """
    if not thumb:
        return PLACEHOLDER_POSTER_URL

    if connection.get('poster_mode') == 'direct':
        return tautulli_client.image_url(connection['base_url'], connection['api_key'], thumb)

    params = {'img': thumb}
    if connection.get('embed_credentials'):
        params['tautulli_url'] = connection['base_url']
        params['api_key'] = connection['api_key']
    return f"{IMAGE_PROXY_PATH}?{urlencode(params)}"


def normalize_session(raw_session, connection):
    """Maps one raw Tautulli session onto the record the display uses."""
    display_title, subtitle = resolve_titles(raw_session)
    session = {
        'user': raw_session.get('user') or '',
        'player': raw_session.get('player') or '',
        'media_type': raw_session.get('media_type') or '',
        'display_title': display_title,
        'poster_url': resolve_poster_url(raw_session.get('thumb'), connection),
        'progress': parse_progress(raw_session.get('progress_percent')),
    }
    if subtitle is not None:
        session['subtitle'] = subtitle
    return session


def format_timestamp(now=None):
    """Server-local wall clock, e.g. '3:04 PM'."""
    now = now or datetime.now()
    return now.strftime('%I:%M %p').lstrip('0')


def build_display_page(activity_data, connection, now=None):
    """
    Turns the `data` object of a get_activity response into the page the
    renderer consumes. Only the first MAX_SESSIONS sessions are kept, in the
    order Tautulli returned them, whatever stream_count claims.
    """
    raw_sessions = activity_data.get('sessions') or []
    if not isinstance(raw_sessions, list):
        log.warning(f"Tautulli 'sessions' is a {type(raw_sessions).__name__}, expected a list. Showing no sessions.")
        raw_sessions = []

    sessions = []
    for raw_session in raw_sessions:
        if len(sessions) >= MAX_SESSIONS:
            break
        if not isinstance(raw_session, dict):
            log.warning(f"Skipping malformed Tautulli session entry: {raw_session!r}")
            continue
        sessions.append(normalize_session(raw_session, connection))

    return {
        'stream_count': parse_stream_count(activity_data.get('stream_count')),
        'sessions': sessions,
        'generated_at': format_timestamp(now),
    }
