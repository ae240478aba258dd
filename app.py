import logging

import requests
from flask import Blueprint, Flask, Response, current_app, jsonify, request, stream_with_context
from flasgger import Swagger

import activity_manager
import config_manager
import renderer
import tautulli_client

log = logging.getLogger(__name__)

IMAGE_CHUNK_SIZE = 64 * 1024

# Headers that describe the upstream connection rather than the image
HOP_BY_HOP_HEADERS = {
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailers', 'transfer-encoding', 'upgrade',
}

# --- Swagger/Flasgger Configuration ---
swagger_template = {
    "swagger": "2.0",
    "info": {
        "title": "Tautulli Now Playing Relay API Docs",
        "description": "Relays Tautulli's current activity as dashboard markup or JSON and proxies poster images.",
    },
    "definitions": {
        "DisplaySession": {
            "type": "object",
            "properties": {
                "user": {"type": "string", "example": "alice"},
                "player": {"type": "string", "example": "Living Room TV"},
                "media_type": {"type": "string", "example": "episode"},
                "display_title": {"type": "string", "example": "The Expanse"},
                "subtitle": {"type": "string", "example": "Dulcinea"},
                "poster_url": {"type": "string", "example": "/image?img=%2Flibrary%2Fmetadata%2F1%2Fthumb"},
                "progress": {"type": "integer", "example": 42}
            }
        },
        "DisplayPage": {
            "type": "object",
            "properties": {
                "stream_count": {"type": "integer", "example": 1},
                "sessions": {
                    "type": "array",
                    "items": {"$ref": "#/definitions/DisplaySession"}
                },
                "generated_at": {"type": "string", "example": "3:04 PM"}
            }
        }
    },
    "tags": [
        {"name": "Activity", "description": "Current Tautulli activity, shaped for display."},
        {"name": "Images", "description": "Poster passthrough from Tautulli."},
    ]
}

relay_bp = Blueprint('relay', __name__)


def _plain_error(message, status):
    return Response(message, status=status, mimetype='text/plain')


def _settings():
    return current_app.config['RELAY_SETTINGS']


def _resolve_connection(settings):
    """Returns (tautulli_url, api_key) from server config or the query string."""
    if settings['CONFIG_SOURCE'] == 'config':
        return settings['TAUTULLI_URL'], settings['TAUTULLI_API_KEY']
    return request.args.get('tautulli_url'), request.args.get('api_key')


def _passthrough_headers(upstream_headers):
    # iter_content() undoes Content-Encoding, so the original length no longer applies
    decoded = 'content-encoding' in upstream_headers
    headers = []
    for key, value in upstream_headers.items():
        name = key.lower()
        if name in HOP_BY_HOP_HEADERS:
            continue
        if decoded and name in ('content-encoding', 'content-length'):
            continue
        headers.append((key, value))
    return headers


@relay_bp.route('/')
def index():
    """
    Get Now Playing
    ---
    tags:
      - Activity
    description: Fetches current activity from Tautulli and returns up to four sessions as dashboard markup or JSON, depending on the server's OUTPUT_FORMAT.
    parameters:
      - name: tautulli_url
        in: query
        type: string
        required: false
        description: Tautulli base URL. Required unless the server runs with CONFIG_SOURCE=config. https:// is assumed when no scheme is given.
      - name: api_key
        in: query
        type: string
        required: false
        description: Tautulli API key. Required unless the server runs with CONFIG_SOURCE=config.
    responses:
      200:
        description: The rendered activity page.
        schema:
          $ref: '#/definitions/DisplayPage'
      400:
        description: The Tautulli URL or API key is missing.
      500:
        description: Tautulli could not be reached, answered with an error, or the page could not be rendered.
    """
    settings = _settings()
    tautulli_url, api_key = _resolve_connection(settings)
    if not tautulli_url or not api_key:
        log.warning("Received request with missing 'tautulli_url' or 'api_key' query parameters.")
        return _plain_error("Missing required query parameters: 'tautulli_url' and 'api_key'", 400)

    base_url = tautulli_client.normalize_base_url(tautulli_url)
    try:
        activity_data = tautulli_client.fetch_activity(base_url, api_key, timeout=settings['REQUEST_TIMEOUT'])
    except tautulli_client.TautulliError as e:
        log.error(f"Failed to fetch Tautulli activity: {e}")
        return _plain_error(e.public_message, 500)

    connection = {
        'base_url': base_url,
        'api_key': api_key,
        'poster_mode': settings['POSTER_MODE'],
        'embed_credentials': settings['CONFIG_SOURCE'] == 'query',
    }
    page = activity_manager.build_display_page(activity_data, connection)

    try:
        return renderer.render_page(page, settings['OUTPUT_FORMAT'], settings['MARKUP_LAYOUT'])
    except renderer.RenderError as e:
        log.error(f"Failed to render activity page: {e}")
        return _plain_error("Failed to render template", 500)


@relay_bp.route('/image')
def image_proxy():
    """
    Proxy Poster Image
    ---
    tags:
      - Images
    description: Fetches a single poster through Tautulli's pms_image_proxy and streams the bytes back unchanged.
    parameters:
      - name: img
        in: query
        type: string
        required: true
        description: The thumb reference taken from a poster_url, e.g. /library/metadata/1234/thumb/1700000000.
      - name: tautulli_url
        in: query
        type: string
        required: false
        description: Tautulli base URL. Required unless the server runs with CONFIG_SOURCE=config.
      - name: api_key
        in: query
        type: string
        required: false
        description: Tautulli API key. Required unless the server runs with CONFIG_SOURCE=config.
    produces:
      - image/jpeg
      - image/png
    responses:
      200:
        description: The image bytes with Tautulli's Content-Type.
      400:
        description: A required parameter is missing.
      500:
        description: The image could not be fetched from Tautulli.
    """
    settings = _settings()
    img = request.args.get('img')
    tautulli_url, api_key = _resolve_connection(settings)
    if not img or not tautulli_url or not api_key:
        log.warning("Received image request with missing 'img', 'tautulli_url' or 'api_key' query parameters.")
        return _plain_error("Missing required query parameters for image proxy", 400)

    try:
        upstream = tautulli_client.fetch_image(tautulli_url, api_key, img, timeout=settings['REQUEST_TIMEOUT'])
    except tautulli_client.TautulliError as e:
        log.error(f"Image proxy failed to connect to Tautulli: {e}")
        return _plain_error("Failed to fetch image from Tautulli", 500)

    if not upstream.ok:
        log.warning(f"Tautulli answered image request for '{img}' with HTTP {upstream.status_code}")

    def generate():
        try:
            for chunk in upstream.iter_content(chunk_size=IMAGE_CHUNK_SIZE):
                yield chunk
        except requests.RequestException as e:
            log.error(f"Image proxy lost the Tautulli stream for '{img}': {e}")
        finally:
            upstream.close()

    return Response(
        stream_with_context(generate()),
        status=upstream.status_code,
        headers=_passthrough_headers(upstream.headers),
    )


@relay_bp.route('/api/version')
def get_version():
    """
    Get Application Version
    ---
    description: Returns the application version.
    responses:
      200:
        description: The current version of the application.
        schema:
          type: object
          properties:
            version:
              type: string
              example: 'dev'
    """
    return jsonify({"version": _settings()['VERSION']})


def create_app(overrides=None):
    """
    Builds the relay app from config.yaml/environment settings, with
    `overrides` applied on top. Raises config_manager.ConfigError when the
    settings cannot serve requests.
    """
    settings = config_manager.load_settings()
    if overrides:
        settings.update(overrides)
    config_manager.validate_settings(settings)

    app = Flask(__name__, template_folder='.')
    app.config['RELAY_SETTINGS'] = settings

    template = dict(swagger_template)
    template['info'] = dict(swagger_template['info'], version=settings['VERSION'])
    Swagger(app, template=template)

    app.register_blueprint(relay_bp)

    log.info(
        f"Relay configured: credentials from {settings['CONFIG_SOURCE']}, "
        f"output {settings['OUTPUT_FORMAT']} ({settings['MARKUP_LAYOUT']}), posters {settings['POSTER_MODE']}."
    )
    return app


try:
    app = create_app()
except config_manager.ConfigError as e:
    log.critical(f"Invalid configuration, refusing to start: {e}")
    raise SystemExit(1)
