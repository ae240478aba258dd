import os
import yaml
import logging
import threading

log = logging.getLogger(__name__)

CONFIG_PATH = os.environ.get('CONFIG_PATH', '/app/config')
CONFIG_FILE = os.path.join(CONFIG_PATH, 'config.yaml')

CONFIG_SOURCES = ('query', 'config')
OUTPUT_FORMATS = ('markup', 'json')
POSTER_MODES = ('proxy', 'direct')
MARKUP_LAYOUTS = ('full', 'half_horizontal', 'half_vertical', 'quadrant')

_config_from_file = None
_config_lock = threading.Lock()


class ConfigError(Exception):
    """Raised when the startup configuration cannot serve requests."""

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def _create_default_config():
    """
    Creates a default config.yaml file.
    It will pre-populate with values from environment variables if they exist.
    """
    default_config = {
        'CONFIG_SOURCE': os.environ.get('CONFIG_SOURCE', 'query'),
        'TAUTULLI_URL': os.environ.get('TAUTULLI_URL', ''),
        'TAUTULLI_API_KEY': os.environ.get('TAUTULLI_API_KEY', ''),
        'OUTPUT_FORMAT': os.environ.get('OUTPUT_FORMAT', 'markup'),
        'POSTER_MODE': os.environ.get('POSTER_MODE', 'proxy'),
        'MARKUP_LAYOUT': os.environ.get('MARKUP_LAYOUT', 'full'),
        'REQUEST_TIMEOUT': os.environ.get('REQUEST_TIMEOUT', 10),
    }

    commented_config = f"""
# --- Now Playing Relay Configuration --- #
# Values set here will override environment variables.
# If a value is missing or empty in this file, the application will
# fall back to using environment variables (e.g., from your .env file).

# Where the Tautulli connection comes from:
#   query  - every request passes ?tautulli_url=...&api_key=...
#   config - the TAUTULLI_URL / TAUTULLI_API_KEY values below are used
CONFIG_SOURCE: '{default_config['CONFIG_SOURCE']}'

# Tautulli (required when CONFIG_SOURCE is 'config')
TAUTULLI_URL: '{default_config['TAUTULLI_URL']}'
TAUTULLI_API_KEY: '{default_config['TAUTULLI_API_KEY']}'

# --- Output --- #
# 'markup' renders the dashboard template, 'json' returns the raw display data.
OUTPUT_FORMAT: '{default_config['OUTPUT_FORMAT']}'
# 'proxy' serves posters through this relay's /image route,
# 'direct' points at Tautulli's image proxy.
POSTER_MODE: '{default_config['POSTER_MODE']}'
# One of: full, half_horizontal, half_vertical, quadrant
MARKUP_LAYOUT: '{default_config['MARKUP_LAYOUT']}'

# --- Advanced settings --- #
# How long (in seconds) to wait for Tautulli responses.
REQUEST_TIMEOUT: {default_config['REQUEST_TIMEOUT']}
"""
    try:
        with open(CONFIG_FILE, 'w') as f:
            f.write(commented_config)
        log.info(f"Created default config file at {CONFIG_FILE}")
    except OSError as e:
        log.error(f"Could not create default config file: {e}")


def _load_config_from_file():
    """Loads config from yaml file into a dictionary."""
    global _config_from_file
    if not os.path.exists(CONFIG_PATH):
        log.warning(f"Config directory not found at {CONFIG_PATH}. This is expected if you are not mounting a config volume.")
        _config_from_file = {}
        return

    if not os.path.exists(CONFIG_FILE):
        log.info(f"Config file not found at {CONFIG_FILE}. Creating a default one.")
        _create_default_config()

    try:
        with open(CONFIG_FILE, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            log.error(f"config.yaml must contain a mapping, got {type(loaded).__name__}. Will rely on environment variables.")
            loaded = {}
        _config_from_file = loaded
        log.info("Successfully loaded config.yaml.")
    except (OSError, yaml.YAMLError) as e:
        log.error(f"Error loading config.yaml, will rely on environment variables. Error: {e}")
        _config_from_file = {}


def reload_config():
    """Drops the cached config.yaml so the next lookup reads it again."""
    global _config_from_file
    with _config_lock:
        _config_from_file = None


def get_config(key, default=None, type_cast=None):
    """
    Gets a config value with a fallback mechanism.
    Priority:
    1. Value from config.yaml (if not empty/null)
    2. Value from environment variable
    3. Default value provided
    """
    with _config_lock:
        if _config_from_file is None:
            _load_config_from_file()
        file_config = _config_from_file

    value = file_config.get(key)

    # Blank entries in the yaml fall through to the environment
    if value is None or value == '':
        value = os.environ.get(key)
        if value is None or value == '':
            value = default

    if type_cast and value is not None:
        try:
            if type_cast == bool:
                return str(value).lower() in ['true', '1', 't', 'y', 'yes']
            return type_cast(value)
        except (ValueError, TypeError):
            log.warning(f"Could not cast config value for '{key}' to {type_cast}. Using default: {default}")
            return default

    return value


def load_settings():
    """Resolves every setting the relay reads into a plain dict."""
    return {
        'CONFIG_SOURCE': str(get_config('CONFIG_SOURCE', 'query')).lower(),
        'TAUTULLI_URL': get_config('TAUTULLI_URL', ''),
        'TAUTULLI_API_KEY': get_config('TAUTULLI_API_KEY', ''),
        'OUTPUT_FORMAT': str(get_config('OUTPUT_FORMAT', 'markup')).lower(),
        'POSTER_MODE': str(get_config('POSTER_MODE', 'proxy')).lower(),
        'MARKUP_LAYOUT': str(get_config('MARKUP_LAYOUT', 'full')).lower(),
        'REQUEST_TIMEOUT': get_config('REQUEST_TIMEOUT', 10, type_cast=float),
        'VERSION': get_config('VERSION', 'dev'),
    }


def validate_settings(settings):
    """
    Checks resolved settings and raises ConfigError listing every problem.
    Credentials are only mandatory when they come from configuration.
    """
    problems = []
    choices = (
        ('CONFIG_SOURCE', CONFIG_SOURCES),
        ('OUTPUT_FORMAT', OUTPUT_FORMATS),
        ('POSTER_MODE', POSTER_MODES),
        ('MARKUP_LAYOUT', MARKUP_LAYOUTS),
    )
    for key, allowed in choices:
        if settings.get(key) not in allowed:
            problems.append(f"{key} must be one of {', '.join(allowed)} (got '{settings.get(key)}')")

    if settings.get('CONFIG_SOURCE') == 'config':
        for key in ('TAUTULLI_URL', 'TAUTULLI_API_KEY'):
            if not settings.get(key):
                problems.append(f"{key} is required when CONFIG_SOURCE is 'config'")

    timeout = settings.get('REQUEST_TIMEOUT')
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        problems.append(f"REQUEST_TIMEOUT must be a positive number (got '{timeout}')")

    if problems:
        raise ConfigError(problems)
    return settings
