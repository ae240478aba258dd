import logging
import os

# --- Gunicorn Configuration ---

# Bind to all network interfaces on port 8080, which is the port exposed by the container.
bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"

wsgi_app = 'app:app'

version = os.environ.get('VERSION', 'dev')

# Use gevent workers for asynchronous I/O
worker_class = 'gevent'

# Upstream calls time out after REQUEST_TIMEOUT (10s), keep the worker timeout above that.
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 30))
log_format = f'[%(asctime)s] [%(process)d] [%(levelname)s] [v{version}] %(message)s'


def on_starting(server):
    # Configure logging for the entire application
    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    formatter = logging.Formatter(log_format)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Refuse to start when the configuration cannot serve requests
    import config_manager
    try:
        config_manager.validate_settings(config_manager.load_settings())
    except config_manager.ConfigError as e:
        logging.getLogger(__name__).critical(f"Invalid configuration, refusing to start: {e}")
        raise SystemExit(1)
