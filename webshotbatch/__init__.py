"""Batch screenshot client for a remote rendering server."""

from .config import RunOptions, ServerConfig, load_server_config
from .dispatcher import BoundedDispatcher, DispatchReport
from .errors import ConfigError, InputFileError, ServerUnavailableError, WebShotBatchError
from .fetcher import FetchOutcome, check_server_available, fetch_screenshot
from .naming import resolve_filename

__version__ = "0.1.0"
