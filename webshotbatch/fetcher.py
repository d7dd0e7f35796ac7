"""
HTTP side of webshotbatch: the pre-flight health check and the per-URL
screenshot request against the rendering server.
"""

import logging
import os
import time
from dataclasses import dataclass, replace
from typing import Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ServerUnavailableError
from .naming import resolve_filename

CHUNK_SIZE = 64 * 1024

SAVED = "saved"
SKIPPED = "skipped"
FAILED = "failed"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class FetchOutcome:
    """What happened to a single work item."""

    url: str
    status: str
    file_name: str = ""
    path: str = ""
    status_code: Optional[int] = None
    error: str = ""
    duration: float = 0.0
    bytes_written: int = 0

    @property
    def ok(self):
        return self.status == SAVED


def create_requests_session(pool_size=10, verify_ssl=True):
    """Create a requests session sized for `pool_size` concurrent calls, without retries."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=Retry(total=0, read=False),
    )
    session.mount('http://', adapter)
    session.mount('https://', adapter)

    session.verify = verify_ssl
    if not verify_ssl:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    return session


def check_server_available(server, session=None, timeout=None):
    """
    Send one HEAD request to the server's ping endpoint.
    Only connection-level failures count; the status code is not inspected.
    """
    ping_url = server.ping_url
    try:
        if session is None:
            requests.head(ping_url, timeout=timeout)
        else:
            session.head(ping_url, timeout=timeout)
    except requests.RequestException as e:
        raise ServerUnavailableError(f"server {server.host} is not available: {e}") from e

    logging.info(f"Screenshot server {server.host} is available")


def build_query(options, url, file_name):
    return [
        ("TimeoutSeconds", str(options.delay)),
        ("FileName", file_name),
        ("Url", url),
        ("Width", str(options.width)),
        ("Height", str(options.height)),
    ]


def _write_body(response, path):
    written = 0
    f = open(path, "wb")
    try:
        with f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    f.write(chunk)
                    written += len(chunk)
    except (OSError, requests.RequestException):
        # Only a file this call opened is removed
        try:
            os.remove(path)
        except OSError:
            pass
        raise
    return written


def _is_inside(directory, path):
    directory = os.path.realpath(directory)
    return os.path.commonpath([directory, os.path.realpath(path)]) == directory


def _request_and_save(session, action_url, url, options, file_name, path):
    try:
        response = session.get(
            action_url,
            params=build_query(options, url, file_name),
            timeout=options.request_timeout,
            stream=True,
        )
    except requests.RequestException as e:
        logging.error(f"Request for {url} failed: {e}")
        return FetchOutcome(url, FAILED, file_name=file_name, error=str(e))

    with response:
        if response.status_code > 299:
            logging.warning(f"Server returned {response.status_code} for {url}, skipping {file_name}")
            return FetchOutcome(url, SKIPPED, file_name=file_name, status_code=response.status_code)

        try:
            written = _write_body(response, path)
        except (OSError, requests.RequestException) as e:
            logging.error(f"Could not save {path} for {url}: {e}")
            return FetchOutcome(url, FAILED, file_name=file_name, status_code=response.status_code,
                                error=str(e))

    return FetchOutcome(url, SAVED, file_name=file_name, path=path, status_code=response.status_code,
                        bytes_written=written)


def fetch_screenshot(action_url, url, options, session=None):
    """
    Ask the rendering server for a screenshot of `url` and store the body.

    Returns a FetchOutcome:
      - saved: status <= 299, body written to output_dir/file_name
      - skipped: status > 299, nothing written
      - failed: network error, the output file could not be written, or
        the file name would land outside output_dir
    Never raises for per-item problems.
    """
    start = time.monotonic()
    logging.info(f"Processing {url}")

    file_name = resolve_filename(url, options.use_query_param, options.postfix, options.image_format)
    path = os.path.join(options.output_dir, file_name)

    if not _is_inside(options.output_dir, path):
        logging.error(f"Refusing to write {file_name} for {url}: outside {options.output_dir}")
        outcome = FetchOutcome(url, FAILED, file_name=file_name,
                               error=f"{file_name} resolves outside the output directory")
    else:
        own_session = session is None
        if own_session:
            session = create_requests_session(pool_size=1, verify_ssl=options.verify_ssl)
        try:
            outcome = _request_and_save(session, action_url, url, options, file_name, path)
        finally:
            if own_session:
                session.close()

    duration = time.monotonic() - start
    logging.info(f"{outcome.status.capitalize()} {file_name}. Completed in {duration:.2f}s "
                 f"of which {options.delay} seconds is a delay")
    return replace(outcome, duration=duration)
