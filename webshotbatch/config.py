"""
Server connection settings and per-run options.

The server settings live in a YAML file shaped like:

    server:
      host: http://localhost
      port: 8080
      pingPath: ping
      actionPath: screenshot

Everything else comes from the command line and is bundled into RunOptions.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = os.getenv("WEBSHOTBATCH_CONFIG", "config.yaml")

IMAGE_FORMATS = ("jpeg", "png")


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int
    ping_path: str
    action_path: str

    def _url(self, path):
        return f"{self.host.rstrip('/')}:{self.port}/{path.lstrip('/')}"

    @property
    def ping_url(self):
        return self._url(self.ping_path)

    @property
    def action_url(self):
        return self._url(self.action_path)


def load_server_config(path=DEFAULT_CONFIG_PATH):
    """
    Read and validate the `server` section of a YAML config file.
    Raises ConfigError if the file is missing, unparseable, or incomplete.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"{path} not found or unreadable: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"can't parse {path}: {e}") from e

    server = data.get("server") if isinstance(data, dict) else None
    if not isinstance(server, dict):
        raise ConfigError(f"{path} has no 'server' section")

    values = {}
    for key, field, kind in (
        ("host", "host", str),
        ("port", "port", int),
        ("pingPath", "ping_path", str),
        ("actionPath", "action_path", str),
    ):
        value = server.get(key)
        # bool is an int subclass; `port: yes` is not a port
        if value is None or not isinstance(value, kind) or isinstance(value, bool):
            raise ConfigError(f"{path}: server.{key} must be a {kind.__name__}, got {value!r}")
        values[field] = value

    conf = ServerConfig(**values)
    logging.info(f"Loaded server config from {path}: {conf}")
    return conf


@dataclass(frozen=True)
class RunOptions:
    """Everything one invocation needs to know; built once, never mutated."""

    input_file: str
    output_dir: str
    width: int = 1024
    height: int = 768
    delay: int = 0
    postfix: str = ""
    use_query_param: str = ""
    image_format: str = "jpeg"
    concurrency: int = 2
    http_timeout: Optional[float] = 60.0
    fail_fast: bool = False
    verify_ssl: bool = True

    def __post_init__(self):
        if not self.input_file:
            raise ValueError("input file path is required")
        if not self.output_dir:
            raise ValueError("output directory is required")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"width and height must be positive, got {self.width}x{self.height}")
        if self.delay < 0:
            raise ValueError(f"delay must be non-negative, got {self.delay}")
        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {self.concurrency}")
        if self.image_format not in IMAGE_FORMATS:
            raise ValueError(f"image format must be one of {', '.join(IMAGE_FORMATS)}, got {self.image_format!r}")
        if self.http_timeout is not None and self.http_timeout <= 0:
            raise ValueError(f"http timeout must be positive, got {self.http_timeout}")

    @property
    def request_timeout(self):
        # read budget includes the server-side render delay
        if self.http_timeout is None:
            return None
        return self.delay + self.http_timeout

    @classmethod
    def from_args(cls, args):
        return cls(
            input_file=args.file,
            output_dir=args.output_dir,
            width=args.width,
            height=args.height,
            delay=args.delay,
            postfix=args.postfix,
            use_query_param=args.use_query_param,
            image_format=args.image_format,
            concurrency=args.concurrency,
            http_timeout=args.http_timeout,
            fail_fast=args.fail_fast,
            verify_ssl=args.verify_ssl,
        )
