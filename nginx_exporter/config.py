import argparse
import math
import os
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional

import yaml

from nginx_exporter.metrics import merge_labels, parse_const_labels


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ExporterConfig:
    listen_address: str = ":9113"
    metrics_path: str = "/metrics"
    nginx_plus: bool = False
    scrape_uri: str = "http://127.0.0.1:8080/stub_status"
    ssl_verify: bool = True
    timeout: float = 5.0
    nginx_retries: int = 0
    nginx_retry_interval: float = 5.0
    const_labels: Dict[str, str] = field(default_factory=dict)
    log_level: str = "info"


# field -> environment variable
ENV_VARS = {
    "listen_address": "LISTEN_ADDRESS",
    "metrics_path": "TELEMETRY_PATH",
    "nginx_plus": "NGINX_PLUS",
    "scrape_uri": "SCRAPE_URI",
    "ssl_verify": "SSL_VERIFY",
    "timeout": "TIMEOUT",
    "nginx_retries": "NGINX_RETRIES",
    "nginx_retry_interval": "NGINX_RETRY_INTERVAL",
    "const_labels": "CONST_LABELS",
    "log_level": "LOG_LEVEL",
}

CONFIG_FILE_ENV = "CONFIG_FILE"

LOG_LEVELS = ("debug", "info", "warning", "error")

COUNTER_NAMES_NOTE = (
    "Counter samples carry a _total suffix: accepted and handled connections are exposed as "
    "nginx_connections_accepted_total and nginx_connections_handled_total "
    "(nginxplus_ prefix with --nginx.plus)."
)

_TRUE = ("1", "t", "true", "yes", "y", "on")
_FALSE = ("0", "f", "false", "no", "n", "off")

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ConfigError(f"invalid boolean {value!r}")


def parse_uint(value: Any) -> int:
    try:
        i = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"invalid unsigned integer {value!r}") from None
    if i < 0:
        raise ConfigError(f"invalid unsigned integer {value!r}")
    return i


def parse_duration(value: Any) -> float:
    """
    Parse a positive duration into seconds.

    Accepts plain numbers (seconds) and Go style strings such as "500ms",
    "5s" or "1m30s".
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        s = str(value).strip()
        if s.startswith("-"):
            raise ConfigError(f"negative duration {s} is not valid")
        try:
            seconds = float(s)
        except ValueError:
            pos = 0
            seconds = 0.0
            for m in _DURATION_PART_RE.finditer(s):
                if m.start() != pos:
                    break
                seconds += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
                pos = m.end()
            if pos != len(s) or not s:
                raise ConfigError(f"invalid duration {value!r}") from None
    if not math.isfinite(seconds):
        raise ConfigError(f"invalid duration {value!r}")
    if seconds < 0:
        raise ConfigError(f"negative duration {value} is not valid")
    return seconds


def _parse_labels(value: Any) -> Dict[str, str]:
    try:
        if isinstance(value, Mapping):
            return parse_const_labels(f"{k}={v}" for k, v in value.items())
        if isinstance(value, (list, tuple)):
            return parse_const_labels(str(v) for v in value)
        return parse_const_labels([str(value)])
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _parse_log_level(value: Any) -> str:
    s = str(value).strip().lower()
    if s not in LOG_LEVELS:
        raise ConfigError(f"invalid log level {value!r}, expected one of {', '.join(LOG_LEVELS)}")
    return s


_PARSERS = {
    "listen_address": str,
    "metrics_path": str,
    "nginx_plus": parse_bool,
    "scrape_uri": str,
    "ssl_verify": parse_bool,
    "timeout": parse_duration,
    "nginx_retries": parse_uint,
    "nginx_retry_interval": parse_duration,
    "const_labels": _parse_labels,
    "log_level": _parse_log_level,
}


def _convert(name: str, value: Any, origin: str) -> Any:
    try:
        return _PARSERS[name](value)
    except ConfigError as e:
        raise ConfigError(f"{origin}: {e}") from e


def load_config_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in config file {path}: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    known = {f.name for f in fields(ExporterConfig)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise ConfigError(f"unknown keys in config file {path}: {', '.join(unknown)}")

    return {k: _convert(k, v, f"config file {path} key {k}") for k, v in cfg.items()}


def build_parser() -> argparse.ArgumentParser:
    # every default is None so only flags given on the command line override
    p = argparse.ArgumentParser(
        prog="nginx-prometheus-exporter",
        description="Prometheus exporter for NGINX and NGINX Plus.",
        epilog=COUNTER_NAMES_NOTE,
    )
    p.add_argument("--config", dest="config", default=None,
                   help=f"Path to a YAML config file. Can also be set with {CONFIG_FILE_ENV}.")
    p.add_argument("--web.listen-address", dest="listen_address", default=None,
                   help="An address or unix domain socket path (unix:/path.sock) to listen on for web "
                        "interface and telemetry (LISTEN_ADDRESS).")
    p.add_argument("--web.telemetry-path", dest="metrics_path", default=None,
                   help="A path under which to expose metrics (TELEMETRY_PATH).")
    p.add_argument("--nginx.plus", dest="nginx_plus", nargs="?", const="true", default=None,
                   help="Start the exporter for NGINX Plus (NGINX_PLUS).")
    p.add_argument("--nginx.scrape-uri", dest="scrape_uri", default=None,
                   help="A URI or unix domain socket path for scraping NGINX or NGINX Plus metrics. "
                        "For NGINX, the stub_status page must be available through the URI. "
                        "For NGINX Plus, the API (SCRAPE_URI).")
    p.add_argument("--nginx.ssl-verify", dest="ssl_verify", nargs="?", const="true", default=None,
                   help="Perform SSL certificate verification (SSL_VERIFY).")
    p.add_argument("--nginx.timeout", dest="timeout", default=None,
                   help="A timeout for scraping metrics from NGINX or NGINX Plus (TIMEOUT).")
    p.add_argument("--nginx.retries", dest="nginx_retries", default=None,
                   help="A number of retries the exporter will make on start to connect to NGINX "
                        "before exiting with an error (NGINX_RETRIES).")
    p.add_argument("--nginx.retry-interval", dest="nginx_retry_interval", default=None,
                   help="An interval between retries to connect to NGINX on start (NGINX_RETRY_INTERVAL).")
    p.add_argument("--prometheus.const-label", dest="const_labels", action="append", default=None,
                   help="Label that will be used in every metric, key=value. Repeatable (CONST_LABELS).")
    p.add_argument("--log.level", dest="log_level", default=None,
                   help=f"Only log messages with the given severity or above: {', '.join(LOG_LEVELS)} (LOG_LEVEL).")
    return p


def load_config(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """
    Build the exporter configuration.

    Precedence, lowest first: defaults, YAML config file, environment
    variables, command-line flags. Constant labels are merged across layers
    instead of replaced.
    """
    env = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)

    cfg = ExporterConfig()
    labels: Dict[str, str] = {}

    path = args.config or env.get(CONFIG_FILE_ENV)
    if path:
        from_file = load_config_file(path)
        labels = merge_labels(labels, from_file.pop("const_labels", {}))
        cfg = replace(cfg, **from_file)

    from_env: Dict[str, Any] = {}
    for name, var in ENV_VARS.items():
        if var in env:
            from_env[name] = _convert(name, env[var], f"environment variable {var}")
    labels = merge_labels(labels, from_env.pop("const_labels", {}))
    cfg = replace(cfg, **from_env)

    from_flags: Dict[str, Any] = {}
    for name in ENV_VARS:
        value = getattr(args, name)
        if value is not None:
            from_flags[name] = _convert(name, value, f"flag for {name}")
    labels = merge_labels(labels, from_flags.pop("const_labels", {}))
    cfg = replace(cfg, **from_flags)

    return replace(cfg, const_labels=labels)
