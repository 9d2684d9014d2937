#!/usr/bin/env python3
import logging
import os
import signal
import socket
import socketserver
import sys
import threading
from typing import Callable, List, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, disable_created_metrics, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST, ThreadingWSGIServer
from wsgiref.simple_server import WSGIRequestHandler, make_server

from nginx_exporter import __git_commit__, __version__
from nginx_exporter.bootstrap import create_client_with_retries
from nginx_exporter.client import StatusSource, new_status_source, parse_unix_socket_address
from nginx_exporter.collector import NginxCollector
from nginx_exporter.config import ConfigError, ExporterConfig, load_config

logger = logging.getLogger("nginx_exporter")

LOG_FORMAT = "%(asctime)s [%(process)d] [%(threadName)s] [%(name)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LANDING_PAGE = """<html>
<head><title>NGINX Exporter</title></head>
<body>
<h1>NGINX Exporter</h1>
<p><a href='{path}'>Metrics</a></p>
</body>
</html>
"""


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logging.getLogger().setLevel(level.upper())


def user_agent() -> str:
    return f"NGINX-Prometheus-Exporter/v{__version__}"


def parse_listen_address(address: str) -> Tuple[str, int]:
    if ":" not in address:
        raise ValueError(f"listen address {address!r} must be host:port")
    host, port_s = address.rsplit(":", 1)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_s)
    except ValueError:
        raise ValueError(f"invalid port in listen address {address!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"invalid port in listen address {address!r}")
    return host, port


def build_registry(config: ExporterConfig, source: StatusSource) -> CollectorRegistry:
    registry = CollectorRegistry()

    build_info = Gauge(
        "nginxexporter_build_info",
        "Exporter build information",
        ["version", "gitCommit"],
        registry=registry,
    )
    build_info.labels(version=__version__, gitCommit=__git_commit__).set(1)

    namespace = "nginxplus" if config.nginx_plus else "nginx"
    registry.register(NginxCollector(source, namespace, config.const_labels))
    return registry


def _http_response(start_response, status: str, headers: List[Tuple[str, str]], body: bytes):
    start_response(status, headers)
    return [body]


def create_app(registry: CollectorRegistry, metrics_path: str = "/metrics") -> Callable:
    def app(environ, start_response):
        path = environ.get("PATH_INFO", "/")

        if path == metrics_path:
            try:
                output = generate_latest(registry)
            except Exception as e:
                logger.exception("error while generating metrics")
                return _http_response(
                    start_response,
                    "500 Internal Server Error",
                    [("Content-Type", "text/plain; charset=utf-8")],
                    f"error while generating metrics: {e}\n".encode("utf-8"),
                )
            return _http_response(
                start_response,
                "200 OK",
                [("Content-Type", CONTENT_TYPE_LATEST)],
                output,
            )

        if path == "/health":
            return _http_response(
                start_response,
                "200 OK",
                [("Content-Type", "text/plain; charset=utf-8")],
                b"ok\n",
            )

        if path == "/":
            return _http_response(
                start_response,
                "200 OK",
                [("Content-Type", "text/html; charset=utf-8")],
                LANDING_PAGE.format(path=metrics_path).encode("utf-8"),
            )

        return _http_response(
            start_response,
            "404 Not Found",
            [("Content-Type", "text/plain; charset=utf-8")],
            b"not found\n",
        )

    return app


class _ThreadingWSGIServerV6(ThreadingWSGIServer):
    address_family = socket.AF_INET6


class _UnixWSGIServer(ThreadingWSGIServer):
    address_family = socket.AF_UNIX
    allow_reuse_address = False

    def server_bind(self):
        socketserver.TCPServer.server_bind(self)
        self.server_name = "localhost"
        self.server_port = 0
        self.setup_environ()

    def get_request(self):
        conn, _ = self.socket.accept()
        return conn, ("unix", 0)

    def server_close(self):
        super().server_close()
        if os.path.exists(self.server_address):
            os.unlink(self.server_address)


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def make_http_server(config: ExporterConfig, registry: CollectorRegistry):
    app = create_app(registry, config.metrics_path)

    if config.listen_address.startswith("unix:"):
        path, _ = parse_unix_socket_address(config.listen_address)
        httpd = _UnixWSGIServer(path, _QuietHandler)
        httpd.set_app(app)
        return httpd

    host, port = parse_listen_address(config.listen_address)
    server_class = _ThreadingWSGIServerV6 if ":" in host else ThreadingWSGIServer
    return make_server(host, port, app, server_class=server_class, handler_class=_QuietHandler)


def serve(config: ExporterConfig, registry: CollectorRegistry) -> None:
    httpd = make_http_server(config, registry)

    stop = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info("signal received: %s, exiting", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    t = threading.Thread(target=httpd.serve_forever, name="http-server", daemon=True)
    t.start()
    logger.info("listening on %s", config.listen_address)
    logger.info("NGINX Prometheus Exporter has successfully started")
    try:
        stop.wait()
    finally:
        httpd.shutdown()
        httpd.server_close()


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as e:
        configure_logging()
        logger.error("invalid configuration: %s", e)
        return 2

    configure_logging(config.log_level)
    # counters are exposed without *_created series
    disable_created_metrics()
    logger.info("starting NGINX Prometheus Exporter version=%s commit=%s", __version__, __git_commit__)

    def get_client() -> StatusSource:
        source = new_status_source(
            config.scrape_uri,
            nginx_plus=config.nginx_plus,
            ssl_verify=config.ssl_verify,
            timeout=config.timeout,
            user_agent=user_agent(),
        )
        try:
            source.fetch()
        except Exception:
            source.close()
            raise
        return source

    flavor = "NGINX Plus" if config.nginx_plus else "NGINX"
    try:
        source = create_client_with_retries(get_client, config.nginx_retries, config.nginx_retry_interval)
    except Exception as e:
        logger.error("could not create %s client: %s", flavor, e)
        return 1

    try:
        registry = build_registry(config, source)
        serve(config, registry)
    except (OSError, ValueError) as e:
        logger.error("could not start the exporter: %s", e)
        return 1
    finally:
        source.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
