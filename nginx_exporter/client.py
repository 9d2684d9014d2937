import json
import re
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool

from nginx_exporter.errors import NetworkError, ParseError, ResponseError

DEFAULT_PLUS_API_VERSION = 8

_ACTIVE_RE = re.compile(r"^Active connections:\s+(\d+)\s*$")
_SERVER_RE = re.compile(r"^\s*(\d+)\s+(\d+)\s+(\d+)\s*$")
_RWW_RE = re.compile(r"^Reading:\s+(\d+)\s+Writing:\s+(\d+)\s+Waiting:\s+(\d+)\s*$")


@dataclass
class StubConnections:
    active: int = 0
    accepted: int = 0
    handled: int = 0
    reading: int = 0
    writing: int = 0
    waiting: int = 0


@dataclass
class StubStats:
    connections: StubConnections = field(default_factory=StubConnections)
    requests: int = 0


class StatusSource(ABC):
    """Interface for everything the collector can scrape."""

    @abstractmethod
    def fetch(self) -> StubStats:
        ...

    def close(self) -> None:
        pass


def parse_stub_stats(body: str) -> StubStats:
    # Active connections: 291
    # server accepts handled requests
    #  16630948 16630948 31070465
    # Reading: 6 Writing: 179 Waiting: 106
    lines = [ln for ln in body.splitlines() if ln.strip()]
    if len(lines) != 4:
        raise ParseError(f"failed to parse response body: expected 4 lines, got {len(lines)}")

    m = _ACTIVE_RE.match(lines[0].strip())
    if not m:
        raise ParseError("failed to parse response body: invalid 'Active' line")
    active = int(m.group(1))

    if lines[1].split() != ["server", "accepts", "handled", "requests"]:
        raise ParseError("failed to parse response body: invalid header line for accepts/handled/requests")

    m = _SERVER_RE.match(lines[2])
    if not m:
        raise ParseError("failed to parse response body: invalid accepts/handled/requests values")
    accepted, handled, total = (int(g) for g in m.groups())

    m = _RWW_RE.match(lines[3].strip())
    if not m:
        raise ParseError("failed to parse response body: invalid Reading/Writing/Waiting line")
    reading, writing, waiting = (int(g) for g in m.groups())

    return StubStats(
        connections=StubConnections(
            active=active,
            accepted=accepted,
            handled=handled,
            reading=reading,
            writing=writing,
            waiting=waiting,
        ),
        requests=total,
    )


class NginxClient(StatusSource):
    """Reads the stub_status page of NGINX open source."""

    def __init__(self, session: requests.Session, api_endpoint: str, timeout: Optional[float] = None):
        self.api_endpoint = api_endpoint
        self.session = session
        self.timeout = timeout

    def _get(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise NetworkError(f"failed to get {url}: {e}") from e

        with resp:
            if resp.status_code != 200:
                raise ResponseError(f"expected 200 response, got {resp.status_code}")
            try:
                return resp.content
            except requests.RequestException as e:
                raise ParseError(f"failed to read the response body: {e}") from e

    def fetch(self) -> StubStats:
        body = self._get(self.api_endpoint)
        return parse_stub_stats(body.decode("utf-8", errors="replace"))

    def close(self) -> None:
        self.session.close()


def _require_int(obj: Dict[str, Any], key: str) -> int:
    if not isinstance(obj, dict) or key not in obj:
        raise ParseError(f"failed to parse response body: missing key {key!r}")
    try:
        return int(obj[key])
    except (TypeError, ValueError) as e:
        raise ParseError(f"failed to parse response body: bad value for {key!r}") from e


class NginxPlusClient(NginxClient):
    """
    Reads the NGINX Plus REST API and maps it onto the stub_status shape.

    The API has no reading/writing split: non-idle connections are reported
    as writing and reading stays 0.
    """

    def __init__(
        self,
        session: requests.Session,
        api_endpoint: str,
        timeout: Optional[float] = None,
        version: int = DEFAULT_PLUS_API_VERSION,
    ):
        super().__init__(session, api_endpoint.rstrip("/"), timeout)
        self.version = version

    def _get_json(self, path: str) -> Dict[str, Any]:
        body = self._get(f"{self.api_endpoint}/{self.version}/{path}")
        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(f"failed to parse response body: {e}") from e

    def fetch(self) -> StubStats:
        conns = self._get_json("connections")
        reqs = self._get_json("http/requests")

        accepted = _require_int(conns, "accepted")
        dropped = _require_int(conns, "dropped")
        active = _require_int(conns, "active")
        idle = _require_int(conns, "idle")

        return StubStats(
            connections=StubConnections(
                active=active + idle,
                accepted=accepted,
                handled=accepted - dropped,
                reading=0,
                writing=active,
                waiting=idle,
            ),
            requests=_require_int(reqs, "total"),
        )


class _UnixHTTPConnection(HTTPConnection):
    def __init__(self, *args, socket_path: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.socket_path = socket_path

    def _new_conn(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        if isinstance(self.timeout, (int, float)):
            sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        return sock


class _UnixHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = _UnixHTTPConnection

    def __init__(self, socket_path: str):
        super().__init__("localhost", socket_path=socket_path)


class UnixSocketAdapter(HTTPAdapter):
    """Sends every request mounted on it to one unix domain socket."""

    def __init__(self, socket_path: str, **kwargs):
        self.socket_path = socket_path
        self._pool = _UnixHTTPConnectionPool(socket_path)
        super().__init__(**kwargs)

    def get_connection_with_tls_context(self, request, verify, proxies=None, cert=None):
        return self._pool

    def get_connection(self, url, proxies=None):
        return self._pool

    def close(self):
        self._pool.close()
        super().close()


def parse_unix_socket_address(address: str) -> Tuple[str, str]:
    """unix:/path/to.sock[:/request/path] -> (socket path, request path)"""
    parts = address.split(":")
    if len(parts) > 3 or len(parts) < 2 or not parts[1]:
        raise ValueError(f"address for unix domain socket has wrong format: {address!r}")
    request_path = parts[2] if len(parts) == 3 else ""
    return parts[1], request_path


def new_session(ssl_verify: bool = True, user_agent: str = "") -> requests.Session:
    s = requests.Session()
    s.verify = ssl_verify
    if not ssl_verify:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    if user_agent:
        s.headers["User-Agent"] = user_agent
    return s


def resolve_scrape_uri(session: requests.Session, scrape_uri: str) -> str:
    """Mount a unix socket adapter when needed and return the URL to request."""
    if not scrape_uri.startswith("unix:"):
        return scrape_uri
    socket_path, request_path = parse_unix_socket_address(scrape_uri)
    session.mount("http://unix", UnixSocketAdapter(socket_path))
    return "http://unix" + request_path


def new_status_source(
    scrape_uri: str,
    nginx_plus: bool = False,
    ssl_verify: bool = True,
    timeout: Optional[float] = None,
    user_agent: str = "",
) -> StatusSource:
    session = new_session(ssl_verify=ssl_verify, user_agent=user_agent)
    url = resolve_scrape_uri(session, scrape_uri)
    if nginx_plus:
        return NginxPlusClient(session, url, timeout=timeout)
    return NginxClient(session, url, timeout=timeout)
