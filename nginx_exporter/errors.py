from enum import Enum
from typing import Tuple


class StatusError(Exception):
    pass


class NetworkError(StatusError):
    """NGINX could not be reached."""


class ResponseError(StatusError):
    """NGINX answered with an unexpected status code."""


class ParseError(StatusError):
    """NGINX answered but the payload is not a valid status page."""


class ErrorType(str, Enum):
    NETWORK = "network"
    HTTP = "http"
    PARSE = "parse"


_NETWORK_PATTERNS: Tuple[str, ...] = ("failed to get", "connection", "timeout", "refused")
_HTTP_PATTERNS: Tuple[str, ...] = ("expected 200 response",)


def is_network_error(message: str) -> bool:
    return any(p in message for p in _NETWORK_PATTERNS)


def is_http_error(message: str) -> bool:
    return any(p in message for p in _HTTP_PATTERNS)


def classify_error(message: str) -> ErrorType:
    # first match wins: network, then http, else parse
    if is_network_error(message):
        return ErrorType.NETWORK
    if is_http_error(message):
        return ErrorType.HTTP
    return ErrorType.PARSE
