"""Network helpers: local addresses, free ports and HTTP requests."""

from __future__ import annotations

import json
import socket
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import psutil
import requests

from .process import Process, ProcessError, register_process_handler
from .share import _format_value

_JSON_HEADERS = {"Content-Type": "application/json;charset=utf8"}


@dataclass
class Response:
    """Outcome of an HTTP request; failures are reported in the same shape."""

    status: int
    body: str
    data: Any = None
    headers: dict[str, Any] = field(default_factory=dict)


def _failure(status: int, message: str, code: int = 500) -> Response:
    return Response(
        status=status,
        body=message,
        data={"code": code, "message": message},
        headers=dict(_JSON_HEADERS),
    )


def ip() -> dict[str, str]:
    """Map each network interface to its last IP address."""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        raise ProcessError(f"failed to read network interfaces {exc}", 500) from exc
    result: dict[str, str] = {}
    for name, addresses in interfaces.items():
        for address in addresses:
            if address.family in (socket.AF_INET, socket.AF_INET6):
                result[name] = address.address.split("%", 1)[0]
    return result


def free_port() -> int:
    """Return a TCP port that is free at the time of the call."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("", 0))
            return sock.getsockname()[1]
    except OSError as exc:
        raise ProcessError(f"failed to find a free port {exc}", 500) from exc


def request_get(
    url: str, params: Mapping[str, Any] | None = None, headers: Mapping[str, str] | None = None
) -> Response:
    return request_send("GET", url, params, None, headers)


def request_post(url: str, data: Any = None, headers: Mapping[str, str] | None = None) -> Response:
    return request_send("POST", url, {}, data, headers)


def _with_json_type(headers: Mapping[str, str] | None) -> dict[str, str]:
    merged = dict(headers or {})
    merged["content-type"] = "application/json;charset=utf8"
    return merged


def request_post_json(url: str, data: Any = None, headers: Mapping[str, str] | None = None) -> Response:
    return request_send("POST", url, {}, data, _with_json_type(headers))


def request_put(url: str, data: Any = None, headers: Mapping[str, str] | None = None) -> Response:
    return request_send("PUT", url, {}, data, headers)


def request_put_json(url: str, data: Any = None, headers: Mapping[str, str] | None = None) -> Response:
    return request_send("PUT", url, {}, data, _with_json_type(headers))


def request_send(
    method: str,
    url: str,
    params: Mapping[str, Any] | None = None,
    data: Any = None,
    headers: Mapping[str, str] | None = None,
) -> Response:
    """Send a request and describe the outcome as a Response; never raises.

    params are accepted but not added to the URL. The body is JSON when the
    "content-type" header is JSON, plain text otherwise. Certificates of
    https endpoints are not verified.
    """
    headers = dict(headers or {})
    body: bytes | None = None
    if data is not None:
        if headers.get("content-type", "").lower().startswith("application/json"):
            try:
                body = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode()
            except (TypeError, ValueError) as exc:
                return _failure(500, str(exc))
        else:
            body = _format_value(data).encode()

    try:
        prepared = requests.Request(method, url, data=body, headers=headers).prepare()
    except (requests.RequestException, ValueError) as exc:
        return _failure(500, str(exc))

    verify = not url.startswith("https://")
    with requests.Session() as session, warnings.catch_warnings():
        if not verify:
            warnings.simplefilter("ignore")
        try:
            resp = session.send(prepared, verify=verify)
        except requests.RequestException as exc:
            return _failure(0, str(exc))
        try:
            content = resp.content
        except requests.RequestException as exc:
            return _failure(500, str(exc), resp.status_code)

    parsed: Any = None
    if resp.headers.get("Content-Type", "").startswith("application/json"):
        try:
            parsed = json.loads(content)
        except ValueError as exc:
            return _failure(500, str(exc), resp.status_code)

    return Response(
        status=resp.status_code,
        body=content.decode("utf-8", errors="replace"),
        data=parsed,
        headers=dict(resp.headers),
    )


def _header_arg(process: Process, index: int) -> dict[str, str]:
    return {name: _format_value(value) for name, value in process.args_map(index).items()}


def _body_request(process: Process, sender: Any) -> Response:
    process.validate_arg_nums(1)
    url = process.args_string(0)
    data = process.args[1] if process.num_of_args() > 1 else None
    headers = _header_arg(process, 2) if process.num_of_args() > 2 else {}
    return sender(url, data, headers)


def process_ip(process: Process) -> dict[str, str]:
    """xiang.network.ip"""
    return ip()


def process_free_port(process: Process) -> int:
    """xiang.network.FreePort"""
    return free_port()


def process_get(process: Process) -> Response:
    """xiang.network.Get: url, [params], [headers]"""
    process.validate_arg_nums(1)
    url = process.args_string(0)
    params = process.args_map(1) if process.num_of_args() > 1 else {}
    headers = _header_arg(process, 2) if process.num_of_args() > 2 else {}
    return request_get(url, params, headers)


def process_post(process: Process) -> Response:
    """xiang.network.Post: url, [data], [headers]"""
    return _body_request(process, request_post)


def process_post_json(process: Process) -> Response:
    """xiang.network.PostJSON: url, [data], [headers]"""
    return _body_request(process, request_post_json)


def process_put(process: Process) -> Response:
    """xiang.network.Put: url, [data], [headers]"""
    return _body_request(process, request_put)


def process_put_json(process: Process) -> Response:
    """xiang.network.PutJSON: url, [data], [headers]"""
    return _body_request(process, request_put_json)


def process_send(process: Process) -> Response:
    """xiang.network.Send: method, url, [params], [data], [headers]"""
    process.validate_arg_nums(2)
    method = process.args_string(0)
    url = process.args_string(1)
    params = process.args_map(2) if process.num_of_args() > 2 else {}
    data = process.args[3] if process.num_of_args() > 3 else None
    headers = _header_arg(process, 4) if process.num_of_args() > 4 else {}
    return request_send(method, url, params, data, headers)


register_process_handler("xiang.network.ip", process_ip)
register_process_handler("xiang.network.FreePort", process_free_port)
register_process_handler("xiang.network.Get", process_get)
register_process_handler("xiang.network.Post", process_post)
register_process_handler("xiang.network.PostJSON", process_post_json)
register_process_handler("xiang.network.Put", process_put)
register_process_handler("xiang.network.PutJSON", process_put_json)
register_process_handler("xiang.network.Send", process_send)