"""Named process handlers and the system command runner."""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable, Mapping
from typing import Any

from .share import _format_value, _to_int

Handler = Callable[["Process"], Any]

_handlers: dict[str, Handler] = {}


class ProcessError(Exception):
    """A process failed; code follows HTTP status conventions."""

    def __init__(self, message: str, code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


def register_process_handler(name: str, handler: Handler) -> None:
    """Register handler under name; lookups ignore case."""
    _handlers[name.lower()] = handler


class Process:
    """A call to a registered handler with positional arguments."""

    def __init__(self, name: str, *args: Any) -> None:
        self.name = name
        self.args = list(args)

    def _handler(self) -> Handler:
        try:
            return _handlers[self.name.lower()]
        except KeyError:
            raise ProcessError(f"process {self.name} not found", 404) from None

    def _arg(self, index: int) -> Any:
        if not 0 <= index < len(self.args):
            raise ProcessError(f"{self.name}: argument {index} is missing", 400)
        return self.args[index]

    def validate_arg_nums(self, count: int) -> None:
        if len(self.args) < count:
            raise ProcessError(
                f"{self.name}: expected at least {count} arguments, got {len(self.args)}", 400
            )

    def num_of_args(self) -> int:
        return len(self.args)

    def args_string(self, index: int) -> str:
        value = self._arg(index)
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode()
        raise ProcessError(f"{self.name}: argument {index} should be a string", 400)

    def args_int(self, index: int) -> int:
        try:
            return _to_int(self._arg(index))
        except (TypeError, ValueError) as exc:
            raise ProcessError(f"{self.name}: argument {index} should be an integer", 400) from exc

    def args_map(self, index: int) -> dict[str, Any]:
        value = self._arg(index)
        if value is None:
            return {}
        if isinstance(value, Mapping):
            return dict(value)
        raise ProcessError(f"{self.name}: argument {index} should be a map", 400)

    def exec(self) -> Any:
        """Run the handler, reporting every failure as ProcessError."""
        handler = self._handler()
        try:
            return handler(self)
        except ProcessError:
            raise
        except Exception as exc:
            raise ProcessError(str(exc), 500) from exc

    def run(self) -> Any:
        """Run the handler and let its exceptions propagate."""
        return self._handler()(self)


def _run_command(cmd: str, args: list[str]) -> str:
    path = shutil.which(cmd)
    if path is None:
        raise ProcessError(f"command {cmd} not found", 400)
    try:
        completed = subprocess.run([path, *args], capture_output=True, check=True)
    except (subprocess.CalledProcessError, OSError) as exc:
        raise ProcessError(f"command {cmd} error: {exc}", 500) from exc
    return completed.stdout.decode(errors="replace").rstrip("\n")


def process_exec(process: Process) -> str:
    """yao.system.Exec: run a command and return its output without trailing newlines."""
    process.validate_arg_nums(1)
    cmd = process.args_string(0)
    return _run_command(cmd, [_format_value(arg) for arg in process.args[1:]])


def system_exec(cmd: str, *args: Any) -> str:
    """Run a system command and return its standard output."""
    return _run_command(cmd, [_format_value(arg) for arg in args])


register_process_handler("yao.system.Exec", process_exec)