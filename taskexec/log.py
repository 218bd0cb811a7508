"""
Log sink used by the executor.

The executor never formats or stores log records itself: it reports events
to a sink exposing ``info``, ``warning``, ``error``, ``debug`` and
``system``, each taking a label and a description. ``EngineLog`` is the
default sink and forwards to the standard ``logging`` module.
"""

import logging
from typing import Any, Optional, Protocol

SYSTEM = 25
logging.addLevelName(SYSTEM, "SYSTEM")

LABEL = "TASK-EXECUTOR"


class LogSink(Protocol):
    def info(self, label: str, description: str, body: Any = None) -> None: ...

    def warning(self, label: str, description: str, body: Any = None) -> None: ...

    def error(self, label: str, description: str, body: Any = None) -> None: ...

    def debug(self, label: str, description: str, body: Any = None) -> None: ...

    def system(self, label: str, description: str, body: Any = None) -> None: ...


class EngineLog:
    """
    Forwards sink calls to a stdlib logger.

    Messages are rendered as ``[LABEL] description``. When ``body`` is an
    exception its traceback is attached; other bodies are appended to the
    message.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("taskexec")

    def _log(self, level: int, label: str, description: str, body: Any = None):
        message = f"[{label}] {description}"
        exc_info = None
        if isinstance(body, BaseException):
            exc_info = (type(body), body, body.__traceback__)
        elif body is not None:
            message = f"{message}: {body}"
        self.logger.log(level, message, exc_info=exc_info)

    def info(self, label: str, description: str, body: Any = None):
        self._log(logging.INFO, label, description, body)

    def warning(self, label: str, description: str, body: Any = None):
        self._log(logging.WARNING, label, description, body)

    def error(self, label: str, description: str, body: Any = None):
        self._log(logging.ERROR, label, description, body)

    def debug(self, label: str, description: str, body: Any = None):
        self._log(logging.DEBUG, label, description, body)

    def system(self, label: str, description: str, body: Any = None):
        self._log(SYSTEM, label, description, body)
