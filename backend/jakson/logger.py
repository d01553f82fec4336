"""
Jakson — Logging
==================

What:  Process-wide logging setup and the `(message, data)` loggers used by
       Application.log().
How:   Plain stdlib logging. setup_logging() configures the root logger once;
       create_logger() returns a callable bound to a named logger that renders
       structured data after the message.
Who:   setup_logging() is called by the embedding program (the generated
       app/main.py does it on startup). create_logger() backs Application.log.
"""

import logging
import pprint
import sys
from typing import Any, Callable, Dict, Optional

Logger = Callable[..., None]


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the entire process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s

    Replaces any existing root handlers (force=True), so call it once at
    startup and never from library code or tests.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # uvicorn logs every request at INFO; Action already logs start/end.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def create_logger(tag: str) -> Logger:
    """
    Create a `(message, data=None)` logging function for `tag`.

    Example:
        log = create_logger("app")
        log("request started", {"method": "GET", "path": "/users/1"})
        # -> app: request started {'method': 'GET', 'path': '/users/1'}

    An `error` entry in `data` is taken out of the rendered data; the line is
    then logged at ERROR level with the error's traceback, plus the response
    status and body when the error carries an HTTP response.
    """
    logger = logging.getLogger(tag)

    def log(message: str, data: Optional[Dict[str, Any]] = None) -> None:
        rest = dict(data or {})
        error = rest.pop("error", None)
        data_str = pprint.pformat(rest, compact=True, sort_dicts=False) if rest else ""
        line = f"{message} {data_str}".rstrip()

        if error is None:
            logger.info(line, extra={"data": rest})
            return

        exc_info = error if isinstance(error, BaseException) else None
        logger.error(line, exc_info=exc_info, extra={"data": rest})

        response = getattr(error, "response", None)
        if response is not None:
            logger.error("status: %s", getattr(response, "status_code", None))
            logger.error("data: %s", pprint.pformat(_response_body(response)))

    return log


def _response_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return getattr(response, "text", None)
    except AttributeError:
        return None
