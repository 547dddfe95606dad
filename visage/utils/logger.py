"""Global logging and error handling utilities"""
import logging
import os
import traceback
from typing import Callable, Optional, Union

# Debug mode - True when VISAGE_DEBUG is set
DEBUG_MODE = os.environ.get("VISAGE_DEBUG", "") not in ("", "0")

_notifier: Optional[Callable[[str, str], None]] = None

_logger = logging.getLogger(__name__)


def set_debug_mode(enabled: bool):
    """Switch between debug (raise immediately) and release (log, notify, raise)"""
    global DEBUG_MODE
    DEBUG_MODE = bool(enabled)


def set_notifier(callback: Optional[Callable[[str, str], None]]):
    """Set the callback used to surface errors to the host

    Args:
        callback: Called with (title, message), or None to disable
    """
    global _notifier
    _notifier = callback


def setup_logging(level: Union[int, str] = "INFO"):
    """Configure a root handler once.

    No-op if the host application already configured logging.
    """
    if isinstance(level, str):
        lvl = getattr(logging, level.upper(), logging.INFO)
    else:
        lvl = int(level)

    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _notify(title: str, message: str):
    if _notifier is None:
        return
    try:
        _notifier(title, message)
    except Exception:
        _logger.exception("Error notifier failed")


def report_error(e: Exception, user_message: str = None, title: str = "Error"):
    """Log and surface an exception without raising it

    Used for failures that must not roll back work that already
    succeeded, e.g. an effect that fails to start after composition.

    Args:
        e: The exception to report
        user_message: User-friendly message for the notifier (optional)
        title: Title passed to the notifier
    """
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__))
    _logger.error(f"{title}: {user_message or e}\n{tb}")
    _notify(title, user_message if user_message else str(e))


def loggerRaise(e: Exception, user_message: str = None, title: str = "Error"):
    """Handle exceptions with optional notification in release mode

    Args:
        e: The exception to handle
        user_message: User-friendly message to show (optional)
        title: Title for the notification

    In DEBUG_MODE:
        - Just raises the exception (shows full traceback)

    In RELEASE_MODE:
        - Logs the full traceback
        - Notifies the host with user message or exception string
        - Then raises the exception
    """
    if DEBUG_MODE:
        raise e

    report_error(e, user_message, title)
    raise e
