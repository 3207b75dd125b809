import logging
import os
import sys
from .config import Config


LOGGER_NAME = "moltpulse.autonomy"

_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_CYAN = "\033[36m"
_MAGENTA = "\033[35m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_COLORS = {
    "DEBUG": _DIM,
    "INFO": _GREEN,
    "WARNING": _YELLOW,
    "ERROR": _RED,
    "CRITICAL": _BOLD + _RED,
}
_FORMAT = "%(asctime)sZ %(levelname)s %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def _stream_supports_color() -> bool:
    if os.getenv("NO_COLOR"):
        return False
    force = os.getenv("FORCE_COLOR", "").strip().lower()
    if force in {"1", "true", "yes"}:
        return True
    return bool(sys.stderr.isatty())


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        level_name = record.levelname.upper()
        color = _COLORS.get(level_name, "")
        if not color:
            return message

        # Highlight heartbeat phases so operators can scan the console quickly.
        if "Heartbeat started" in message or "Heartbeat complete" in message:
            painted = f"{_BOLD}{_CYAN}[HEARTBEAT] {message}{_RESET}"
        elif "Challenge detected" in message or "Challenge executed" in message:
            painted = f"{_BOLD}{_MAGENTA}[CHALLENGE] {message}{_RESET}"
        elif "suspended" in message.lower() and record.levelno >= logging.WARNING:
            painted = f"{_BOLD}{_RED}[SUSPENDED] {message}{_RESET}"
        elif "LLM request" in message or "LLM response" in message:
            painted = f"{_BOLD}{_CYAN}{message}{_RESET}"
        elif "ACTION SUCCESS" in message:
            painted = f"{_BOLD}{_GREEN}[SUCCESS] {message}{_RESET}"
        elif "Sleeping seconds=" in message:
            painted = f"{_DIM}{color}{message}{_RESET}"
        elif "Sanitizer flagged" in message:
            painted = f"{_BOLD}{_YELLOW}[SANITIZER] {message}{_RESET}"
        else:
            painted = f"{color}{message}{_RESET}"
        return painted


def setup_logging(cfg: Config) -> logging.Logger:
    level = getattr(logging, cfg.log_level, logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    stream_handler = logging.StreamHandler()
    if _stream_supports_color():
        stream_handler.setFormatter(ColorFormatter(fmt=_FORMAT, datefmt=_DATEFMT))
    else:
        stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if cfg.log_path:
        cfg.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
