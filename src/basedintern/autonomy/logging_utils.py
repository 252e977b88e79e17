import logging
import os
import sys
import time

from .config import Config


_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_CYAN = "\033[36m"
_MAGENTA = "\033[35m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[31m",
}
LOGGER_NAME = "basedintern"
LOG_FORMAT = "%(asctime)sZ %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


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
        color = _COLORS.get(record.levelname.upper(), "")
        if not color:
            return message

        # Tag the phases an operator scans for: blocks, post attempts, successes.
        if "Guardrail blocked" in message:
            return f"{_BOLD}{_YELLOW}[GUARDRAIL] {message}{_RESET}"
        if "action=post attempt" in message:
            return f"{_BOLD}{_MAGENTA}[POST ATTEMPT] {message}{_RESET}"
        if "ACTION SUCCESS" in message:
            return f"{_BOLD}{_GREEN}[SUCCESS] {message}{_RESET}"
        if "Executing BUY" in message or "Executing SELL" in message:
            return f"{_BOLD}{_RED}[TRADE] {message}{_RESET}"
        if "LLM request" in message or "LLM response" in message:
            return f"{_BOLD}{_CYAN}[LLM] {message}{_RESET}"
        if "Sleeping seconds=" in message:
            return f"{_DIM}{color}{message}{_RESET}"
        return f"{color}{message}{_RESET}"


def setup_logging(cfg: Config) -> logging.Logger:
    level = getattr(logging, cfg.log_level, logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    formatter.converter = time.gmtime

    stream_handler = logging.StreamHandler()
    if _stream_supports_color():
        color_formatter = ColorFormatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        color_formatter.converter = time.gmtime
        stream_handler.setFormatter(color_formatter)
    else:
        stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if cfg.log_path:
        cfg.log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
