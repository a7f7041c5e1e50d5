import logging
import logging.config
import os
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "gasto-categorizer.log"

# Leading component tag of our messages, e.g. "[DELIVERY]"
_TAG = re.compile(r"^\[[A-Z_]+\]")


class ColourizedFormatter(logging.Formatter):
    """
    Colours the level name and the leading ``[TAG]`` of a message.

    Only used for the console handler; the file handler writes plain text.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    CYAN = "\x1b[36m"        # component tags
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        # Records are shared between handlers, so put the originals back
        orig_levelname, orig_msg = record.levelname, record.msg

        if record.levelno in self.LEVEL_COLORS:
            record.levelname = f"{self.LEVEL_COLORS[record.levelno]}{record.levelname}{self.RESET}"
        if isinstance(record.msg, str):
            record.msg = _TAG.sub(lambda m: f"{self.CYAN}{m.group(0)}{self.RESET}", record.msg, count=1)

        try:
            return super().format(record)
        finally:
            record.levelname, record.msg = orig_levelname, orig_msg


def _console_formatter() -> str:
    # https://no-color.org
    return "plain" if os.getenv("NO_COLOR") else "colour"


def get_logging_config() -> dict:
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")
    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": _console_formatter(),
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, LOG_FILE_NAME),
            "formatter": "plain",
            "encoding": "utf-8",
        }
        root_handlers.append("file")

    # Webhook and ledger requests are logged by the services themselves
    quiet = {"handlers": root_handlers, "level": "WARNING", "propagate": False}
    # Per-request access lines only when debugging
    access_level = "INFO" if log_level_name == "DEBUG" else "WARNING"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {
                "()": "gasto_categorizer.logger.ColourizedFormatter",
                "format": LOG_FORMAT,
            },
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "": {  # Root logger
                "handlers": root_handlers,
                "level": log_level_name,
            },
            "httpx": dict(quiet),
            "httpcore": dict(quiet),
            "openai": dict(quiet),
            "uvicorn": {"handlers": root_handlers, "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": root_handlers, "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": root_handlers, "level": access_level, "propagate": False},
        },
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
