"""
日志模块
"""
import contextvars
import logging
import os
import sys


_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")

# 日志文件存放在项目根目录的 logs/ 目录下 (可用 TUBERELAY_LOG_DIR 覆盖)
LOGS_DIR = os.environ.get("TUBERELAY_LOG_DIR") or os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "logs"
)
os.makedirs(LOGS_DIR, exist_ok=True)
DEFAULT_LOG_FILE = os.path.join(LOGS_DIR, "tuberelay.log")

# Log level mapping from string to logging constant
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level_from_env() -> int:
    """Get log level from environment variable LOG_LEVEL or TUBERELAY_LOG_LEVEL."""
    level_str = os.environ.get("TUBERELAY_LOG_LEVEL") or os.environ.get("LOG_LEVEL") or "INFO"
    return LOG_LEVEL_MAP.get(level_str.upper(), logging.INFO)


def set_request_id(request_id: str | None) -> contextvars.Token:
    """Tag log records emitted by the current request (asyncio task)."""
    return _request_id.set(str(request_id) if request_id else "-")


def reset_request_id(token: contextvars.Token) -> None:
    _request_id.reset(token)


def get_request_id() -> str:
    return _request_id.get()


class InjectRequestIdFilter(logging.Filter):
    """Injects request_id into LogRecord (context-local), defaulting to '-'"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def setup_logger(name="tuberelay", level=None, log_file=None):
    """配置并返回日志记录器

    Args:
        name: Logger name
        level: Log level (if None, read from environment variable)
        log_file: Log file path (if None, use default in logs/ directory)
    """
    if level is None:
        level = get_log_level_from_env()

    if log_file is None:
        log_file = DEFAULT_LOG_FILE

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(isinstance(f, InjectRequestIdFilter) for f in logger.filters):
        logger.addFilter(InjectRequestIdFilter())

    # 防止重复添加处理器
    if logger.hasHandlers():
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # 文件处理器
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # 控制台处理器
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


logger = setup_logger()
