import logging
import sys

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)-7s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 第三方库只保留 WARNING 以上：调度器每次触发、每个 Webhook 请求、每条 SQL 都会刷屏
NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "apscheduler", "aiosqlite")


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    配置全局日志
    格式: 2026-03-01 09:00:00.123 | INFO    | shelfwatch.services.expiry_check_service:_run:120 - message
    """
    if isinstance(level, str):
        level = level.upper()

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # 重复调用时替换 handler，避免日志重复输出
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # uvicorn 自带 handler，统一替换为同一格式
    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    root_logger.info(f"Logging initialized (level={logging.getLevelName(root_logger.level)})")
    return root_logger
