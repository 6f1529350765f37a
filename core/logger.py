import json
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

# دایرکتوری لاگ‌ها
LOGS_DIR = Path("logs")
LOGS_DIR.mkdir(exist_ok=True)


class ColoredFormatter(logging.Formatter):
    """فرمت رنگی برای ترمینال"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        # روی یک کپی رنگ می‌زنیم تا handler فایل رنگی نشود
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record.levelname = f"{log_color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logger(
        name: str,
        log_file: str = None,
        level: int = logging.DEBUG,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5
) -> logging.Logger:
    """
    ساخت logger با خروجی کنسول و (در صورت نیاز) فایل چرخشی

    Args:
        name: نام logger
        log_file: نام فایل داخل دایرکتوری logs؛ None یعنی فقط کنسول
        level: سطح لاگ
        max_bytes: حداکثر حجم فایل قبل از rotate
        backup_count: تعداد فایل‌های پشتیبان
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    log_format = '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(log_format, datefmt=date_format))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            LOGS_DIR / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        logger.addHandler(file_handler)

    return logger


class DatabaseLogger:
    """لاگ عملیات دیتابیس چت"""

    def __init__(self, logger_name: str = "database"):
        self.logger = setup_logger(
            name=logger_name,
            log_file=f"{logger_name}.log"
        )

    def log_create(self, model_name: str, data: dict):
        self.logger.info(
            f"CREATE {model_name}:\n{json.dumps(data, ensure_ascii=False, indent=2, default=str)}"
        )

    def log_update(self, model_name: str, record_id: int, changes: dict):
        self.logger.info(
            f"UPDATE {model_name} (id={record_id}):\n"
            f"{json.dumps(changes, ensure_ascii=False, indent=2, default=str)}"
        )

    def log_delete(self, model_name: str, record_id: int):
        self.logger.warning(f"DELETE {model_name} (id={record_id})")

    def log_error(self, operation: str, error: Exception):
        self.logger.error(
            f"DB ERROR in {operation}:\n"
            f"Error Type: {type(error).__name__}\n"
            f"Error Message: {str(error)}\n"
            f"Traceback:\n{traceback.format_exc()}"
        )


class WebSocketLogger:
    """لاگ اتصال‌ها و رویدادهای سوکت چت"""

    def __init__(self, logger_name: str = "websocket"):
        self.logger = setup_logger(
            name=logger_name,
            log_file=f"{logger_name}.log"
        )

    def log_connect(self, user_id: int, rooms: int):
        self.logger.info(f"🔗 CONNECT: user={user_id}, rooms={rooms}")

    def log_disconnect(self, user_id: int):
        self.logger.info(f"🔌 DISCONNECT: user={user_id}")

    def log_event(self, user_id: int, action: str, data):
        self.logger.debug(
            f"📩 EVENT: user={user_id}, action={action}\n"
            f"{json.dumps(data, ensure_ascii=False, indent=2, default=str)}"
        )

    def log_broadcast(self, room_id: int, event: str, receivers: int):
        self.logger.debug(f"📡 BROADCAST: room={room_id}, type={event}, receivers={receivers}")

    def log_error(self, context: str, error: Exception):
        self.logger.error(
            f"❌ WS ERROR in {context}:\n"
            f"Error Type: {type(error).__name__}\n"
            f"Error Message: {str(error)}\n"
            f"Traceback:\n{traceback.format_exc()}"
        )


db_logger = DatabaseLogger()
ws_logger = WebSocketLogger()
cache_logger = setup_logger("cache", "cache.log")
app_logger = setup_logger("app", "app.log")
