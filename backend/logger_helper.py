import gzip
import logging
import os
import shutil
import time
from logging.handlers import TimedRotatingFileHandler

from fastapi import Request

LOGGER_NAME = "surveillance"
LOG_MAX_SIZE = 20 * 1024 * 1024  # 20 MB
LOG_BACKUP_COUNT = 5             # Keep last 5 log files
MAX_LOGGED_BODY = 500            # Bodies often carry base64 images


def compress_old_log(source_path: str):
    if os.path.exists(source_path):
        compressed_path = f"{source_path}.gz"
        with open(source_path, "rb") as f_in, gzip.open(compressed_path, "wb") as f_out:
            shutil.copyfileobj(f_in, f_out)
        os.remove(source_path)


class SizeCappedTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    Weekly rotation (every Monday at midnight) that also rolls over once the
    file reaches max_bytes, gzip-compressing rolled files.
    """

    def __init__(self, filename: str, max_bytes: int = LOG_MAX_SIZE, backup_count: int = LOG_BACKUP_COUNT):
        super().__init__(filename, when="W0", backupCount=backup_count, encoding="utf-8")
        self.max_bytes = max_bytes

    def shouldRollover(self, record) -> bool:
        if os.path.exists(self.baseFilename) and os.path.getsize(self.baseFilename) >= self.max_bytes:
            return True
        return super().shouldRollover(record)

    def doRollover(self):
        super().doRollover()
        log_dir = os.path.dirname(self.baseFilename) or "."
        base_name = os.path.basename(self.baseFilename)
        for file in os.listdir(log_dir):
            if file.startswith(base_name) and file != base_name and not file.endswith(".gz"):
                file_path = os.path.join(log_dir, file)
                if os.path.isfile(file_path):
                    compress_old_log(file_path)


def setup_logger(log_file: str, level: str = "INFO") -> logging.Logger:
    """
    Configure the application logger: rotating file plus console.
    Calling it again leaves the existing handlers in place.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    file_handler = SizeCappedTimedRotatingFileHandler(log_file)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


def _truncate(text: str) -> str:
    return text if len(text) <= MAX_LOGGED_BODY else f"{text[:MAX_LOGGED_BODY]}...<{len(text)} chars>"


def create_logging_middleware(app, logger):
    """
    Adds a middleware to log request & response time, IP, and bodies.
    """
    @app.middleware("http")
    async def log_request_response_time(request: Request, call_next):
        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "-"
        method = request.method
        path = request.url.path

        try:
            body_bytes = await request.body()
            request_body = body_bytes.decode("utf-8") if body_bytes else ""
        except UnicodeDecodeError:
            request_body = "<Binary body>"

        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        log_message = (
            f"IP={client_ip} | {method} {path} | Status={response.status_code} | "
            f"Time={process_time:.4f}s | RequestBody={_truncate(request_body)}"
        )

        logger.info(log_message)
        response.headers["X-Process-Time"] = str(round(process_time, 4))
        return response

    return app
