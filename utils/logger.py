import logging
import os
from datetime import datetime

from config import LOGS_DIR, DEBUG_MODE


class Logger:
    def __init__(self, log_dir="logs", debug=False):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)
        self.log_file = os.path.join(self.log_dir, f"collector_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log")

        self._logger = logging.getLogger("hamlat")
        self._logger.setLevel(logging.DEBUG if debug else logging.INFO)
        if not self._logger.handlers:
            formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
            for handler in (logging.FileHandler(self.log_file, encoding='utf-8'), logging.StreamHandler()):
                handler.setFormatter(formatter)
                self._logger.addHandler(handler)

    def log(self, message):
        self._logger.info(message)

    def error(self, message, *args, **kwargs):
        self._logger.error(message, *args, **kwargs)

    def warn(self, message):
        self._logger.warning(f"⚠️ {message}")

    def debug(self, message):
        self._logger.debug(message)

    def success(self, message):
        self._logger.info(f"✅ {message}")


# Initialize a global logger instance
logger = Logger(log_dir=LOGS_DIR, debug=DEBUG_MODE)
