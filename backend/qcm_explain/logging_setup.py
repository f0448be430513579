import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from .settings import settings


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
	"""Configure the root logger: stdout always, a rotating file when LOG_FILE is set."""
	formatter = logging.Formatter(
		'%(asctime)s - %(name)s - %(levelname)s - %(message)s',
		datefmt='%Y-%m-%d %H:%M:%S'
	)

	root_logger = logging.getLogger()
	root_logger.setLevel((level or settings.log_level).upper())

	# Avoid duplicate handlers when the app is reloaded
	if root_logger.hasHandlers():
		root_logger.handlers.clear()

	console_handler = logging.StreamHandler(sys.stdout)
	console_handler.setFormatter(formatter)
	root_logger.addHandler(console_handler)

	path = log_file or settings.log_file
	if path:
		directory = os.path.dirname(path)
		if directory and not os.path.exists(directory):
			os.makedirs(directory)
		file_handler = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=2, encoding='utf-8')
		file_handler.setFormatter(formatter)
		root_logger.addHandler(file_handler)

	logging.getLogger('passlib').setLevel(logging.ERROR)
	logging.getLogger('httpx').setLevel(logging.WARNING)
	logging.info("Logging initialised (level=%s)", root_logger.level)
