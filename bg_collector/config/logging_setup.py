import logging
from pathlib import Path
from typing import Optional, Union

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def configure_logging(log_dir: Union[str, Path] = "logs",
                      level: int = logging.INFO,
                      filename: str = "collector.log") -> Optional[Path]:
    """
    Send collector logs to ``<log_dir>/<filename>`` and the console.

    Returns the log file path, or None if the directory could not be created
    (console logging is still configured in that case).
    """
    handlers = [logging.StreamHandler()]
    log_file_path = None
    try:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file_path = log_dir / filename
        handlers.insert(0, logging.FileHandler(log_file_path, encoding='utf-8'))
    except OSError as e:
        logging.getLogger(__name__).warning(f"File logging disabled, cannot use {log_dir}: {e}")

    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, handlers=handlers)

    # requests/urllib3 are chatty at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_file_path
