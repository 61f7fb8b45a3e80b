from .settings import CollectorSettings, DEV_API_URL, PROD_API_URL
from .logging_setup import configure_logging

__all__ = [
    'CollectorSettings',
    'DEV_API_URL',
    'PROD_API_URL',
    'configure_logging',
]
