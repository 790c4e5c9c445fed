from dotenv import load_dotenv
from pathlib import Path
from decimal import Decimal
import os
import logging

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Settings:
    """Runtime settings, read once from the environment (backend/.env)."""

    def __init__(self, environ=None):
        environ = os.environ if environ is None else environ

        self.mongo_url = environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
        self.db_name = environ.get('DB_NAME', 'charity_treasury')
        self.log_level = environ.get('LOG_LEVEL', 'INFO').upper()
        self.default_page_size = int(environ.get('DEFAULT_PAGE_SIZE', '10'))
        self.reconciliation_tolerance = Decimal(environ.get('RECONCILIATION_TOLERANCE', '0.01'))
        self.jwt_secret_key = environ.get('JWT_SECRET_KEY', 'change-me-in-production')
        self.cors_origins = [
            origin.strip()
            for origin in environ.get('CORS_ORIGINS', '*').split(',')
            if origin.strip()
        ]

    def __repr__(self):
        return f"Settings(db_name={self.db_name!r}, log_level={self.log_level!r})"


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


settings = Settings()
