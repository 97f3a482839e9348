import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Ledger configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///clubledger.db')

    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Ledger settings
    LEDGER_MAX_RETRIES = int(os.getenv('LEDGER_MAX_RETRIES', 3))
    LEDGER_RETRY_BASE_DELAY = float(os.getenv('LEDGER_RETRY_BASE_DELAY', 0.1))

    # Attendance settings
    ATTENDANCE_MAX_BATCH_OPERATIONS = int(os.getenv('ATTENDANCE_MAX_BATCH_OPERATIONS', 450))
    ATTENDANCE_ACTOR = os.getenv('ATTENDANCE_ACTOR', 'System (Attendance)')

    # Partner split settings
    DEFAULT_PARTNER_PERCENTAGE = int(os.getenv('DEFAULT_PARTNER_PERCENTAGE', 50))

    @classmethod
    def get_async_database_url(cls) -> str:
        """Get the database URL with an async driver"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that configuration values are in range"""
        if cls.LEDGER_MAX_RETRIES < 1:
            raise ValueError("LEDGER_MAX_RETRIES must be at least 1")
        if cls.ATTENDANCE_MAX_BATCH_OPERATIONS < 4:
            # One new presence (3 writes) plus the attendance record must fit a chunk
            raise ValueError("ATTENDANCE_MAX_BATCH_OPERATIONS must be at least 4")
        if not 0 < cls.DEFAULT_PARTNER_PERCENTAGE <= 100:
            raise ValueError("DEFAULT_PARTNER_PERCENTAGE must be between 1 and 100")
