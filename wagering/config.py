import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Wagering core configuration settings"""

    # Wallet settings
    STARTING_BALANCE = Decimal(os.getenv('STARTING_BALANCE', '1000.00'))
    MINI_POOL_MIN_STAKE = Decimal(os.getenv('MINI_POOL_MIN_STAKE', '200.00'))
    CURRENCY = os.getenv('CURRENCY', 'KSh')

    # 1v1 events never take more than two entries
    ONE_VS_ONE_MAX_ENTRIES = 2

    # Storage settings
    SEED_DEMO_DATA = os.getenv('SEED_DEMO_DATA', 'True').lower() == 'true'

    # Logging
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.getenv('LOG_FILE')

    # API settings
    API_ROOT_PATH = os.getenv('API_ROOT_PATH', '')

    @classmethod
    def validate(cls):
        """Validate that configured amounts make sense"""
        if cls.STARTING_BALANCE < 0:
            raise ValueError("STARTING_BALANCE must not be negative")
        if cls.MINI_POOL_MIN_STAKE <= 0:
            raise ValueError("MINI_POOL_MIN_STAKE must be positive")
