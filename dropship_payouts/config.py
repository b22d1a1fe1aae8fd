"""
Application configuration loaded from the environment.
"""
import os
import logging
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Database configuration
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./dropship_payouts.db')

# Connection pool settings (ignored for SQLite)
DB_POOL_SIZE = int(os.getenv('DB_POOL_SIZE', '5'))
DB_MAX_OVERFLOW = int(os.getenv('DB_MAX_OVERFLOW', '10'))
DB_POOL_TIMEOUT = int(os.getenv('DB_POOL_TIMEOUT', '30'))
DB_POOL_RECYCLE = int(os.getenv('DB_POOL_RECYCLE', '1800'))  # 30 minutes

# Payout engine settings
DEFAULT_CURRENCY = os.getenv('DEFAULT_CURRENCY', 'INR')
DEFAULT_SHIPPING_RATE = Decimal(os.getenv('DEFAULT_SHIPPING_RATE', '25'))
DEFAULT_PRODUCT_WEIGHT_KG = Decimal(os.getenv('DEFAULT_PRODUCT_WEIGHT_KG', '0.5'))
SHIPPING_CHARGE_POLICY = os.getenv('SHIPPING_CHARGE_POLICY', 'flat')

# Baseline per-carrier rates used to seed the default_shipping_rates table
SEED_CARRIER_RATES = {
    'Delhivery': Decimal('25'),
    'Bluedart': Decimal('30'),
}
