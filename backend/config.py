"""
EV Dealer Hub - Configuration and shared helpers
"""

import os
from datetime import datetime, timezone, date, timedelta
from pathlib import Path
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'ev_dealer_hub')

# HTTP
CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Email (SendGrid)
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@evdealerhub.in')
SENDER_NAME = os.environ.get('SENDER_NAME', 'EV Dealer Hub')

# Business defaults
DEFAULT_COMMISSION_RATE = float(os.environ.get('DEFAULT_COMMISSION_RATE', '10.0'))
GST_RATE = float(os.environ.get('GST_RATE', '0.18'))


def create_db(mongo_url: str = None, db_name: str = None):
    """Opens the Motor client and returns the database handle."""
    client = AsyncIOMotorClient(mongo_url or MONGO_URL)
    return client[db_name or DB_NAME]


# ==================== HELPERS ====================

def now_iso() -> str:
    """Current UTC date/time as ISO string"""
    return datetime.now(timezone.utc).isoformat()


def today_iso() -> str:
    """Current UTC date as yyyy-MM-dd"""
    return datetime.now(timezone.utc).date().isoformat()


def parse_date(value: str) -> date:
    """Parses a yyyy-MM-dd string, raises ValueError otherwise."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def date_range_bounds(from_date: str, to_date: str) -> tuple:
    """
    Converts an inclusive yyyy-MM-dd range into ISO bounds usable on
    created_at strings: [from_date, day after to_date).
    """
    start = parse_date(from_date)
    end = parse_date(to_date) + timedelta(days=1)
    return start.isoformat(), end.isoformat()


def format_inr(amount: float) -> str:
    """Formats an amount with Indian digit grouping: 1234567.5 -> 12,34,567.50"""
    negative = amount < 0
    whole, frac = f"{abs(amount):.2f}".split(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    text = whole if frac == "00" else f"{whole}.{frac}"
    return f"-{text}" if negative else text
