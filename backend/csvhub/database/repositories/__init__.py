"""
Database repositories package for csvhub.
"""

from .csv_data import CSVDataRepository
from .csv_file import CSVFileRepository
from .user import UserRepository

__all__ = [
    "UserRepository",
    "CSVFileRepository",
    "CSVDataRepository",
]
