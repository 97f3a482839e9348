"""
Services package for the club progression ledger.
"""

from .base import BaseService

__all__ = ['BaseService']
