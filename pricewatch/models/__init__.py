"""
Models package — export all SQLAlchemy models.
"""

from pricewatch.models.base import Base
from pricewatch.models.price_observation import PriceObservation
from pricewatch.models.product import Product
from pricewatch.models.vendor_target import VendorTarget

__all__ = ["Base", "PriceObservation", "Product", "VendorTarget"]
