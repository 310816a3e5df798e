"""Database model type definitions."""

from affhelper.models.link_conversion import LinkConversion, LinkConversionCreate
from affhelper.models.order import Order, OrderCreate, OrderStatus, OrderUpdate, Platform
from affhelper.models.profile import BalanceSnapshot, Profile

__all__ = [
    "BalanceSnapshot",
    "LinkConversion",
    "LinkConversionCreate",
    "Order",
    "OrderCreate",
    "OrderStatus",
    "OrderUpdate",
    "Platform",
    "Profile",
]
