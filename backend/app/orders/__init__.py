"""
Orders

Order creation for converted quotations.
"""

from app.orders.service import OrderService, generate_order_number, get_order_service, set_order_service

__all__ = ["OrderService", "generate_order_number", "get_order_service", "set_order_service"]
