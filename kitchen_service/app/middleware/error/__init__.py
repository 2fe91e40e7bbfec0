"""
Error middleware for Kitchen Service.
"""

from .error_handler import KitchenServiceErrorHandler, setup_kitchen_error_handling

__all__ = ["KitchenServiceErrorHandler", "setup_kitchen_error_handling"]
