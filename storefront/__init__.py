"""Order, payment and inventory reconciliation service"""
__version__ = "0.1.0"
