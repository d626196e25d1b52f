"""
Cebim - portfolio lot/period accounting core.

Tracks stocks, funds, gold and currency holdings as purchase lots and
sales grouped into holding periods, and values them with live prices.
"""

__version__ = "1.0.0"
