# cl_payroll_api/models/payroll/__init__.py
# Liquidations first; the book details reference them.
from .stat_config import StatConfig
from .liquidation import Liquidation
from .payroll_book import PayrollBook, PayrollBookDetail

__all__ = [
    "StatConfig", "Liquidation", "PayrollBook", "PayrollBookDetail",
]
