# Utils module
from .logging import setup_logging
from .money import money, ratio, to_decimal, safe_divide, percent

__all__ = [
    "setup_logging",
    "money",
    "ratio",
    "to_decimal",
    "safe_divide",
    "percent",
]
