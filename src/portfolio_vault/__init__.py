# Portfolio Vault - Main Package
#
# Personal investment tracker backend: an encrypted single-document vault,
# a multi-provider price cache, and a valuation engine.

__version__ = "0.3.0"
__author__ = "Portfolio Vault Team"
__description__ = "Encrypted personal investment tracker backend"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
