"""
ERP Kernel

Shared infrastructure for the fulfillment and stock-ledger engine:
- Declarative base, engine and session scope
- Structured logging and typed exceptions
- Injectable clock and location value types
- Locked document-code sequences and bounded concurrency retry
"""

__version__ = "0.1.0"
