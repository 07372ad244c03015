"""
Billing Kernel

The pure core of the billing back office:
- Money held as integer cents
- Immutable invoice, payment and order documents
- Typed, coded exceptions
- Structured JSON logging
"""

__version__ = "0.1.0"
