"""
Document stores.

``DocumentStore`` is the protocol the services depend on. Two
implementations ship: ``InMemoryDocumentStore`` and ``SqlDocumentStore``.
"""

from billing_store.interface import (
    CreateInvoice,
    CreateOrder,
    CreatePayment,
    DocumentStore,
    DocumentWrite,
    UpdateInvoice,
)
from billing_store.memory import InMemoryDocumentStore
from billing_store.sql import SqlDocumentStore

__all__ = [
    "CreateInvoice",
    "CreateOrder",
    "CreatePayment",
    "DocumentStore",
    "DocumentWrite",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "UpdateInvoice",
]
