"""
Gmail → Transaction Extraction → Human-in-the-loop → Ledger

A deterministic, re-runnable pipeline that turns bank alerts, UPI receipts
and merchant confirmations in a user's mailbox into reviewed ledger entries,
with discrete confidence scoring and strict deduplication.
"""

__version__ = "0.1.0"
