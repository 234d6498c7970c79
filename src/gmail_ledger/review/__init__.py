"""
Review workflow for staged transactions.

Reviewer edits, soft deletes and confirmation into the ledger.
"""

from .workflow import ConfirmResult, ReviewWorkflow

__all__ = ["ConfirmResult", "ReviewWorkflow"]
