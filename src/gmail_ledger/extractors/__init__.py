"""
Transaction extractors for mailbox notifications.

Provides:
- AmountNormalizer: picks the transaction amount out of free text
- classify_direction: debit / credit from cue words
- VendorResolver: declarative vendor table plus generic fallbacks
- MessageExtractor: combines all of the above into one candidate
- prefilter_reason: drops OTP and failed-transaction notices
"""

from .amount import AmountMatch, AmountNormalizer, find_amount
from .direction import DirectionResult, classify_direction
from .message import MessageExtractor
from .prefilter import prefilter_reason
from .vendor import CONTEXT_RULES, VENDOR_RULES, VendorMatch, VendorResolver, VendorRule, resolve_vendor

__all__ = [
    "AmountMatch",
    "AmountNormalizer",
    "find_amount",
    "DirectionResult",
    "classify_direction",
    "MessageExtractor",
    "prefilter_reason",
    "CONTEXT_RULES",
    "VENDOR_RULES",
    "VendorMatch",
    "VendorResolver",
    "VendorRule",
    "resolve_vendor",
]
