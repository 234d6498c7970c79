"""
Message pre-filter.

Drops mails that mention money but are not completed transactions:
one-time passwords and failed/declined notices. A failure notice that
also says the money came back (reversal, credited back, refund) is kept.
"""

import re
from typing import Optional

OTP_PATTERN = re.compile(
    r"\b(?:otp|one[\s-]time\s+password|verification\s+code|security\s+code)\b",
    re.IGNORECASE,
)
FAILED_PATTERN = re.compile(
    r"\b(?:failed|declined|unsuccessful|could\s+not\s+be\s+processed)\b",
    re.IGNORECASE,
)
RECOVERY_PATTERN = re.compile(
    r"\bcredited\s+back\b|\brevers(?:ed|al)\b|\brefund(?:ed)?\b",
    re.IGNORECASE,
)

REASON_OTP = "otp"
REASON_FAILED = "failed"


def prefilter_reason(subject: str, body: str) -> Optional[str]:
    """Return why a message should be skipped, or None to keep it."""
    text = f"{subject or ''}\n{body or ''}"
    if OTP_PATTERN.search(text):
        return REASON_OTP
    if FAILED_PATTERN.search(text) and not RECOVERY_PATTERN.search(text):
        return REASON_FAILED
    return None
