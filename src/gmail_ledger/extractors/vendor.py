"""
Vendor / category resolver.

Resolution order:
1. VENDOR_RULES, sender address (whole table first)
2. VENDOR_RULES, brand tokens in subject/body
3. Merchant hint ("at <Name>", "to <Name>") fuzzy-matched against VENDOR_RULES names
4. CONTEXT_RULES, generic labels (ATM, UPI Transfer, ...)
5. Merchant hint as written
6. "Unknown"

Steps 1 and 2 produce a known vendor, and so does a strong fuzzy match in step 3.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from rapidfuzz import fuzz, process, utils

DEFAULT_CATEGORY = "Other"
UNKNOWN_VENDOR = "Unknown"

# fuzz.ratio scores (0-100) for merchant hints against vendor names
FUZZY_STRONG = 85
FUZZY_WEAK = 75
FUZZY_MIN_LENGTH = 4


@dataclass
class VendorRule:
    """One known vendor. sender/token are case-insensitive regexes."""

    name: str
    category: str
    sender: Optional[str] = None
    token: Optional[str] = None

    _sender_re: Optional[re.Pattern] = field(default=None, init=False, repr=False)
    _token_re: Optional[re.Pattern] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.sender:
            self._sender_re = re.compile(self.sender, re.IGNORECASE)
        if self.token:
            self._token_re = re.compile(self.token, re.IGNORECASE)

    def matches_sender(self, sender: str) -> bool:
        return bool(self._sender_re and sender and self._sender_re.search(sender))

    def matches_token(self, text: str) -> bool:
        return bool(self._token_re and text and self._token_re.search(text))


@dataclass
class ContextRule:
    """Generic label derived from message wording."""

    label: str
    category: str
    pattern: str

    _re: Optional[re.Pattern] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._re = re.compile(self.pattern, re.IGNORECASE)

    def matches(self, text: str) -> bool:
        return bool(self._re.search(text))


@dataclass
class VendorMatch:
    """Resolved vendor."""

    name: str
    category: str = DEFAULT_CATEGORY
    known: bool = False
    source: str = "unknown"  # sender | token | fuzzy | context | merchant | unknown


# Priority order matters within each pass.
VENDOR_RULES: list[VendorRule] = [
    # Food & groceries
    VendorRule("Swiggy", "Food & Dining", sender=r"swiggy\.in", token=r"\bswiggy\b"),
    VendorRule("Zomato", "Food & Dining", sender=r"zomato\.com", token=r"\bzomato\b"),
    VendorRule("BigBasket", "Groceries", sender=r"bigbasket\.com", token=r"\bbig\s?basket\b"),
    VendorRule("Blinkit", "Groceries", sender=r"blinkit\.com", token=r"\bblinkit\b"),
    VendorRule("Zepto", "Groceries", sender=r"zepto(?:now)?\.com", token=r"\bzepto\b"),
    # Shopping
    VendorRule("Amazon", "Shopping", sender=r"amazon\.(?:in|com)", token=r"\bamazon\b"),
    VendorRule("Flipkart", "Shopping", sender=r"flipkart\.com", token=r"\bflipkart\b"),
    VendorRule("Myntra", "Shopping", sender=r"myntra\.com", token=r"\bmyntra\b"),
    VendorRule("Ajio", "Shopping", sender=r"ajio\.com", token=r"\bajio\b"),
    VendorRule("Nykaa", "Shopping", sender=r"nykaa\.com", token=r"\bnykaa\b"),
    # Transportation
    VendorRule("Uber", "Transportation", sender=r"uber\.com", token=r"\buber\b"),
    VendorRule("Ola", "Transportation", sender=r"olacabs\.com", token=r"\bola\b"),
    VendorRule("Rapido", "Transportation", sender=r"rapido\.bike", token=r"\brapido\b"),
    # Travel
    VendorRule("IRCTC", "Travel", sender=r"irctc\.co\.in", token=r"\birctc\b"),
    VendorRule("MakeMyTrip", "Travel", sender=r"makemytrip\.com", token=r"\bmake\s?my\s?trip\b"),
    # Entertainment
    VendorRule("Netflix", "Entertainment", sender=r"netflix\.com", token=r"\bnetflix\b"),
    VendorRule("Spotify", "Entertainment", sender=r"spotify\.com", token=r"\bspotify\b"),
    VendorRule("BookMyShow", "Entertainment", sender=r"bookmyshow\.com", token=r"\bbook\s?my\s?show\b"),
    VendorRule("Hotstar", "Entertainment", sender=r"hotstar\.com", token=r"\b(?:disney\+?\s?)?hotstar\b"),
    # Wallets / payment apps
    VendorRule("Paytm", "Bills & Payments", sender=r"paytm\.com", token=r"\bpaytm\b"),
    VendorRule("PhonePe", "Bills & Payments", sender=r"phonepe\.com", token=r"\bphone\s?pe\b"),
    VendorRule("Google Pay", "Bills & Payments", sender=r"\bgpay\b", token=r"\bgoogle\s+pay\b|\bgpay\b"),
    VendorRule("CRED", "Bills & Payments", sender=r"cred\.club", token=r"\bcred\b"),
    # Telecom
    VendorRule("Airtel", "Bills & Utilities", sender=r"airtel\.(?:in|com)", token=r"\bairtel\b"),
    VendorRule("Jio", "Bills & Utilities", sender=r"jio\.com", token=r"\bjio\b"),
    # Income sources
    VendorRule("Salary", "Income", token=r"\bsalary\b"),
    VendorRule("Interest", "Income", token=r"\binterest\s+(?:credit(?:ed)?|paid|earned|of)\b"),
    VendorRule("Dividend", "Income", token=r"\bdividend\b"),
]

CONTEXT_RULES: list[ContextRule] = [
    ContextRule(
        "Transaction Reversal",
        "Refunds",
        r"\bcredited\s+back\b|\btransaction\s+reversal\b|\bamount\s+reversed\b",
    ),
    ContextRule("Payment Reversal", "Refunds", r"\bpayment\s+reversed\b|\breversal\b|\breversed\b"),
    ContextRule("ATM", "Cash", r"\batm\b"),
    ContextRule("Cash Deposit", "Cash", r"\bcash\s+deposit"),
    ContextRule("IMPS Transfer", "Transfers", r"\bimps\b"),
    ContextRule("NEFT Transfer", "Transfers", r"\bneft\b"),
    ContextRule("RTGS Transfer", "Transfers", r"\brtgs\b"),
    ContextRule("UPI Transfer", "Transfers", r"\bupi\b"),
]

MERCHANT_HINT = re.compile(r"\b(?:at|to)\s+([A-Z][A-Za-z0-9&'.-]*(?:\s+[A-Z][A-Za-z0-9&'.-]*){0,3})")
MERCHANT_STOPWORDS = {"your", "you", "the", "a/c", "ac", "account", "bank", "beneficiary"}


def _merchant_hint(text: str) -> Optional[str]:
    for match in MERCHANT_HINT.finditer(text):
        name = match.group(1).strip(" .-'")
        if len(name) < 3 or name.split()[0].lower() in MERCHANT_STOPWORDS:
            continue
        return name
    return None


class VendorResolver:
    """Resolves a vendor and category from sender, subject and body."""

    def __init__(
        self,
        rules: Optional[list[VendorRule]] = None,
        context_rules: Optional[list[ContextRule]] = None,
    ):
        self.rules = rules if rules is not None else VENDOR_RULES
        self.context_rules = context_rules if context_rules is not None else CONTEXT_RULES

    def resolve(self, sender: str, subject: str, body: str) -> VendorMatch:
        for rule in self.rules:
            if rule.matches_sender(sender or ""):
                return self._known(rule, "sender")

        text = f"{subject or ''}\n{body or ''}"
        for rule in self.rules:
            if rule.matches_token(text):
                return self._known(rule, "token")

        merchant = _merchant_hint(body or "")
        if merchant:
            fuzzy = self._fuzzy(merchant)
            if fuzzy:
                return fuzzy

        for context in self.context_rules:
            if context.matches(text):
                return VendorMatch(name=context.label, category=context.category, source="context")

        if merchant:
            return VendorMatch(name=merchant, source="merchant")

        return VendorMatch(name=UNKNOWN_VENDOR)

    def _fuzzy(self, merchant: str) -> Optional[VendorMatch]:
        """
        Closest vendor name to the merchant hint or any of its words.

        A strong score counts as a known vendor. A weak one only borrows
        the canonical name and category.
        """
        names = [rule.name for rule in self.rules]
        if not names:
            return None

        queries = [merchant] + [word for word in merchant.split() if len(word) >= FUZZY_MIN_LENGTH]
        best = None
        for query in queries:
            found = process.extractOne(
                query,
                names,
                scorer=fuzz.ratio,
                processor=utils.default_process,
                score_cutoff=FUZZY_WEAK,
            )
            if found and (best is None or found[1] > best[1]):
                best = found

        if best is None:
            return None

        rule = self.rules[best[2]]
        if best[1] >= FUZZY_STRONG:
            return self._known(rule, "fuzzy")
        return VendorMatch(name=rule.name, category=rule.category, source="fuzzy")

    @staticmethod
    def _known(rule: VendorRule, source: str) -> VendorMatch:
        return VendorMatch(
            name=rule.name,
            category=rule.category,
            known=True,
            source=source,
        )


def resolve_vendor(sender: str, subject: str, body: str) -> VendorMatch:
    """Resolve against the default tables."""
    return VendorResolver().resolve(sender, subject, body)
