"""Deterministic classification rules — sender domain rules and weighted keyword patterns."""

import re
from dataclasses import dataclass, field
from typing import Optional

from mailtriage.config import Settings

FLAGS = ("is_hierarchy", "is_client", "is_meeting", "is_escalation", "is_urgent")

_ADDRESS = re.compile(r"[\w.+'-]+@[\w-]+(?:\.[\w-]+)+")


def sender_address(sender: Optional[str]) -> str:
    """Pull the bare, lower-cased address out of a From value like 'Jane <jane@x.com>'."""
    if not sender:
        return ""
    match = _ADDRESS.search(sender)
    return match.group().lower() if match else sender.strip().lower()


def sender_domain(sender: Optional[str]) -> str:
    address = sender_address(sender)
    return address.rsplit("@", 1)[-1] if "@" in address else ""


@dataclass(frozen=True)
class DomainRule:
    """Resolves some flags (and optionally a label) for mail from matching senders."""

    name: str
    domains: tuple[str, ...] = ()
    senders: tuple[str, ...] = ()  # full addresses, or local-part prefixes ending in '@'
    flags: dict = field(default_factory=dict)
    label: Optional[str] = None

    def matches(self, address: str, domain: str) -> bool:
        for d in self.domains:
            if domain == d or domain.endswith("." + d):
                return True
        for s in self.senders:
            if s.endswith("@") and address.startswith(s):
                return True
            if address == s:
                return True
        return False


_NOT_PERSONAL = {"is_hierarchy": False, "is_client": False}

BULK_SENDER_RULES = [
    DomainRule(
        "newsletter",
        domains=("substack.com", "medium.com", "beehiiv.com", "mailchimp.com", "convertkit.com", "ghost.io"),
        flags=_NOT_PERSONAL,
        label="Newsletter",
    ),
    DomainRule(
        "social",
        domains=("linkedin.com", "facebookmail.com", "twitter.com", "x.com", "instagram.com", "reddit.com"),
        flags=_NOT_PERSONAL,
        label="Social",
    ),
    DomainRule(
        "shopping",
        domains=("amazon.com", "ebay.com", "shopify.com", "etsy.com", "flipkart.com"),
        flags=_NOT_PERSONAL,
        label="Shopping",
    ),
    DomainRule(
        "notifications",
        domains=("github.com", "gitlab.com", "atlassian.net", "slack.com", "notion.so"),
        flags=_NOT_PERSONAL,
        label="Notifications",
    ),
    DomainRule(
        "automated",
        senders=("noreply@", "no-reply@", "donotreply@", "do-not-reply@", "mailer-daemon@"),
        flags=_NOT_PERSONAL,
    ),
]


def build_domain_rules(settings: Settings) -> list[DomainRule]:
    """Organizational rules from configuration first, then the built-in bulk sender rules."""
    rules = []
    if settings.leadership_domain_list or settings.leadership_sender_list:
        rules.append(DomainRule(
            "leadership",
            domains=tuple(settings.leadership_domain_list),
            senders=tuple(settings.leadership_sender_list),
            flags={"is_hierarchy": True},
        ))
    if settings.client_domain_list:
        rules.append(DomainRule(
            "client",
            domains=tuple(settings.client_domain_list),
            flags={"is_client": True},
        ))
    return rules + BULK_SENDER_RULES


# --- Keyword heuristics ---

STRONG = 1.0
WEAK = 0.5

CATEGORY_PATTERNS: dict[str, list[tuple[re.Pattern, float]]] = {
    "is_urgent": [
        (re.compile(r"\burgent(ly)?\b", re.I), STRONG),
        (re.compile(r"\basap\b", re.I), STRONG),
        (re.compile(r"\bimmediate(ly)?\b", re.I), STRONG),
        (re.compile(r"\btime[- ]sensitive\b", re.I), STRONG),
        (re.compile(r"\bemergency\b", re.I), STRONG),
        (re.compile(r"\b(by|before) (today|tonight|eod|end of (the )?day)\b", re.I), STRONG),
        (re.compile(r"\bcritical\b", re.I), WEAK),
        (re.compile(r"\bdeadline\b", re.I), WEAK),
        (re.compile(r"\bhigh priority\b", re.I), WEAK),
        (re.compile(r"\bright away\b", re.I), WEAK),
    ],
    "is_escalation": [
        (re.compile(r"\bescalat(e|ed|es|ing|ion)\b", re.I), STRONG),
        (re.compile(r"\bcomplaint\b", re.I), STRONG),
        (re.compile(r"\bunacceptable\b", re.I), STRONG),
        (re.compile(r"\boutage\b", re.I), STRONG),
        (re.compile(r"\bsev(erity)?[- ]?[12]\b", re.I), STRONG),
        (re.compile(r"\bdissatisfied\b", re.I), WEAK),
        (re.compile(r"\bdisappoint(ed|ing)\b", re.I), WEAK),
        (re.compile(r"\bnot working\b", re.I), WEAK),
        (re.compile(r"\b(issue|problem)s?\b", re.I), WEAK),
    ],
    "is_meeting": [
        (re.compile(r"\bmeeting\b", re.I), STRONG),
        (re.compile(r"\binvitation:", re.I), STRONG),
        (re.compile(r"\bcalendar invite\b", re.I), STRONG),
        (re.compile(r"\bminutes of (the )?meeting\b", re.I), STRONG),
        (re.compile(r"\bstand-?up\b", re.I), STRONG),
        (re.compile(r"\b(zoom|webex|google meet|microsoft teams)\b", re.I), WEAK),
        (re.compile(r"\bagenda\b", re.I), WEAK),
        (re.compile(r"\b(re)?schedul(e|ed|ing)\b", re.I), WEAK),
        (re.compile(r"\bcall\b", re.I), WEAK),
    ],
    "is_client": [
        (re.compile(r"\bclients?\b", re.I), STRONG),
        (re.compile(r"\bcustomers?\b", re.I), STRONG),
        (re.compile(r"\b(statement of work|sow|purchase order)\b", re.I), STRONG),
        (re.compile(r"\bcontract\b", re.I), WEAK),
        (re.compile(r"\bproposal\b", re.I), WEAK),
        (re.compile(r"\bdeliverables?\b", re.I), WEAK),
        (re.compile(r"\baccount manager\b", re.I), WEAK),
    ],
    "is_hierarchy": [
        (re.compile(r"\ball[- ]hands\b", re.I), STRONG),
        (re.compile(r"\bperformance review\b", re.I), STRONG),
        (re.compile(r"\bdirect reports?\b", re.I), STRONG),
        (re.compile(r"\b(ceo|cto|cfo|coo|vp|vice president)\b", re.I), WEAK),
        (re.compile(r"\b(director|head of|leadership( team)?)\b", re.I), WEAK),
        (re.compile(r"\bmanagement\b", re.I), WEAK),
    ],
}

LABEL_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("Invoices", re.compile(r"\b(invoice|receipt|payment due|billing statement)\b", re.I)),
    ("Orders", re.compile(r"\b(order confirmation|has shipped|out for delivery|tracking number)\b", re.I)),
    ("Travel", re.compile(r"\b(flight|itinerary|boarding pass|hotel reservation)\b", re.I)),
    ("Security", re.compile(r"\b(password reset|verification code|security alert|sign-in attempt)\b", re.I)),
    ("Recruiting", re.compile(r"\b(job application|interview|candidate|offer letter)\b", re.I)),
    ("Reports", re.compile(r"\b(weekly|monthly|quarterly|status) report\b", re.I)),
]


class KeywordHeuristic:
    """Scores subject and body against the per-category keyword sets. Subject hits count double."""

    def __init__(self, patterns: Optional[dict] = None, labels: Optional[list] = None):
        self._patterns = patterns or CATEGORY_PATTERNS
        self._labels = labels if labels is not None else LABEL_PATTERNS

    def score(self, subject: str, body: str) -> tuple[dict[str, float], dict[str, list[str]]]:
        scores = {flag: 0.0 for flag in FLAGS}
        matched: dict[str, list[str]] = {flag: [] for flag in FLAGS}
        for flag, patterns in self._patterns.items():
            for pattern, weight in patterns:
                in_subject = pattern.search(subject)
                in_body = pattern.search(body)
                if not (in_subject or in_body):
                    continue
                scores[flag] += weight * (2 if in_subject else 1)
                matched[flag].append((in_subject or in_body).group().lower())
        return scores, matched

    def infer_label(self, subject: str, body: str) -> Optional[str]:
        text = f"{subject}\n{body}"
        for label, pattern in self._labels:
            if pattern.search(text):
                return label
        return None
