"""Classification cascade — picks the cheapest sufficient method per email.

Tiers run cheapest first: exact cache, sender domain rules, keyword heuristics,
then the LLM. A tier may resolve only some of the five flags; whatever it leaves
open falls through to the next tier. The first tier that resolved anything owns
the method tag.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic import ValidationError as SchemaError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.config import Settings
from mailtriage.errors import UpstreamError
from mailtriage.models.meta import EmailMeta
from mailtriage.services.embeddings import EmbeddingProvider, EmbeddingResult
from mailtriage.services.llm import LLMClient
from mailtriage.services.normalizer import (
    DEFAULT_OPTIONS,
    NormalizeOptions,
    context_window,
    estimate_tokens,
    normalize,
    smart_truncate,
)
from mailtriage.services.rules import FLAGS, DomainRule, KeywordHeuristic, sender_address, sender_domain
from mailtriage.services.similarity import EmailScope, VectorSearch

logger = logging.getLogger(__name__)

METHODS = ("cache", "domain", "regex", "llm")
UNCATEGORIZED = "Uncategorized"

CLASSIFY_PROMPT = """You are an email triage assistant. Classify the email below and return a JSON response.

CATEGORY DEFINITIONS (flags are independent, several may be true):
- is_hierarchy: sent by or concerning someone above the recipient in the organization (executives, directors, managers), or about reviews and org-wide announcements.
- is_client: from or about an external client or customer, including contracts, proposals and deliverables.
- is_meeting: schedules, reschedules, cancels or summarizes a meeting, call or calendar event (minutes of meeting included).
- is_escalation: raises a complaint, an outage, or a problem that has been pushed up the chain or needs management attention.
- is_urgent: needs action quickly: explicit urgency, same-day deadlines, ASAP requests.
{known}{examples}
EMAIL:
From: {sender}
Subject: {subject}

Body:
{body}

---

Respond with ONLY valid JSON (no markdown, no explanation) using exactly these keys:
{{
  "is_hierarchy": <true|false>,
  "is_client": <true|false>,
  "is_meeting": <true|false>,
  "is_escalation": <true|false>,
  "is_urgent": <true|false>,
  "suggested_label": "<1-3 word topic label, or Uncategorized>",
  "confidence": <float 0.0-1.0>,
  "reasoning": "<one sentence explaining the flags and label>"
}}"""


@dataclass
class ClassificationResult:
    """Typed classification plus the opaque audit payload it was derived from."""

    is_hierarchy: bool = False
    is_client: bool = False
    is_meeting: bool = False
    is_escalation: bool = False
    is_urgent: bool = False
    suggested_label: Optional[str] = None
    reasoning: str = ""
    method_used: str = "regex"
    confidence: float = 0.0
    fingerprint: Optional[str] = None
    estimated_tokens: int = 0
    tokens_saved: int = 0
    audit: dict = field(default_factory=dict)
    embedding: Optional[EmbeddingResult] = None

    @property
    def flags(self) -> dict[str, bool]:
        return {flag: getattr(self, flag) for flag in FLAGS}

    def to_payload(self) -> dict:
        return {
            **self.flags,
            "suggested_label": self.suggested_label,
            "reasoning": self.reasoning,
            "method_used": self.method_used,
            "confidence": self.confidence,
            "audit": self.audit,
        }


@dataclass
class TierOutcome:
    flags: dict[str, bool] = field(default_factory=dict)
    suggested_label: Optional[str] = None
    reasoning: str = ""
    confidence: float = 0.5
    tokens: int = 0
    raw: Optional[dict] = None


@dataclass
class NormalizedEmail:
    email_id: Optional[int]
    sender: str
    address: str
    domain: str
    subject: str
    body: str
    fingerprint: str
    owner_user_id: Optional[int] = None
    embedding: Optional[EmbeddingResult] = None

    @property
    def text(self) -> str:
        return f"{self.subject}\n\n{self.body}".strip()


def fingerprint(sender: Optional[str], subject: str, body: str) -> str:
    """Cache key over sender domain, normalized subject and a hash of the body prefix."""
    body_hash = hashlib.sha256(body[:500].lower().encode("utf-8")).hexdigest()
    key = f"{sender_domain(sender)}|{subject.strip().lower()}|{body_hash}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# --- Tiers ---

class ClassificationTier:
    """One strategy in the cascade. try_classify returns None to decline."""

    method = ""

    async def try_classify(self, email: NormalizedEmail, resolved: dict[str, bool]) -> Optional[TierOutcome]:
        raise NotImplementedError


class CacheTier(ClassificationTier):
    """Reuses the stored result of a recent email with the same fingerprint."""

    method = "cache"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ttl_days: int = 30):
        self._session_factory = session_factory
        self._ttl_days = ttl_days

    async def try_classify(self, email, resolved):
        cutoff = datetime.now(timezone.utc) - timedelta(days=self._ttl_days)
        query = (
            select(EmailMeta)
            .where(EmailMeta.fingerprint == email.fingerprint, EmailMeta.updated_at >= cutoff)
            .order_by(EmailMeta.updated_at.desc())
            .limit(1)
        )
        if email.email_id is not None:
            query = query.where(EmailMeta.email_id != email.email_id)

        async with self._session_factory() as db:
            cached = (await db.execute(query)).scalar_one_or_none()
        if cached is None:
            return None

        return TierOutcome(
            flags={flag: bool(getattr(cached, flag)) for flag in FLAGS},
            suggested_label=cached.suggested_label,
            reasoning=cached.reasoning or "",
            confidence=cached.label_confidence if cached.label_confidence is not None else 1.0,
            raw={"source_email_id": cached.email_id, "source_method": cached.method_used},
        )


class DomainTier(ClassificationTier):
    """Applies organizational sender rules. Earlier rules win per flag."""

    method = "domain"

    def __init__(self, rules: list[DomainRule]):
        self._rules = rules

    async def try_classify(self, email, resolved):
        flags: dict[str, bool] = {}
        label = None
        names = []
        for rule in self._rules:
            if not rule.matches(email.address, email.domain):
                continue
            names.append(rule.name)
            for flag, value in rule.flags.items():
                flags.setdefault(flag, value)
            label = label or rule.label

        if not flags and label is None:
            return None
        return TierOutcome(
            flags=flags,
            suggested_label=label,
            reasoning=f"Sender {email.domain or email.address} matched domain rules: {', '.join(names)}",
            confidence=0.9,
            raw={"rules": names},
        )


class RegexTier(ClassificationTier):
    """Keyword heuristics. Declines unless some category reaches the minimum score."""

    method = "regex"

    def __init__(self, heuristic: Optional[KeywordHeuristic] = None, min_score: float = 1.0):
        self._heuristic = heuristic or KeywordHeuristic()
        self._min_score = min_score

    async def try_classify(self, email, resolved):
        outcome = self.fallback(email)
        if not any(outcome.flags.values()):
            return None
        return outcome

    def fallback(self, email: NormalizedEmail) -> TierOutcome:
        """Best-effort heuristic answer with no minimum, used when nothing better is available."""
        scores, matched = self._heuristic.score(email.subject, email.body)
        flags = {flag: scores[flag] >= self._min_score for flag in FLAGS}
        hits = [flag for flag, hit in flags.items() if hit]
        top = max(scores.values()) if scores else 0.0
        keywords = sorted({kw for flag in hits for kw in matched[flag]})
        return TierOutcome(
            flags=flags,
            suggested_label=self._heuristic.infer_label(email.subject, email.body),
            reasoning=f"Keyword match: {', '.join(keywords)}" if keywords else "No strong keyword signals",
            confidence=_clamp(0.5 + 0.1 * top) if hits else 0.3,
            raw={"scores": scores},
        )


class LLMClassification(BaseModel):
    """The exact JSON object the model must return."""

    model_config = ConfigDict(extra="forbid")

    is_hierarchy: StrictBool
    is_client: StrictBool
    is_meeting: StrictBool
    is_escalation: StrictBool
    is_urgent: StrictBool
    suggested_label: str = Field(min_length=1, max_length=64)
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    reasoning: str = ""


class LLMTier(ClassificationTier):
    """Prompts the LLM with category definitions and few-shot examples from similar mail."""

    method = "llm"

    def __init__(
        self,
        llm: Optional[LLMClient],
        embedder: Optional[EmbeddingProvider] = None,
        search: Optional[VectorSearch] = None,
        few_shot_examples: int = 3,
        few_shot_threshold: float = 0.6,
    ):
        self._llm = llm
        self._embedder = embedder
        self._search = search
        self._few_shot_examples = few_shot_examples
        self._few_shot_threshold = few_shot_threshold

    async def try_classify(self, email, resolved):
        if self._llm is None:
            return None

        examples = await self._few_shot(email)
        prompt = self.build_prompt(email, resolved, examples)
        text = await self._llm.complete(prompt, json_mode=True)
        parsed = parse_llm_response(text)

        label = parsed.suggested_label.strip()
        return TierOutcome(
            flags={flag: getattr(parsed, flag) for flag in FLAGS},
            suggested_label=label,
            reasoning=parsed.reasoning,
            confidence=parsed.confidence,
            tokens=estimate_tokens(prompt),
            raw={"model": self._llm.model, "response": text[:2000], "few_shot": len(examples)},
        )

    async def _few_shot(self, email: NormalizedEmail) -> list[dict]:
        if self._embedder is None or self._search is None or self._few_shot_examples <= 0:
            return []
        try:
            if email.embedding is None:
                email.embedding = await self._embedder.embed(email.text)
            if email.embedding is None:
                return []
            hits = await self._search.search(
                email.embedding.vector,
                email.embedding.model,
                EmailScope(
                    owner_user_id=email.owner_user_id,
                    exclude_email_ids=(email.email_id,) if email.email_id is not None else (),
                    classified_only=True,
                    exclude_labels=(UNCATEGORIZED,),
                ),
                limit=self._few_shot_examples,
                threshold=self._few_shot_threshold,
            )
        except UpstreamError as e:
            logger.warning(f"Few-shot lookup skipped: {e}")
            return []

        examples = []
        for hit in hits:
            meta = hit.entity.meta
            examples.append({
                "subject": hit.entity.subject or "(no subject)",
                "label": meta.suggested_label,
                "flags": {flag: getattr(meta, flag) for flag in FLAGS},
                "similarity": round(hit.similarity, 2),
            })
        return examples

    @staticmethod
    def build_prompt(email: NormalizedEmail, resolved: dict[str, bool], examples: list[dict]) -> str:
        known = ""
        if resolved:
            known = "\nALREADY DETERMINED (keep these values):\n" + "\n".join(
                f"- {flag}: {str(value).lower()}" for flag, value in resolved.items()
            ) + "\n"

        example_text = ""
        if examples:
            lines = []
            for i, ex in enumerate(examples, 1):
                on = [flag for flag, value in ex["flags"].items() if value]
                lines.append(
                    f"{i}. Subject: {ex['subject']} -> label: {ex['label']}, "
                    f"flags: {', '.join(on) or 'none'} (similarity {ex['similarity']})"
                )
            example_text = "\nSIMILAR EMAILS ALREADY CLASSIFIED:\n" + "\n".join(lines) + "\n"

        body = smart_truncate(email.body, context_window(email.body))
        return CLASSIFY_PROMPT.format(
            known=known,
            examples=example_text,
            sender=email.sender or "unknown",
            subject=email.subject or "(no subject)",
            body=body or "(empty body)",
        )


def _extract_json(text: str) -> str:
    """Extract JSON from a response that might have markdown wrapping."""
    text = text.strip()

    if text.startswith("```"):
        lines = text.split("\n")
        start = 1 if lines[0].strip().startswith("```") else 0
        end = len(lines)
        for i in range(len(lines) - 1, 0, -1):
            if lines[i].strip() == "```":
                end = i
                break
        text = "\n".join(lines[start:end]).strip()

    brace_start = text.find("{")
    if brace_start == -1:
        return text

    depth = 0
    for i in range(brace_start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[brace_start:i + 1]

    return text[brace_start:]


def parse_llm_response(text: str) -> LLMClassification:
    """Validate the model output strictly. Any deviation is an UpstreamError."""
    try:
        data = json.loads(_extract_json(text))
    except json.JSONDecodeError as e:
        logger.debug(f"Raw LLM response: {text[:500]}")
        raise UpstreamError(f"LLM returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise UpstreamError("LLM response is not a JSON object")
    try:
        return LLMClassification.model_validate(data)
    except SchemaError as e:
        raise UpstreamError(f"LLM response failed schema validation: {e.error_count()} errors") from e


# --- Cascade ---

class _Composition:
    """Accumulates tier outcomes: earlier tiers' flags and label are never overwritten."""

    def __init__(self):
        self.flags: dict[str, bool] = {}
        self.label: Optional[str] = None
        self.label_confidence: Optional[float] = None
        self.first_confidence: Optional[float] = None
        self.method: Optional[str] = None
        self.reasons: list[str] = []
        self.tiers: list[str] = []
        self.declined: list[str] = []
        self.failures: dict[str, str] = {}
        self.raw: dict[str, dict] = {}
        self.tokens = 0

    @property
    def complete(self) -> bool:
        return all(flag in self.flags for flag in FLAGS)

    def apply(self, method: str, outcome: TierOutcome):
        contributed = False
        for flag, value in outcome.flags.items():
            if flag in FLAGS and flag not in self.flags:
                self.flags[flag] = bool(value)
                contributed = True
        if self.label is None and outcome.suggested_label:
            self.label = outcome.suggested_label
            self.label_confidence = _clamp(outcome.confidence)
            contributed = True
        if not contributed:
            self.declined.append(method)
            return

        if self.method is None:
            self.method = method
            self.first_confidence = _clamp(outcome.confidence)
        self.tiers.append(method)
        if outcome.reasoning:
            self.reasons.append(outcome.reasoning)
        if outcome.raw is not None:
            self.raw[method] = outcome.raw
        self.tokens += outcome.tokens


class ClassificationCascade:
    """Runs the tier list in order until all five flags are resolved. Never raises."""

    def __init__(
        self,
        tiers: list[ClassificationTier],
        fallback: Optional[RegexTier] = None,
        options: NormalizeOptions = DEFAULT_OPTIONS,
    ):
        self._tiers = tiers
        self._fallback = fallback or next((t for t in tiers if isinstance(t, RegexTier)), RegexTier())
        self._options = options

    def prepare(self, email, owner_user_id: Optional[int] = None) -> NormalizedEmail:
        subject, body = normalize(email.subject, email.body, self._options)
        return NormalizedEmail(
            email_id=getattr(email, "id", None),
            sender=email.sender or "",
            address=sender_address(email.sender),
            domain=sender_domain(email.sender),
            subject=subject,
            body=body,
            fingerprint=fingerprint(email.sender, subject, body),
            owner_user_id=owner_user_id,
        )

    async def classify(self, email, owner_user_id: Optional[int] = None) -> ClassificationResult:
        prepared = self.prepare(email, owner_user_id)
        state = _Composition()

        for tier in self._tiers:
            if state.complete:
                break
            try:
                outcome = await tier.try_classify(prepared, dict(state.flags))
            except UpstreamError as e:
                logger.warning(f"{tier.method} tier failed for email {prepared.email_id}, degrading: {e}")
                state.failures[tier.method] = str(e)
                continue
            except Exception as e:
                logger.error(f"{tier.method} tier error for email {prepared.email_id}: {e}")
                state.failures[tier.method] = str(e)
                continue

            if outcome is None:
                state.declined.append(tier.method)
                continue
            state.apply(tier.method, outcome)

        if not state.complete:
            state.apply("regex", self._fallback.fallback(prepared))

        return self._result(prepared, state)

    @staticmethod
    def _result(prepared: NormalizedEmail, state: _Composition) -> ClassificationResult:
        llm_used = "llm" in state.tiers
        confidence = state.label_confidence if state.label is not None else state.first_confidence
        result = ClassificationResult(
            suggested_label=state.label,
            reasoning=" | ".join(state.reasons),
            method_used=state.method or "regex",
            confidence=confidence if confidence is not None else 0.0,
            fingerprint=prepared.fingerprint,
            estimated_tokens=state.tokens if llm_used else 0,
            tokens_saved=0 if llm_used else estimate_tokens(prepared.text),
            audit={
                "tiers": state.tiers,
                "declined": state.declined,
                "failures": state.failures,
                "raw": state.raw,
            },
            embedding=prepared.embedding,
        )
        for flag in FLAGS:
            setattr(result, flag, state.flags.get(flag, False))
        return result


def build_cascade(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    llm: Optional[LLMClient],
    embedder: Optional[EmbeddingProvider],
    search: Optional[VectorSearch],
    rules: list[DomainRule],
) -> ClassificationCascade:
    regex = RegexTier(min_score=settings.regex_min_score)
    tiers = [
        CacheTier(session_factory, ttl_days=settings.cache_ttl_days),
        DomainTier(rules),
        regex,
        LLMTier(
            llm,
            embedder,
            search,
            few_shot_examples=settings.few_shot_examples,
            few_shot_threshold=settings.few_shot_threshold,
        ),
    ]
    return ClassificationCascade(
        tiers,
        fallback=regex,
        options=NormalizeOptions(max_length=settings.normalizer_max_length),
    )
