import asyncio
import datetime as dt
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import StrEnum

from gasto_categorizer.core.errors import EmbeddingError
from gasto_categorizer.core.settings import EngineSettings
from gasto_categorizer.domain import messages
from gasto_categorizer.domain.timefmt import utcnow
from gasto_categorizer.interfaces import AIExtractionProvider, EmbeddingProvider
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import (
    AIExtraction,
    CategoryEntry,
    Provenance,
    ResolutionResult,
    ScoredMatch,
    TransactionKind,
)
from gasto_categorizer.retrieval.index import CategoryIndex
from gasto_categorizer.retrieval.scorer import RetrievalScorer
from gasto_categorizer.retrieval.text import normalize
from gasto_categorizer.services.corpus import CorpusLoader, render_category_context
from gasto_categorizer.services.extraction import (
    detect_kind,
    extract_basic,
    extract_description,
    parse_amount,
    parse_temporal,
)

logger = get_logger(__name__)


class RejectionReason(StrEnum):
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NO_CATEGORY = "NO_CATEGORY"
    NO_CATEGORIES = "NO_CATEGORIES"


_REJECTION_MESSAGES = {
    RejectionReason.LOW_CONFIDENCE: messages.MORE_SPECIFIC,
    RejectionReason.INVALID_AMOUNT: messages.INVALID_AMOUNT,
    RejectionReason.NO_CATEGORY: messages.MORE_SPECIFIC,
    RejectionReason.NO_CATEGORIES: messages.NO_CATEGORIES,
}


@dataclass(frozen=True)
class Candidate:
    """A resolution proposal that has not been validated yet."""
    kind: TransactionKind
    amount: Decimal | None
    category_name: str | None
    confidence: float
    provenance: Provenance
    date: dt.date
    sub_category_name: str | None = None
    category_id: str | None = None
    sub_category_id: str | None = None
    description: str | None = None
    merchant: str | None = None


@dataclass(frozen=True)
class DirectMatch:
    candidate: Candidate
    matches: list[ScoredMatch] = field(default_factory=list)


@dataclass(frozen=True)
class NeedsAI:
    kind: TransactionKind
    matches: list[ScoredMatch] = field(default_factory=list)


@dataclass(frozen=True)
class Resolved:
    result: ResolutionResult


@dataclass(frozen=True)
class Unresolved:
    reason: RejectionReason
    message: str

    @classmethod
    def because(cls, reason: RejectionReason) -> "Unresolved":
        return cls(reason=reason, message=_REJECTION_MESSAGES[reason])


def _filter_kind(corpus: Sequence[CategoryEntry], kind: TransactionKind) -> list[CategoryEntry]:
    return [entry for entry in corpus if entry.transaction_kind == kind]


def _from_entry(candidate: Candidate, entry: CategoryEntry) -> Candidate:
    return replace(
        candidate,
        category_name=entry.category_name,
        sub_category_name=entry.sub_category_name,
        category_id=entry.category_id,
        sub_category_id=entry.sub_category_id,
    )


def direct_phase(
    text: str,
    corpus: Sequence[CategoryEntry],
    scorer: RetrievalScorer,
    settings: EngineSettings,
    today: dt.date,
    *,
    recency: Sequence[str] = (),
    query_embedding: Sequence[float] | None = None,
) -> DirectMatch | NeedsAI:
    """Phase 1: keyword kind detection plus retrieval over the kind's entries."""
    kind = detect_kind(text) or TransactionKind.EXPENSE
    candidates = _filter_kind(corpus, kind)

    matches: list[ScoredMatch] = []
    if query_embedding is not None:
        try:
            matches = scorer.score_vector(
                query_embedding,
                candidates,
                min_score=settings.rag_min_score,
                max_results=settings.rag_max_results,
                recency=recency,
            )
        except EmbeddingError as exc:
            logger.warning("[RESOLVE] Vector scoring failed, using lexical: %s", exc)
            query_embedding = None
    if query_embedding is None:
        matches = scorer.score(
            text,
            candidates,
            min_score=settings.rag_min_score,
            max_results=settings.rag_max_results,
            recency=recency,
        )

    if not matches or matches[0].score < settings.rag_threshold:
        return NeedsAI(kind=kind, matches=matches)

    best = matches[0]
    basic = extract_basic(text, today)
    candidate = Candidate(
        kind=kind,
        amount=basic.amount,
        category_name=best.entry.category_name,
        confidence=best.score,
        provenance=Provenance.RAG_DIRECT,
        date=basic.date,
        description=basic.description,
    )
    return DirectMatch(candidate=_from_entry(candidate, best.entry), matches=matches)


def revalidate_phase(
    text: str,
    extraction: AIExtraction,
    corpus: Sequence[CategoryEntry],
    scorer: RetrievalScorer,
    settings: EngineSettings,
    today: dt.date,
    *,
    recency: Sequence[str] = (),
) -> Candidate:
    """Phase 3: check the AI's category against the corpus of its kind."""
    kind = extraction.kind or detect_kind(text) or TransactionKind.EXPENSE
    candidate = Candidate(
        kind=kind,
        amount=extraction.amount if extraction.amount is not None else parse_amount(text),
        category_name=extraction.category,
        sub_category_name=extraction.sub_category,
        confidence=max(0.0, min(extraction.confidence, 1.0)),
        provenance=Provenance.AI_ONLY,
        date=extraction.date or parse_temporal(text, today),
        description=extraction.description or extract_description(text),
        merchant=extraction.merchant,
    )
    if not extraction.category:
        return candidate

    query = " ".join(
        part
        for part in (
            extraction.sub_category,
            extraction.category,
            extraction.description,
            extraction.merchant,
        )
        if part
    )
    matches = scorer.score(
        query,
        _filter_kind(corpus, kind),
        min_score=settings.rag_revalidation_threshold,
        max_results=1,
        recency=recency,
    )
    if not matches:
        return candidate

    best = matches[0]
    confidence = min(candidate.confidence + best.score * settings.rag_confidence_blend, 1.0)
    return replace(
        _from_entry(candidate, best.entry),
        confidence=round(confidence, 6),
        provenance=Provenance.AI_RAG_VALIDATED,
    )


@dataclass(frozen=True)
class NameMatch:
    category_id: str
    category_name: str
    sub_category_id: str | None = None
    sub_category_name: str | None = None


def match_category_names(
    corpus: Sequence[CategoryEntry],
    kind: TransactionKind,
    category_name: str,
    sub_category_name: str | None = None,
) -> NameMatch | None:
    """Case- and accent-insensitive exact lookup of names within one kind."""
    wanted = normalize(category_name)
    in_category = [
        entry for entry in _filter_kind(corpus, kind) if normalize(entry.category_name) == wanted
    ]
    if not in_category:
        return None
    first = in_category[0]
    if sub_category_name:
        wanted_sub = normalize(sub_category_name)
        for entry in in_category:
            if entry.sub_category_name and normalize(entry.sub_category_name) == wanted_sub:
                return NameMatch(
                    category_id=entry.category_id,
                    category_name=entry.category_name,
                    sub_category_id=entry.sub_category_id,
                    sub_category_name=entry.sub_category_name,
                )
    return NameMatch(category_id=first.category_id, category_name=first.category_name)


def _resolve_ids(candidate: Candidate, corpus: Sequence[CategoryEntry]) -> Candidate:
    if candidate.category_id is not None or not candidate.category_name:
        return candidate
    match = match_category_names(
        corpus, candidate.kind, candidate.category_name, candidate.sub_category_name
    )
    if match is None:
        return candidate
    return replace(
        candidate,
        category_id=match.category_id,
        category_name=match.category_name,
        sub_category_id=match.sub_category_id,
        sub_category_name=match.sub_category_name or candidate.sub_category_name,
    )


def finalize(
    candidate: Candidate,
    corpus: Sequence[CategoryEntry],
    settings: EngineSettings,
) -> Resolved | Unresolved:
    if candidate.amount is None or candidate.amount <= 0:
        return Unresolved.because(RejectionReason.INVALID_AMOUNT)
    if not candidate.category_name:
        return Unresolved.because(RejectionReason.NO_CATEGORY)
    if candidate.confidence < settings.min_confidence:
        return Unresolved.because(RejectionReason.LOW_CONFIDENCE)

    resolved = _resolve_ids(candidate, corpus)
    return Resolved(
        result=ResolutionResult(
            transaction_kind=resolved.kind,
            amount=resolved.amount,
            category_name=resolved.category_name,
            sub_category_name=resolved.sub_category_name,
            category_id=resolved.category_id,
            sub_category_id=resolved.sub_category_id,
            confidence=resolved.confidence,
            provenance=resolved.provenance,
            date=resolved.date,
            description=resolved.description,
            merchant=resolved.merchant,
        )
    )


class ResolutionOrchestrator:
    """Runs retrieval first, then the AI provider, then retrieval revalidation."""

    def __init__(
        self,
        corpus: CorpusLoader,
        index: CategoryIndex,
        *,
        ai: AIExtractionProvider | None = None,
        embedder: EmbeddingProvider | None = None,
        scorer: RetrievalScorer | None = None,
        settings: EngineSettings | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.corpus = corpus
        self.index = index
        self.ai = ai
        self.embedder = embedder
        self.scorer = scorer or RetrievalScorer()
        self.settings = settings or EngineSettings()
        self._clock = clock

    async def _embed_query(self, text: str) -> list[float] | None:
        if not (self.settings.rag_vector_enabled and self.embedder):
            return None
        try:
            return await self.embedder.embed(text)
        except EmbeddingError as exc:
            logger.warning("[RESOLVE] Query embedding failed, using lexical: %s", exc)
            return None

    async def resolve(self, text: str, user_id: str, account_id: str) -> Resolved | Unresolved:
        corpus = await self.corpus.load(user_id, account_id)
        if not corpus:
            logger.info("[RESOLVE] No categories for user %s account %s.", user_id, account_id)
            return Unresolved.because(RejectionReason.NO_CATEGORIES)

        today = self._clock().date()
        recency = self.index.recent(user_id)
        phase = direct_phase(
            text,
            corpus,
            self.scorer,
            self.settings,
            today,
            recency=recency,
            query_embedding=await self._embed_query(text),
        )
        if isinstance(phase, DirectMatch):
            logger.info(
                "[RESOLVE] Direct match '%s' (score %.2f) for: '%s'",
                phase.candidate.category_name,
                phase.candidate.confidence,
                text[:50],
            )
            return finalize(phase.candidate, corpus, self.settings)

        best = phase.matches[0].score if phase.matches else 0.0
        if self.ai is None:
            logger.info("[RESOLVE] Best score %.2f below threshold and no AI provider.", best)
            return Unresolved.because(RejectionReason.LOW_CONFIDENCE)

        logger.info("[RESOLVE] Best score %.2f below threshold, asking AI.", best)
        try:
            extraction = await asyncio.wait_for(
                self.ai.extract_transaction(text, render_category_context(corpus), today=today),
                timeout=self.settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "[RESOLVE] AI extraction timed out after %.1fs.", self.settings.ai_timeout_seconds
            )
            return Unresolved.because(RejectionReason.LOW_CONFIDENCE)
        except Exception as exc:
            logger.error("[RESOLVE] AI extraction failed: %s", exc)
            return Unresolved.because(RejectionReason.LOW_CONFIDENCE)

        candidate = revalidate_phase(
            text,
            extraction,
            corpus,
            self.scorer,
            self.settings,
            today,
            recency=recency,
        )
        logger.info(
            "[RESOLVE] %s '%s' (confidence %.2f) for: '%s'",
            candidate.provenance.value,
            candidate.category_name,
            candidate.confidence,
            text[:50],
        )
        return finalize(candidate, corpus, self.settings)
