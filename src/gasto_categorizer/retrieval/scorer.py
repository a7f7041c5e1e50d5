import math
from collections.abc import Sequence

from rapidfuzz import fuzz

from gasto_categorizer.core.errors import EmbeddingError
from gasto_categorizer.models import CategoryEntry, MatchSource, ScoredMatch
from gasto_categorizer.retrieval.text import are_synonyms, tokenize

EXACT_STRENGTH = 1.0
SYNONYM_STRENGTH = 0.8
FUZZY_WEIGHT = 0.9
FUZZY_MIN_RATIO = 85.0


def _token_strength(query_token: str, entry_tokens: Sequence[str]) -> float:
    best = 0.0
    for entry_token in entry_tokens:
        if entry_token == query_token:
            return EXACT_STRENGTH
        if are_synonyms(query_token, entry_token):
            best = max(best, SYNONYM_STRENGTH)
            continue
        ratio = fuzz.ratio(query_token, entry_token)
        if ratio >= FUZZY_MIN_RATIO:
            best = max(best, FUZZY_WEIGHT * ratio / 100.0)
    return best


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise EmbeddingError(f"Embedding dimensions differ ({len(left)} != {len(right)})")
    dot = sum(a * b for a, b in zip(left, right))
    norm_left = math.sqrt(sum(a * a for a in left))
    norm_right = math.sqrt(sum(b * b for b in right))
    if norm_left == 0 or norm_right == 0:
        return 0.0
    return dot / (norm_left * norm_right)


class RetrievalScorer:
    """Ranks category entries against free text.

    Lexical scoring is an IDF-weighted overlap: every query token that matches
    at least one candidate contributes ``ln(1 + N / df)`` to the denominator
    and ``idf * strength`` to each entry it matches. Tokens matching nothing
    are ignored. Callers filter entries by account and kind beforehand.
    """

    def score(
        self,
        text: str,
        entries: Sequence[CategoryEntry],
        *,
        min_score: float = 0.0,
        max_results: int = 3,
        recency: Sequence[str] = (),
    ) -> list[ScoredMatch]:
        if not entries:
            return []
        query_tokens = list(dict.fromkeys(tokenize(text)))
        if not query_tokens:
            return []

        entry_tokens = [tokenize(entry.search_text) for entry in entries]
        strengths = [
            {token: _token_strength(token, tokens) for token in query_tokens}
            for tokens in entry_tokens
        ]

        total = len(entries)
        idf: dict[str, float] = {}
        for token in query_tokens:
            df = sum(1 for row in strengths if row[token] > 0)
            if df:
                idf[token] = math.log(1 + total / df)
        if not idf:
            return []
        denominator = sum(idf.values())

        matches: list[ScoredMatch] = []
        for entry, row in zip(entries, strengths):
            numerator = sum(idf[token] * row[token] for token in idf)
            if numerator <= 0:
                continue
            matches.append(
                ScoredMatch(
                    entry=entry,
                    score=round(min(numerator / denominator, 1.0), 6),
                    source=MatchSource.LEXICAL,
                    matched_terms=[token for token in idf if row[token] > 0],
                )
            )
        return self._rank(matches, min_score, max_results, recency)

    def score_vector(
        self,
        query_embedding: Sequence[float],
        entries: Sequence[CategoryEntry],
        *,
        min_score: float = 0.0,
        max_results: int = 3,
        recency: Sequence[str] = (),
    ) -> list[ScoredMatch]:
        matches: list[ScoredMatch] = []
        for entry in entries:
            if not entry.embedding:
                continue
            similarity = cosine_similarity(query_embedding, entry.embedding)
            matches.append(
                ScoredMatch(
                    entry=entry,
                    score=round(min(max(similarity, 0.0), 1.0), 6),
                    source=MatchSource.VECTOR,
                )
            )
        return self._rank(matches, min_score, max_results, recency)

    @staticmethod
    def _rank(
        matches: list[ScoredMatch],
        min_score: float,
        max_results: int,
        recency: Sequence[str],
    ) -> list[ScoredMatch]:
        recency_rank: dict[str, int] = {}
        for category_id in recency:
            recency_rank.setdefault(category_id, len(recency_rank))
        fallback_rank = len(recency_rank)

        def sort_key(match: ScoredMatch) -> tuple:
            entry = match.entry
            return (
                -match.score,
                recency_rank.get(entry.category_id, fallback_rank),
                len(entry.search_text),
                entry.category_name,
                entry.sub_category_name or "",
                entry.category_id,
                entry.sub_category_id or "",
            )

        kept = [match for match in matches if match.score >= min_score]
        kept.sort(key=sort_key)
        return kept[:max_results]
