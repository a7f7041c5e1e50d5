import pytest

from gasto_categorizer.core.errors import EmbeddingError
from gasto_categorizer.models import CategoryEntry, MatchSource, TransactionKind
from gasto_categorizer.retrieval.scorer import RetrievalScorer, cosine_similarity


def _expenses(corpus: list[CategoryEntry]) -> list[CategoryEntry]:
    return [entry for entry in corpus if entry.transaction_kind == TransactionKind.EXPENSE]


def test_exact_token_scores_one(corpus: list[CategoryEntry]) -> None:
    matches = RetrievalScorer().score("uber pro aeroporto", _expenses(corpus))
    assert matches[0].entry.sub_category_id == "s-uber"
    assert matches[0].score == 1.0
    assert matches[0].source == MatchSource.LEXICAL
    assert matches[0].matched_terms == ["uber"]


def test_synonym_match_scores_lower_than_exact(corpus: list[CategoryEntry]) -> None:
    matches = RetrievalScorer().score("Gastei 50 no mercado", _expenses(corpus))
    assert len(matches) == 1
    assert matches[0].entry.sub_category_id == "s-market"
    assert matches[0].score == pytest.approx(0.8)


def test_mixed_exact_and_synonym(corpus: list[CategoryEntry]) -> None:
    matches = RetrievalScorer().score("almoço no restaurante", _expenses(corpus))
    assert matches[0].entry.sub_category_id == "s-restaurant"
    assert matches[0].score == pytest.approx(0.9)


def test_fuzzy_match_tolerates_typos(corpus: list[CategoryEntry]) -> None:
    matches = RetrievalScorer().score("supermecado", _expenses(corpus))
    assert matches[0].entry.sub_category_id == "s-market"
    assert matches[0].score == pytest.approx(0.861, abs=1e-3)


def test_min_score_filters_and_max_results_truncates(corpus: list[CategoryEntry]) -> None:
    scorer = RetrievalScorer()
    assert scorer.score("mercado", _expenses(corpus), min_score=0.85) == []
    matches = scorer.score("transporte alimentacao", _expenses(corpus), max_results=2)
    assert len(matches) == 2


def test_unmatched_query_returns_nothing(corpus: list[CategoryEntry]) -> None:
    assert RetrievalScorer().score("xyz qwerty", corpus) == []
    assert RetrievalScorer().score("de no na", corpus) == []
    assert RetrievalScorer().score("uber", []) == []


def test_ties_break_by_recency_then_shorter_text(corpus: list[CategoryEntry]) -> None:
    scorer = RetrievalScorer()
    entries = _expenses(corpus)

    plain = scorer.score("transporte alimentacao", entries, max_results=4)
    assert [m.score for m in plain] == [0.5, 0.5, 0.5, 0.5]
    assert [m.entry.sub_category_id for m in plain] == [
        "s-uber",
        "s-fuel",
        "s-restaurant",
        "s-market",
    ]

    recent = scorer.score("transporte alimentacao", entries, max_results=4, recency=["c-food"])
    assert [m.entry.sub_category_id for m in recent] == [
        "s-restaurant",
        "s-market",
        "s-uber",
        "s-fuel",
    ]


def test_scoring_is_deterministic(corpus: list[CategoryEntry]) -> None:
    scorer = RetrievalScorer()
    first = scorer.score("transporte alimentacao", corpus, max_results=5)
    second = scorer.score("transporte alimentacao", list(reversed(corpus)), max_results=5)
    assert [m.model_dump() for m in first] == [m.model_dump() for m in second]


def test_vector_scoring(corpus: list[CategoryEntry]) -> None:
    entries = [
        corpus[0].model_copy(update={"embedding": [1.0, 0.0]}),
        corpus[1].model_copy(update={"embedding": [0.0, 1.0]}),
        corpus[2],
    ]
    matches = RetrievalScorer().score_vector([1.0, 0.1], entries, min_score=0.5)
    assert len(matches) == 1
    assert matches[0].entry.sub_category_id == corpus[0].sub_category_id
    assert matches[0].source == MatchSource.VECTOR


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(EmbeddingError):
        cosine_similarity([1.0], [1.0, 2.0])
