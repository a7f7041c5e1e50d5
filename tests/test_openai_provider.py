import datetime as dt
from collections.abc import Generator
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from gasto_categorizer.core.errors import AIProviderError, EmbeddingError
from gasto_categorizer.integration.openai_provider import (
    OpenAIEmbeddingProvider,
    OpenAIExtractionProvider,
    build_instructions,
    build_prompt,
    parse_extraction,
)
from gasto_categorizer.models import TransactionKind


@pytest.fixture
def mock_openai_client() -> Generator[MagicMock, None, None]:
    with patch("gasto_categorizer.integration.openai_provider.OpenAI") as mock:
        yield mock


def test_parse_extraction_reads_json_with_surrounding_text() -> None:
    raw = (
        "Aqui está:\n"
        '{"type": "EXPENSES", "amount": "1.500,50", "category": "Moradia", '
        '"subCategory": "Aluguel", "description": null, "date": "2026-03-01", '
        '"merchant": "null", "confidence": 1.4}'
    )
    extraction = parse_extraction(raw)

    assert extraction.kind == TransactionKind.EXPENSE
    assert extraction.amount == Decimal("1500.50")
    assert extraction.category == "Moradia"
    assert extraction.sub_category == "Aluguel"
    assert extraction.description is None
    assert extraction.merchant is None
    assert extraction.date == dt.date(2026, 3, 1)
    assert extraction.confidence == 1.0


def test_parse_extraction_income_and_bad_values() -> None:
    extraction = parse_extraction('{"type": "income", "amount": 10.5, "confidence": "alta"}')
    assert extraction.kind == TransactionKind.INCOME
    assert extraction.amount == Decimal("10.5")
    assert extraction.confidence == 0.0
    assert extraction.category is None


@pytest.mark.parametrize("raw", ["sem json aqui", "{not json}", "[1, 2]"])
def test_parse_extraction_rejects_garbage(raw: str) -> None:
    with pytest.raises(AIProviderError):
        parse_extraction(raw)


def test_prompt_lists_categories() -> None:
    prompt = build_prompt("Gastei 50 no mercado", ["Alimentação > Supermercado", "Saúde"])
    assert '"Gastei 50 no mercado"' in prompt
    assert "- Alimentação > Supermercado" in prompt
    assert "- Saúde" in prompt
    assert "HOJE é 2026-03-15" in build_instructions(dt.date(2026, 3, 15))


@pytest.mark.anyio
async def test_extract_transaction(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_response = MagicMock()
    mock_response.output_text = (
        '{"type": "EXPENSES", "amount": 50, "category": "Alimentação", '
        '"subCategory": "Supermercado", "confidence": 0.9}'
    )
    mock_instance.responses.create.return_value = mock_response

    provider = OpenAIExtractionProvider(api_key="sk-fake", model="gpt-4o-mini")
    extraction = await provider.extract_transaction("Gastei 50 no mercado", ["Alimentação > Supermercado"])

    assert extraction.category == "Alimentação"
    assert extraction.sub_category == "Supermercado"
    assert extraction.confidence == 0.9
    mock_instance.responses.create.assert_called_once()
    kwargs = mock_instance.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.0
    assert "Alimentação > Supermercado" in kwargs["input"]


@pytest.mark.anyio
async def test_extract_transaction_reads_output_blocks(mock_openai_client: MagicMock) -> None:
    block = MagicMock(type="output_text", text='{"category": "Saúde", "confidence": 0.6}')
    item = MagicMock(content=[block])
    mock_response = MagicMock(output_text=None, output=[item])
    mock_openai_client.return_value.responses.create.return_value = mock_response

    provider = OpenAIExtractionProvider(api_key="sk-fake")
    extraction = await provider.extract_transaction("farmácia 30", [])

    assert extraction.category == "Saúde"


@pytest.mark.anyio
async def test_extract_transaction_wraps_sdk_errors(mock_openai_client: MagicMock) -> None:
    mock_openai_client.return_value.responses.create.side_effect = RuntimeError("rate limited")

    provider = OpenAIExtractionProvider(api_key="sk-fake")
    with pytest.raises(AIProviderError):
        await provider.extract_transaction("gastei 10", [])


@pytest.mark.anyio
async def test_extract_transaction_uses_given_date(mock_openai_client: MagicMock) -> None:
    mock_instance = mock_openai_client.return_value
    mock_instance.responses.create.return_value = MagicMock(output_text='{"category": "Saúde", "confidence": 0.6}')

    provider = OpenAIExtractionProvider(api_key="sk-fake")
    await provider.extract_transaction("farmácia ontem", [], today=dt.date(2026, 3, 15))

    kwargs = mock_instance.responses.create.call_args.kwargs
    assert "HOJE é 2026-03-15" in kwargs["instructions"]


@pytest.mark.anyio
async def test_embedding_provider(mock_openai_client: MagicMock) -> None:
    mock_response = MagicMock()
    mock_response.data = [MagicMock(embedding=[0.1, 0.2])]
    mock_openai_client.return_value.embeddings.create.return_value = mock_response

    provider = OpenAIEmbeddingProvider(api_key="sk-fake")
    assert await provider.embed("mercado") == [0.1, 0.2]

    mock_openai_client.return_value.embeddings.create.side_effect = RuntimeError("down")
    with pytest.raises(EmbeddingError):
        await provider.embed("mercado")
