import asyncio
import datetime as dt
import json
import os
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from openai import OpenAI

from gasto_categorizer.core.errors import AIProviderError, EmbeddingError
from gasto_categorizer.domain.dates import parse_date
from gasto_categorizer.interfaces import AIExtractionProvider, EmbeddingProvider
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import AIExtraction, TransactionKind

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def build_instructions(today: dt.date) -> str:
    return f"""Você é um assistente especializado em extrair informações de transações financeiras de textos em português do Brasil.

Extraia da mensagem:
- type: EXPENSES para gastos ou INCOME para receitas
- amount: valor em reais como número decimal (150,50 vira 150.50; 1.500,00 vira 1500.00)
- category e subCategory: use EXATAMENTE os nomes da lista de categorias do usuário
- description: apenas o item ou produto específico, sem valor, moeda ou categoria; null se não houver
- date: formato ISO 8601 (YYYY-MM-DD) ou null; HOJE é {today.isoformat()}
  ("ontem" = 1 dia antes, "anteontem" = 2 dias antes, "semana passada" = 7 dias antes)
- merchant: estabelecimento mencionado ou null
- confidence: número entre 0 e 1 indicando sua certeza

Responda APENAS com um objeto JSON válido."""


def build_prompt(text: str, category_context: list[str]) -> str:
    prompt = f'Extraia os dados da seguinte mensagem: "{text}"'
    if category_context:
        lines = "\n".join(f"- {label}" for label in category_context)
        prompt += f"\n\nCategorias disponíveis (Categoria > Subcategoria):\n{lines}"
        prompt += "\n\nSe nenhuma subcategoria servir, use subCategory null."
    prompt += """

Exemplo: "Gastei 50 no mercado" ->
{"type": "EXPENSES", "amount": 50.0, "category": "Alimentação", "subCategory": "Supermercado", "description": null, "date": null, "merchant": null, "confidence": 0.95}"""
    return prompt


def _extract_output_text(response: object) -> str | None:
    output_text = getattr(response, "output_text", None)
    if output_text:
        return output_text

    output = getattr(response, "output", None)
    if not output:
        return None

    parts: list[str] = []
    for item in output:
        content = getattr(item, "content", None)
        if not content:
            continue
        for block in content:
            block_type = getattr(block, "type", None)
            if block_type in {"output_text", "text"}:
                text = getattr(block, "text", None)
                if text:
                    parts.append(text)

    if parts:
        return "".join(parts)
    return None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def _to_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(confidence, 1.0))


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none"}:
        return None
    return text


def parse_extraction(raw_text: str) -> AIExtraction:
    match = _JSON_BLOCK.search(raw_text)
    if match is None:
        raise AIProviderError(f"No JSON object in AI answer: {raw_text[:100]!r}")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AIProviderError(f"Invalid JSON from AI: {exc}") from exc
    if not isinstance(payload, dict):
        raise AIProviderError("AI answer is not a JSON object")

    kind_raw = str(payload.get("type") or "").upper()
    kind = None
    if kind_raw in {"EXPENSES", "EXPENSE"}:
        kind = TransactionKind.EXPENSE
    elif kind_raw == "INCOME":
        kind = TransactionKind.INCOME

    return AIExtraction(
        kind=kind,
        amount=_to_decimal(payload.get("amount")),
        category=_clean(payload.get("category")),
        sub_category=_clean(payload.get("subCategory") or payload.get("sub_category")),
        description=_clean(payload.get("description")),
        date=parse_date(_clean(payload.get("date")), default=None),
        merchant=_clean(payload.get("merchant")),
        confidence=_to_confidence(payload.get("confidence")),
    )


class OpenAIExtractionProvider(AIExtractionProvider):
    def __init__(self, api_key: str | None = None, model: str = DEFAULT_MODEL, base_url: str | None = None):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model

    def _extract_sync(
        self, text: str, category_context: list[str], today: dt.date | None = None
    ) -> AIExtraction:
        try:
            response = self.client.responses.create(
                model=self.model,
                instructions=build_instructions(today or dt.date.today()),
                input=build_prompt(text, category_context),
                temperature=0.0,
            )
        except Exception as exc:
            raise AIProviderError(f"OpenAI request failed: {exc}") from exc

        output = _extract_output_text(response)
        if output is None:
            raise AIProviderError("Empty answer from OpenAI")
        extraction = parse_extraction(output)
        logger.debug(
            "[AI] Extracted '%s > %s' (confidence %.2f).",
            extraction.category,
            extraction.sub_category,
            extraction.confidence,
        )
        return extraction

    async def extract_transaction(
        self, text: str, category_context: list[str], *, today: dt.date | None = None
    ) -> AIExtraction:
        return await asyncio.to_thread(self._extract_sync, text, category_context, today)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        base_url: str | None = None,
    ):
        self.client = OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
        )
        self.model = model

    def _embed_sync(self, text: str) -> list[float]:
        try:
            response = self.client.embeddings.create(model=self.model, input=text)
        except Exception as exc:
            raise EmbeddingError(f"OpenAI embedding failed: {exc}") from exc
        data = getattr(response, "data", None)
        if not data:
            raise EmbeddingError("Empty embedding response")
        vector = list(getattr(data[0], "embedding", None) or [])
        if not vector:
            raise EmbeddingError("Empty embedding vector")
        return vector

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)
