"""Rule-based extraction used when retrieval resolves a message without AI."""
import calendar
import datetime as dt
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from gasto_categorizer.models import TransactionKind
from gasto_categorizer.retrieval.text import STOP_WORDS, normalize, strip_diacritics

EXPENSE_KEYWORDS = frozenset({
    "gastei", "paguei", "comprei", "gasto", "pago", "compra", "despesa",
    "debito", "saiu", "saque",
})
INCOME_KEYWORDS = frozenset({
    "recebi", "recebido", "receita", "salario", "rendimento", "pagamento",
    "entrou", "deposito", "ganho", "ganhei", "entrada",
})

_DATE_WORDS = frozenset({
    "hoje", "ontem", "anteontem", "amanha", "antes", "dia", "semana", "mes", "passado", "passada",
})

_CURRENCY_AMOUNT = re.compile(
    r"r\$\s*(\d{1,3}(?:\.\d{3})+|\d+)(?:,(\d{1,2})|\.(\d{1,2})(?!\d))?",
    re.IGNORECASE,
)
_BARE_AMOUNT = re.compile(
    r"(?<![\d/])(\d{1,3}(?:\.\d{3})+|\d+)(?:,(\d{1,2})|\.(\d{1,2})(?!\d))?(?![\d/])"
)
_NUMERIC_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?\b")
_DAY_OF_MONTH = re.compile(r"\bdia\s+(\d{1,2})\b", re.IGNORECASE)
_CURRENCY_TOKEN = re.compile(r"^(?:r\$)?[\d.,]*$", re.IGNORECASE)

MAX_DESCRIPTION_LENGTH = 100
MIN_DESCRIPTION_LENGTH = 5


@dataclass(frozen=True)
class BasicExtraction:
    kind: TransactionKind | None
    amount: Decimal | None
    date: dt.date
    description: str | None


def detect_kind(text: str) -> TransactionKind | None:
    """Expense keywords win over income keywords; None when neither appears."""
    tokens = set(normalize(text).split())
    if tokens & EXPENSE_KEYWORDS:
        return TransactionKind.EXPENSE
    if tokens & INCOME_KEYWORDS:
        return TransactionKind.INCOME
    return None


def _to_decimal(integer_part: str, cents: str | None) -> Decimal | None:
    digits = integer_part.replace(".", "")
    if cents:
        digits = f"{digits}.{cents.ljust(2, '0')}"
    try:
        return Decimal(digits)
    except InvalidOperation:
        return None


def parse_amount(text: str) -> Decimal | None:
    """Find the amount in a message: "R$ 1.500,00", "50,90", "12.5" or "50"."""
    match = _CURRENCY_AMOUNT.search(text)
    if match is None:
        scrubbed = _DAY_OF_MONTH.sub(" ", _NUMERIC_DATE.sub(" ", text))
        match = _BARE_AMOUNT.search(scrubbed)
    if match is None:
        return None
    return _to_decimal(match.group(1), match.group(2) or match.group(3))


def _shift_months(value: dt.date, months: int) -> dt.date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _with_day(value: dt.date, day: int) -> dt.date:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=min(day, last_day))


def parse_temporal(text: str, today: dt.date) -> dt.date:
    """Resolve relative Portuguese date expressions against ``today``."""
    numeric = _NUMERIC_DATE.search(text)
    if numeric:
        day, month = int(numeric.group(1)), int(numeric.group(2))
        year_raw = numeric.group(3)
        year = today.year
        if year_raw:
            year = int(year_raw) + (2000 if len(year_raw) == 2 else 0)
        try:
            return dt.date(year, month, day)
        except ValueError:
            pass

    normalized = normalize(text)
    if re.search(r"\b(anteontem|antes de ontem)\b", normalized):
        return today - dt.timedelta(days=2)
    if re.search(r"\bontem\b", normalized):
        return today - dt.timedelta(days=1)
    if re.search(r"\bamanha\b", normalized):
        return today + dt.timedelta(days=1)
    if re.search(r"\b(semana passada|ultima semana)\b", normalized):
        return today - dt.timedelta(weeks=1)

    base = today
    month_shifted = False
    if re.search(r"\b(mes passado|ultimo mes)\b", normalized):
        base = _shift_months(today, -1)
        month_shifted = True

    day_match = _DAY_OF_MONTH.search(normalized)
    if day_match:
        day = int(day_match.group(1))
        if 1 <= day <= 31:
            candidate = _with_day(base, day)
            if not month_shifted and candidate > today:
                candidate = _with_day(_shift_months(base.replace(day=1), -1), day)
            return candidate
    return base


def extract_description(text: str) -> str | None:
    kept: list[str] = []
    for raw_token in text.split():
        token = raw_token.strip(".,;:!?()\"'")
        if not token or _CURRENCY_TOKEN.match(token) or "/" in token:
            continue
        folded = strip_diacritics(token.lower())
        if (
            folded in STOP_WORDS
            or folded in EXPENSE_KEYWORDS
            or folded in INCOME_KEYWORDS
            or folded in _DATE_WORDS
        ):
            continue
        kept.append(token)
    description = " ".join(kept).strip()
    if len(description) < MIN_DESCRIPTION_LENGTH:
        return None
    return description[:MAX_DESCRIPTION_LENGTH]


def extract_basic(text: str, today: dt.date) -> BasicExtraction:
    return BasicExtraction(
        kind=detect_kind(text),
        amount=parse_amount(text),
        date=parse_temporal(text, today),
        description=extract_description(text),
    )
