from datetime import date, datetime


def parse_date(value: str | date | datetime | None, *, default: date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return datetime.strptime(raw, "%d/%m/%Y").date()
        except ValueError:
            return default
    return default


def format_br_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")
