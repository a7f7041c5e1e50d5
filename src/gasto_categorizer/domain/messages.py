"""Portuguese chat messages sent back to the user."""
import datetime as dt
from collections.abc import Sequence

from gasto_categorizer.domain.dates import format_br_date
from gasto_categorizer.domain.money import format_brl
from gasto_categorizer.domain.timefmt import format_remaining
from gasto_categorizer.models import PendingConfirmation, TransactionKind

MORE_SPECIFIC = (
    "❓ *Não entendi bem sua mensagem*\n\n"
    "Por favor, tente ser mais específico. Exemplo:\n"
    '_"Gastei R$ 50,00 em alimentação no mercado"_'
)
INVALID_AMOUNT = (
    "❓ *Não encontrei o valor da transação*\n\n"
    "Informe o valor junto com a descrição. Exemplo:\n"
    '_"Gastei R$ 50,00 no mercado"_'
)
NO_CATEGORIES = (
    "📂 *Nenhuma categoria encontrada*\n\n"
    "Esta conta ainda não tem categorias cadastradas."
)
NO_PENDING = "📭 Você não tem confirmações pendentes."
EXPIRED_REPLY = (
    "⏱️ *Confirmação expirada*\n\n"
    "💡 *Dica:* Envie a transação novamente se ainda quiser registrar."
)
CONFIRMED = "✅ Transação confirmada! Estamos registrando..."
REJECTED = "❌ Transação cancelada."


def kind_emoji(kind: TransactionKind) -> str:
    return "💸" if kind == TransactionKind.EXPENSE else "💰"


def kind_text(kind: TransactionKind) -> str:
    return "gasto" if kind == TransactionKind.EXPENSE else "receita"


def category_label(confirmation: PendingConfirmation) -> str:
    if confirmation.sub_category_name:
        return f"{confirmation.category_name} > {confirmation.sub_category_name}"
    return confirmation.category_name


def _details(confirmation: PendingConfirmation) -> str:
    lines = [
        f"{kind_emoji(confirmation.transaction_kind)} *Valor:* {format_brl(confirmation.amount_minor_units)}",
        f"📂 *Categoria:* {category_label(confirmation)}",
    ]
    if confirmation.description:
        lines.append(f"📝 *Descrição:* {confirmation.description}")
    return "\n".join(lines)


def confirmation_prompt(confirmation: PendingConfirmation) -> str:
    amount = format_brl(confirmation.amount_minor_units)
    article = "um" if confirmation.transaction_kind == TransactionKind.EXPENSE else "uma"
    message = (
        f"{kind_emoji(confirmation.transaction_kind)} Detectei {article} "
        f"*{kind_text(confirmation.transaction_kind)}* de *{amount}*\n\n"
        f"📂 *Categoria:* {category_label(confirmation)}\n"
    )
    if confirmation.description:
        message += f"📝 *Descrição:* {confirmation.description}\n"
    message += f"📅 *Data:* {format_br_date(confirmation.date)}\n"
    message += "\n*Confirmar?* (sim/não)"
    return message


def registered(confirmation: PendingConfirmation) -> str:
    message = (
        f"{kind_emoji(confirmation.transaction_kind)} *Transação registrada com sucesso!*\n\n"
        f"💵 *Valor:* {format_brl(confirmation.amount_minor_units)}\n"
        f"📂 *Categoria:* {category_label(confirmation)}\n"
    )
    if confirmation.description:
        message += f"📝 {confirmation.description}\n"
    message += f"📅 *Data:* {format_br_date(confirmation.date)}"
    return message


def guidance(confirmation: PendingConfirmation, pending_count: int = 1) -> str:
    message = (
        "❓ *Não entendi sua resposta*\n\n"
        "Você tem uma confirmação pendente:\n\n"
        f"{_details(confirmation)}\n"
        "\n*Por favor, responda:*\n"
        '✅ *"sim"* para confirmar\n'
        '❌ *"não"* para cancelar\n'
        '📋 *"lista"* para ver todas as pendentes'
    )
    if pending_count > 1:
        message += (
            f"\n\n⚠️ Você tem *{pending_count} confirmações* pendentes. "
            'Digite *"lista"* para ver todas.'
        )
    return message


def expiring_warning(confirmation: PendingConfirmation, seconds_left: int) -> str:
    return (
        "⏰ *Atenção: Confirmação expirando!*\n\n"
        f"Sua confirmação de {kind_text(confirmation.transaction_kind)} expira em "
        f"*{seconds_left} segundos*.\n\n"
        f"{_details(confirmation)}\n"
        '\n✅ Digite *"sim"* para confirmar\n'
        '❌ Digite *"não"* para cancelar'
    )


def expired_notice(confirmation: PendingConfirmation) -> str:
    return (
        "⏱️ *Confirmação expirada*\n\n"
        f"Sua confirmação de {kind_text(confirmation.transaction_kind)} expirou sem resposta.\n\n"
        f"{_details(confirmation)}\n"
        "\n💡 *Dica:* Envie a transação novamente se ainda quiser registrar."
    )


def pending_list(confirmations: Sequence[PendingConfirmation], now: dt.datetime) -> str:
    if not confirmations:
        return NO_PENDING
    lines = [f"📋 *Confirmações pendentes ({len(confirmations)})*\n"]
    for position, confirmation in enumerate(confirmations, start=1):
        remaining = format_remaining((confirmation.expires_at - now).total_seconds())
        lines.append(
            f"{position}. {kind_emoji(confirmation.transaction_kind)} "
            f"{format_brl(confirmation.amount_minor_units)} - {category_label(confirmation)} "
            f"(expira em {remaining})"
        )
    lines.append('\nResponda *"sim"* ou *"não"* para a mais recente.')
    return "\n".join(lines)
