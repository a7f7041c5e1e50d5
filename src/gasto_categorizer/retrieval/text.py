"""Text normalization shared by the scorer, kind detection and reply parsing."""
import re
import unicodedata

_NON_WORD = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")

STOP_WORDS = frozenset({
    # articles and prepositions
    "a", "o", "as", "os", "um", "uma", "uns", "umas",
    "de", "do", "da", "dos", "das", "em", "no", "na", "nos", "nas",
    "por", "pelo", "pela", "para", "pra", "pro", "com", "sem", "ao", "aos",
    "e", "ou", "que", "se", "me", "meu", "minha", "meus", "minhas",
    # transaction verbs and filler that never name a category
    "gastei", "paguei", "comprei", "recebi", "ganhei", "gasto", "gastos",
    "reais", "real", "rs", "valor", "hoje", "ontem", "anteontem", "amanha",
    "dia", "foi", "fiz", "tive",
})

SYNONYMS: dict[str, frozenset[str]] = {
    key: frozenset(values)
    for key, values in {
        "cartao": ["credito", "debito", "fatura", "anuidade", "parcelamento"],
        "fatura": ["cartao", "credito", "debito", "pagamento"],
        "rotativo": ["cartao", "credito", "fatura"],
        "emprestimo": ["credito", "financiamento", "divida"],
        "financiamento": ["emprestimo", "credito", "divida"],
        "almoco": ["comida", "restaurante", "refeicao", "alimento"],
        "jantar": ["janta", "comida", "restaurante", "refeicao"],
        "supermercado": ["mercado", "compras", "feira", "hortifruti"],
        "mercado": ["supermercado", "compras", "feira"],
        "feira": ["supermercado", "mercado", "hortifruti", "verduras", "frutas"],
        "hortifruti": ["feira", "frutas", "verduras", "legumes"],
        "padaria": ["pao", "paes", "cafe", "lanche"],
        "restaurante": ["comida", "refeicao", "almoco", "jantar", "bar", "restaurantes"],
        "lanche": ["lanches", "salgado", "coxinha", "pastel", "padaria"],
        "ifood": ["delivery", "entrega", "comida", "pedido", "rappi"],
        "rappi": ["delivery", "entrega", "comida", "pedido", "ifood"],
        "delivery": ["entrega", "pedido", "ifood", "rappi"],
        "gasolina": ["combustivel", "posto", "abastecimento", "etanol", "alcool"],
        "combustivel": ["gasolina", "posto", "abastecimento", "etanol", "alcool", "diesel"],
        "posto": ["combustivel", "gasolina", "abastecimento"],
        "abasteci": ["combustivel", "gasolina", "posto", "abastecimento"],
        "uber": ["taxi", "transporte", "corrida", "mobilidade"],
        "taxi": ["uber", "transporte", "corrida"],
        "onibus": ["transporte", "passagem", "coletivo"],
        "pedagio": ["estrada", "rodovia"],
        "estacionamento": ["parking", "vaga"],
        "farmacia": ["remedio", "medicamento", "drogaria", "saude"],
        "remedio": ["medicamento", "farmacia", "drogaria", "saude"],
        "medicamento": ["remedio", "farmacia", "drogaria", "saude"],
        "medico": ["consulta", "doutor", "saude"],
        "consulta": ["medico", "doutor", "clinica", "saude"],
        "dentista": ["odontologia", "dente", "clinica"],
        "exame": ["exames", "laboratorio", "clinica", "saude"],
        "aluguel": ["moradia", "casa", "apartamento", "imovel", "locacao"],
        "agua": ["conta", "saneamento"],
        "luz": ["energia", "eletricidade", "conta"],
        "energia": ["luz", "eletricidade", "conta"],
        "internet": ["wifi", "provedor"],
        "condominio": ["taxa", "sindico", "moradia"],
        "netflix": ["streaming", "assinatura", "filme", "serie"],
        "spotify": ["musica", "streaming", "assinatura"],
        "academia": ["gym", "ginastica", "treino", "musculacao", "fitness"],
        "celular": ["telefone", "recarga", "conta"],
        "escola": ["educacao", "ensino", "colegio", "aula"],
        "curso": ["cursos", "educacao", "aula", "treinamento"],
        "livro": ["livros", "leitura", "apostila"],
        "cinema": ["filme", "sessao", "ingresso", "lazer"],
        "roupa": ["roupas", "vestuario", "blusa", "calca"],
        "sapato": ["calcado", "calcados", "tenis", "sandalia"],
        "tenis": ["calcado", "sapato"],
        "cabelo": ["cabeleireiro", "salao", "corte", "barba"],
        "presente": ["presentes", "gift", "lembranca"],
        "salario": ["vencimento", "pagamento", "remuneracao", "provento"],
        "recebimento": ["entrada", "deposito", "receita", "credito"],
        "reembolso": ["devolucao", "estorno", "devolvido"],
        "freelance": ["freela", "bico", "extra", "servico"],
        "freela": ["freelance", "bico", "extra", "servico"],
        "vale": ["beneficio", "beneficios", "vr", "vt"],
        "beneficio": ["vale", "vr", "vt", "beneficios"],
    }.items()
}


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize(text: str, *, strip_accents: bool = True) -> str:
    lowered = text.lower()
    if strip_accents:
        lowered = strip_diacritics(lowered)
    cleaned = _NON_WORD.sub(" ", lowered).replace("_", " ")
    return _WHITESPACE.sub(" ", cleaned).strip()


def tokenize(text: str, *, strip_accents: bool = True, keep_stop_words: bool = False) -> list[str]:
    tokens = normalize(text, strip_accents=strip_accents).split()
    if keep_stop_words:
        return tokens
    return [
        token
        for token in tokens
        if len(token) >= 2 and not token.isdigit() and token not in STOP_WORDS
    ]


def are_synonyms(left: str, right: str) -> bool:
    return right in SYNONYMS.get(left, ()) or left in SYNONYMS.get(right, ())
