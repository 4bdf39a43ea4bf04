from __future__ import annotations

import math
from dataclasses import dataclass

"""Extraction prompts (pt-BR) for the AI completion path.

The prompt embeds the entity schema and asks for a bare JSON object with
the three entity arrays. Profession context only nudges classification;
the response is always validated afterwards.
"""

__all__ = [
    "Profession",
    "PROFESSIONS",
    "get_profession",
    "build_document_prompt",
    "build_sheet_chunk_prompt",
    "estimate_tokens",
    "ROW_NUMBER_COLUMN",
]

# leading column added to sheet chunks so entities can cite their source row
ROW_NUMBER_COLUMN = "Linha"


@dataclass(frozen=True)
class Profession:
    key: str
    business_type: str
    revenue_description: str
    expense_description: str
    contract_value_required: bool = True
    contract_date_required: bool = True


PROFESSIONS: dict[str, Profession] = {
    "arquitetura": Profession(
        key="arquitetura",
        business_type="escritório de arquitetura",
        revenue_description=(
            "Receitas vêm de contratos de projeto (residencial, comercial, interiores), "
            "normalmente pagos em parcelas: entrada e parcelas por etapa."
        ),
        expense_description=(
            "Despesas típicas: salários, aluguel, software, impressão, deslocamentos e terceirizados."
        ),
    ),
    "medicina": Profession(
        key="medicina",
        business_type="consultório médico",
        revenue_description=(
            "Receitas vêm de consultas e procedimentos por paciente; "
            "'contratos' representam pacientes e podem não ter valor total nem data de assinatura."
        ),
        expense_description=(
            "Despesas típicas: aluguel da sala, materiais, equipe, convênios e equipamentos."
        ),
        contract_value_required=False,
        contract_date_required=False,
    ),
}

DEFAULT_PROFESSION = "arquitetura"


def get_profession(key: str | None) -> Profession:
    return PROFESSIONS.get((key or DEFAULT_PROFESSION).lower(), PROFESSIONS[DEFAULT_PROFESSION])


def estimate_tokens(text: str) -> int:
    """Rough token estimate for pt-BR text (about 3.5 characters per token)."""
    return math.ceil(len(text) / 3.5)


def _required(flag: bool) -> str:
    return "OBRIGATÓRIO" if flag else "OPCIONAL"


def _schema(profession: Profession) -> str:
    return f"""CONTRATO (contracts):
{{
  "clientName": "string",            // OBRIGATÓRIO
  "projectName": "string",           // OBRIGATÓRIO
  "totalValue": number,              // {_required(profession.contract_value_required)}
  "signedDate": "YYYY-MM-DD",        // {_required(profession.contract_date_required)}
  "status": "active" | "completed" | "cancelled",
  "description": "string" | null,
  "category": "string" | null,
  "notes": "string" | null,
  "confidence": number,              // 0 a 1
  "sourceRow": number | null
}}

RECEBÍVEL (receivables):
{{
  "contractId": "string" | null,     // nome do projeto associado
  "clientName": "string" | null,
  "expectedDate": "YYYY-MM-DD" | null,
  "amount": number,                  // OBRIGATÓRIO
  "status": "pending" | "received" | "overdue" | null,
  "receivedDate": "YYYY-MM-DD" | null,
  "receivedAmount": number | null,
  "invoiceNumber": "string" | null,
  "description": "string" | null,
  "category": "string" | null,
  "confidence": number,
  "sourceRow": number | null
}}

DESPESA (expenses):
{{
  "description": "string",           // OBRIGATÓRIO
  "amount": number,                  // OBRIGATÓRIO
  "dueDate": "YYYY-MM-DD" | null,
  "category": "string",              // use "Outros" se não souber
  "status": "pending" | "paid" | "overdue" | "cancelled" | null,
  "paidDate": "YYYY-MM-DD" | null,
  "paidAmount": number | null,
  "vendor": "string" | null,
  "invoiceNumber": "string" | null,
  "contractId": "string" | null,
  "notes": "string" | null,
  "confidence": number,
  "sourceRow": number | null
}}"""


_RESPONSE_RULES = """Retorne APENAS um objeto JSON válido neste formato:
{"contracts": [...], "receivables": [...], "expenses": [...]}

IMPORTANTE:
- sem markdown, sem explicações
- arrays vazios são permitidos
- use null para campos opcionais não encontrados
- datas no formato YYYY-MM-DD
- valores monetários como números, sem símbolo de moeda
- "confidence" indica o quanto você tem certeza de cada entidade"""


def _context(profession: Profession, hint: str | None) -> str:
    parts = [
        f"Você está analisando dados financeiros de um {profession.business_type}.",
        profession.revenue_description,
        profession.expense_description,
    ]
    if hint:
        parts.append(f"Orientação do usuário: {hint.strip()}")
    return "\n".join(parts)


def build_document_prompt(filename: str, profession: Profession, hint: str | None = None) -> str:
    return f"""{_context(profession, hint)}

Documento: {filename}
Extraia TODAS as entidades financeiras (contratos, recebíveis, despesas) do documento anexo.
Se houver condições de pagamento, calcule cada parcela com seu valor e data.
Use "sourceRow": null.

{_schema(profession)}

{_RESPONSE_RULES}"""


def build_sheet_chunk_prompt(
    filename: str,
    sheet_name: str,
    csv_text: str,
    profession: Profession,
    hint: str | None = None,
    *,
    first_row: int,
    last_row: int,
) -> str:
    return f"""{_context(profession, hint)}

Planilha: {filename} / aba "{sheet_name}" (linhas {first_row} a {last_row}).
A primeira linha abaixo é o cabeçalho. A coluna "{ROW_NUMBER_COLUMN}" traz o número original
da linha; preencha "sourceRow" com esse valor para cada entidade extraída.

{csv_text}

{_schema(profession)}

{_RESPONSE_RULES}"""
