"""Renderização de templates das mensagens de cadência."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

FALLBACK_NAME = "você"
SUBJECT_PREFIX = "Assunto:"

_PLACEHOLDER = re.compile(r"\{\{\s*(?P<name>[a-z_]+)\s*\}\}")

EMPRESA_LABELS = {
    "TOKENIZA": "Tokeniza",
    "BLUE": "Blue Consult",
}


@dataclass(frozen=True)
class TemplateContext:
    """Dados do lead disponíveis para os placeholders."""

    nome: Optional[str] = None
    primeiro_nome: Optional[str] = None
    email: Optional[str] = None
    empresa: Optional[str] = None

    def values(self) -> dict:
        nome = self.nome or FALLBACK_NAME
        primeiro = self.primeiro_nome
        if not primeiro and self.nome:
            primeiro = self.nome.split(" ")[0]
        empresa = self.empresa or ""
        return {
            "nome": nome,
            "lead_nome": nome,
            "primeiro_nome": primeiro or FALLBACK_NAME,
            "email": self.email or "",
            "empresa": EMPRESA_LABELS.get(empresa.upper(), empresa),
        }


def render_template(conteudo: str, context: TemplateContext) -> str:
    """Substitui placeholders conhecidos; desconhecidos viram string vazia."""

    values = context.values()
    return _PLACEHOLDER.sub(lambda match: values.get(match.group("name"), ""), conteudo)


def split_email_subject(body: str, default_subject: str) -> Tuple[str, str]:
    """Usa a primeira linha ``Assunto: ...`` como assunto, se existir."""

    lines = body.split("\n")
    if lines and lines[0].startswith(SUBJECT_PREFIX):
        subject = lines[0][len(SUBJECT_PREFIX):].strip()
        return subject, "\n".join(lines[1:]).strip()
    return default_subject, body
