"""WhatsApp message templates.

Every text the customer sees comes from this bounded set. Upstream error
text is never shown; only the params listed in `allowed_params` may be
interpolated.
"""

from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    "welcome": {
        "text": (
            "👋 Olá, *{contact_name}*!\n\n"
            "Bem-vindo(a) ao atendimento da *{account_name}*\n"
            "CNPJ: {identifier}"
        ),
        "allowed_params": ["contact_name", "account_name", "identifier"],
    },
    "welcome_multiple": {
        "text": (
            "👋 Olá, *{contact_name}*!\n\n"
            "Encontrei *{count}* empresas vinculadas ao seu telefone."
        ),
        "allowed_params": ["contact_name", "count"],
    },
    "blocked": {
        "text": (
            "🚫 *Cadastro Bloqueado*\n\n"
            "Identificamos que seu cadastro está bloqueado no momento.\n\n"
            "📞 Por favor, entre em contato com nosso departamento comercial."
        ),
        "allowed_params": [],
    },
    "blocked_during_session": {
        "text": (
            "🚫 *Atenção*\n\n"
            "Seu cadastro foi bloqueado durante este atendimento.\n\n"
            "O atendimento será encerrado. Por favor, entre em contato "
            "com nosso departamento comercial."
        ),
        "allowed_params": [],
    },
    "no_permission": {
        "text": (
            "⚠️ *Sem Permissão*\n\n"
            "Este telefone não possui permissão para solicitar documentos de cobrança.\n\n"
            "Deseja ser transferido para atendimento humano?\n"
            "1 - Sim\n"
            "2 - Não"
        ),
        "allowed_params": [],
    },
    "phone_not_linked": {
        "text": (
            "⚠️ *Telefone Não Cadastrado*\n\n"
            "Seu telefone não está cadastrado para o CNPJ: *{identifier}*\n\n"
            "Por favor, entre em contato para atualizar seu cadastro "
            "ou informe outro CNPJ."
        ),
        "allowed_params": ["identifier"],
    },
    "identifier_request": {
        "text": (
            "🏢 *Identificação*\n\n"
            "Para continuar, por favor, informe o *CNPJ* da sua empresa:\n\n"
            "_(Digite apenas os números)_"
        ),
        "allowed_params": [],
    },
    "new_identifier_request": {
        "text": (
            "🏢 Informe o novo *CNPJ* que deseja consultar:\n\n"
            "_(Digite apenas os números ou *menu* para voltar)_"
        ),
        "allowed_params": [],
    },
    "identifier_not_found": {
        "text": (
            "❌ *CNPJ Não Encontrado*\n\n"
            "Não encontramos este CNPJ em nossa base de dados.\n\n"
            "Por favor, verifique o número e tente novamente."
        ),
        "allowed_params": [],
    },
    "identifier_invalid": {
        "text": (
            "❌ *CNPJ Inválido*\n\n"
            "O CNPJ informado não é válido.\n\n"
            "Por favor, verifique e informe novamente."
        ),
        "allowed_params": [],
    },
    "menu": {
        "text": "📋 *Menu de Atendimento*\n\nComo posso ajudar você hoje?",
        "allowed_params": [],
    },
    "menu_invalid_option": {
        "text": "❌ Opção inválida.\n\nPor favor, escolha uma opção válida do menu.",
        "allowed_params": [],
    },
    "account_header": {
        "text": "🏢 *{account_name}* ({identifier})",
        "allowed_params": ["account_name", "identifier"],
    },
    "bills_none": {
        "text": "✅ Você não possui boletos em aberto no momento.",
        "allowed_params": [],
    },
    "bills_found": {
        "text": "Encontrei *{count}* boleto(s).",
        "allowed_params": ["count"],
    },
    "bill_item": {
        "text": (
            "📄 *Boleto: {number}*\n"
            "*Vencimento:* {due_date}\n"
            "*Valor:* {amount} (até o vencimento)"
        ),
        "allowed_params": ["number", "due_date", "amount"],
    },
    "bill_digitable_line": {
        "text": "*Linha Digitável:*\n{digitable_line}",
        "allowed_params": ["digitable_line"],
    },
    "bill_file_unavailable": {
        "text": "⚠️ Infelizmente não foi possível gerar o PDF deste boleto.",
        "allowed_params": [],
    },
    "invoices_none": {
        "text": "✅ Você não possui nota fiscal emitida no momento.",
        "allowed_params": [],
    },
    "invoices_found": {
        "text": "Encontrei *{count}* nota(s) fiscal(is).",
        "allowed_params": ["count"],
    },
    "invoice_item": {
        "text": (
            "🧾 *Nota Fiscal*\n"
            "*Número:* {number}\n"
            "*Emissão:* {issue_date}\n"
            "*Valor:* {amount}"
        ),
        "allowed_params": ["number", "issue_date", "amount"],
    },
    "invoice_verification_code": {
        "text": "*Código Verificação:* {verification_code}",
        "allowed_params": ["verification_code"],
    },
    "invoice_access_key": {
        "text": "*Chave de Acesso:* {access_key}",
        "allowed_params": ["access_key"],
    },
    "invoice_file_unavailable": {
        "text": "⚠️ Infelizmente não foi possível gerar o XML desta nota.",
        "allowed_params": [],
    },
    "anything_else": {
        "text": "Posso te ajudar com algo mais? Envie *menu* para ver as opções.",
        "allowed_params": [],
    },
    "handoff_agent": {
        "text": (
            "👨‍💼 *Transferindo para Atendimento*\n\n"
            "Sua solicitação será direcionada para um de nossos atendentes.\n"
            "Horário de atendimento: segunda a sexta, das 8h às 17h."
        ),
        "allowed_params": [],
    },
    "handoff_support": {
        "text": (
            "🛠️ *Suporte*\n\n"
            "Para falar com o suporte, entre em contato pelo telefone {support_phone}."
        ),
        "allowed_params": ["support_phone"],
    },
    "handoff_support_no_phone": {
        "text": (
            "🛠️ *Suporte*\n\n"
            "Sua solicitação foi encaminhada ao suporte. "
            "Em breve alguém entrará em contato."
        ),
        "allowed_params": [],
    },
    "session_expired": {
        "text": (
            "⏱️ *Sessão Expirada*\n\n"
            "Sua sessão anterior expirou por inatividade. Vamos começar novamente."
        ),
        "allowed_params": [],
    },
    "goodbye": {
        "text": (
            "✅ *Atendimento Finalizado*\n\n"
            "Obrigado por utilizar nosso atendimento!\n\n"
            "Se precisar de algo mais, é só enviar uma mensagem."
        ),
        "allowed_params": [],
    },
    "error_generic": {
        "text": "❌ Desculpe, ocorreu um erro.\n\nPor favor, tente novamente em alguns instantes.",
        "allowed_params": [],
    },
    "error_connection": {
        "text": (
            "⚠️ Problema de conexão temporário.\n\n"
            "Estamos trabalhando para resolver. Por favor, tente novamente em instantes."
        ),
        "allowed_params": [],
    },
}

# Main menu, shared by both channels: (code, label, keyword sent back by
# provider-side menus)
MENU_OPTIONS: list[tuple[str, str, str]] = [
    ("1", "Boletos", "boleto"),
    ("2", "Notas fiscais", "notafiscal"),
    ("3", "Informar outro CNPJ", "alterar"),
    ("4", "Falar com atendente", "atendente"),
    ("5", "Suporte", "suporte"),
]


def render(template_key: str, params: dict[str, Any] | None = None) -> str:
    """Render template with params. Validates allowed_params.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    params = params or {}
    template = TEMPLATES[template_key]
    allowed = set(template["allowed_params"])
    provided = set(params.keys())

    extras = provided - allowed
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)
