"""Dynamic prompt construction for synthesis, curation and memory summaries."""

import json
from typing import Any, Optional

from sales_agent.schemas.checkout_schema import CheckoutData, CheckoutState
from sales_agent.tools.catalog import product_name, product_price
from sales_agent.utils import format_brl

SYNTHESIS_RULES = """REGRAS DA RESPOSTA:
- Não chame ferramentas; todos os dados necessários estão acima.
- Organize a resposta de forma clara e acolhedora, com emojis com moderação.
- Use somente produtos, preços e prazos que aparecem nos resultados.
- Nunca diga que consultou, buscou ou verificou algo; apenas responda.
- Ao apresentar produtos, sempre mencione o tempo de produção.
- Se alguma ferramenta retornou erro, siga a orientação do erro ou faça a pergunta que falta."""


def build_synthesis_prompt(results: list[tuple[str, dict[str, Any], str]]) -> str:
    """List every tool result gathered this turn for the final, tool-free reply."""
    lines = ["Resultados das ferramentas desta mensagem:"]
    for index, (name, arguments, output) in enumerate(results, start=1):
        lines.append(f"\n[{index}] FERRAMENTA: {name}")
        lines.append(f"ENTRADA: {json.dumps(arguments, ensure_ascii=False, default=str)}")
        lines.append(f"RESULTADO: {output}")
    lines.append("")
    lines.append(SYNTHESIS_RULES)
    return "\n".join(lines)


def build_curator_prompt(
    products: list[dict[str, Any]],
    user_message: str,
    memory_summary: Optional[str] = None,
) -> str:
    """Ask for the two best candidates, by index, under a fixed rubric."""
    lines = [
        "Você escolhe os 2 produtos mais adequados para mostrar ao cliente.",
        f'Mensagem do cliente: "{user_message}"',
    ]
    if memory_summary:
        lines.append(f"Histórico do cliente: {memory_summary}")
    lines.append("\nCandidatos:")
    for index, product in enumerate(products):
        price = product_price(product)
        price_text = format_brl(price) if price is not None else "sem preço"
        kind = product.get("tipo_resultado", "")
        lines.append(f"{index}. {product_name(product) or 'sem nome'} | {price_text} {kind}".rstrip())
    lines.append(
        "\nCritérios, em ordem:\n"
        "1. Prefira cestas, flores e quadros a canecas, a menos que o cliente peça caneca.\n"
        "2. Prefira preços intermediários entre os candidatos.\n"
        "3. Prefira variedade: os dois escolhidos devem ser diferentes entre si.\n"
        "\nResponda apenas com os dois índices separados por vírgula, por exemplo: 0,3"
    )
    return "\n".join(lines)


def build_checkout_summary(
    data: CheckoutData,
    state: CheckoutState,
    customer_name: Optional[str] = None,
) -> str:
    """One-line memory summary recorded when checkout advances."""
    parts = []
    if customer_name:
        parts.append(f"Cliente {customer_name}")
    if data.product_name:
        price = f" ({format_brl(data.product_price)})" if data.product_price is not None else ""
        parts.append(f"interessado em {data.product_name}{price}")
    if data.delivery_date:
        parts.append(f"entrega {data.delivery_date}" + (f" às {data.delivery_time}" if data.delivery_time else ""))
    if data.address:
        parts.append(f"endereço {data.address}")
    elif data.has_destination:
        parts.append("retirada na loja")
    if data.payment_method:
        parts.append(f"pagamento {data.payment_method}")
    parts.append(f"etapa: {state.value}")
    return "; ".join(parts)
