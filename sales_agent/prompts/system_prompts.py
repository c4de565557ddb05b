"""
System prompt for the sales assistant.

Built fresh every turn: the store clock, open status and greeting change
by the minute, and the session context (customer, memory, products
already shown, checkout coaching) changes by the message. Store details
come from configuration, not from this module.
"""

from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sales_agent.config import settings

_store = settings.store

WEEKDAYS = ("segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado", "domingo")

# Opening windows per weekday (Monday = 0); Sunday closed.
OPENING_HOURS: dict[int, tuple[tuple[time, time], ...]] = {
    **{day: ((time(7, 30), time(12, 0)), (time(14, 0), time(17, 0))) for day in range(5)},
    5: ((time(8, 0), time(11, 0)),),
    6: (),
}
OPENING_HOURS_TEXT = "Seg-Sex 07:30-12:00 e 14:00-17:00 | Sábado 08:00-11:00 | Domingo FECHADO"


def store_now() -> datetime:
    """Current time in the store's timezone."""
    return datetime.now(ZoneInfo(_store.timezone))


def format_date(moment: datetime) -> str:
    return f"{WEEKDAYS[moment.weekday()]}, {moment:%d/%m/%Y}"


def greeting_for(moment: datetime) -> str:
    if moment.hour >= 18:
        return "Boa noite"
    if moment.hour >= 12:
        return "Boa tarde"
    return "Bom dia"


def is_store_open(moment: datetime) -> bool:
    current = moment.time()
    return any(start <= current < end for start, end in OPENING_HOURS[moment.weekday()])


IDENTITY = f"""## IDENTIDADE
Você é {_store.assistant_name}, a assistente virtual da {_store.name}. Sua missão é atender com
carinho, ouvir o cliente e ajudá-lo a encontrar o presente ideal no nosso catálogo.
"""

SILENCE_RULES = """## SILÊNCIO DURANTE O USO DE FERRAMENTAS
- Nunca anuncie o que vai fazer ("um momento", "vou verificar", "deixa eu ver").
- Se precisar de dados, chame a ferramenta imediatamente, com o conteúdo da mensagem vazio.
- O cliente só vê a resposta final, escrita depois que todas as ferramentas responderam.
"""

PRODUCT_RULES = """## PRODUTOS E PREÇOS
- NUNCA invente produtos, preços ou prazos. Use `consultarCatalogo` para buscar.
- Use palavras-chave curtas na busca ("chocolate", não "cestas de chocolate").
- Mostre exatamente 2 produtos por vez e informe o tempo de produção.
- Priorize resultados EXATO sobre FALLBACK.
- Sempre valide datas com `validate_delivery_availability` quando o cliente informar uma data.
- Não calcule frete antes de saber a cidade e o método de pagamento.
"""

SENSITIVE_RULES = """## DADOS SENSÍVEIS
- Nunca informe chave PIX, dados bancários ou CNPJ. O pagamento é tratado pela equipe
  após a confirmação do pedido.
- Nunca peça dados de cartão.
"""


def build_system_prompt(
    moment: datetime,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    memory_summary: Optional[str] = None,
    sent_product_ids: Optional[list[str]] = None,
    guidelines: Optional[list[str]] = None,
    coaching: Optional[str] = None,
) -> str:
    """Render the system prompt for one turn."""
    tomorrow = moment + timedelta(days=1)
    status = "ABERTA" if is_store_open(moment) else "FECHADA"
    cities = ", ".join(_store.delivery_cities)

    session_lines = []
    if customer_name:
        session_lines.append(f"👤 Cliente: {customer_name}")
    if customer_phone:
        session_lines.append(f"📞 Telefone: {customer_phone}")
    if memory_summary:
        session_lines.append(f"💭 Histórico: {memory_summary}")
    sent = ", ".join(f'"{product_id}"' for product_id in sent_product_ids or [])
    session_lines.append(f"📦 Produtos já enviados nesta conversa: [{sent}]")

    sections = [
        IDENTITY,
        f"""## INFORMAÇÕES DE CONTEXTO
⏰ Horário atual: {moment:%H:%M}
📅 Hoje: {format_date(moment)}
📅 Amanhã: {format_date(tomorrow)}
🌍 Timezone: {_store.timezone}
👋 Saudação adequada agora: {greeting_for(moment)}
🏪 Loja agora: {status} ({OPENING_HOURS_TEXT})
🚚 Cidades de entrega: {cities}
""",
        SILENCE_RULES,
        PRODUCT_RULES,
        SENSITIVE_RULES,
        "## CONTEXTO DA SESSÃO\n" + "\n".join(session_lines) + "\n",
    ]
    if guidelines:
        sections.append("## DIRETRIZES PARA ESTA MENSAGEM\n" + "\n\n".join(guidelines) + "\n")
    if coaching:
        sections.append(f"## PRÓXIMO PASSO DO PEDIDO\n{coaching}\n")
    return "\n".join(sections)
