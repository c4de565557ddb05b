"""Fixed customer-facing replies used when a turn does not reach the model."""

SENSITIVE_TOPIC_REPLY = (
    "O pagamento é processado pelo nosso time especializado após a confirmação! 🔒"
)

BLOCKED_SESSION_REPLY = (
    "Sua solicitação foi encaminhada para nossa equipe especializada! "
    "Em breve você será atendido por um humano. 💕"
)

HANDOFF_REPLY = (
    "Perfeito! Seu pedido foi encaminhado para nossa equipe especializada, que vai "
    "confirmar o pagamento e os detalhes da entrega com você. Em breve você será "
    "atendido por um humano. 💕"
)

CART_HANDOFF_REPLY = (
    "Vi que você adicionou um produto ao carrinho! 🛒 Nossa equipe especializada vai "
    "continuar seu atendimento para finalizar o pedido. Em breve você será atendido "
    "por um humano. 💕"
)

ENGAGEMENT_REPLY = (
    "Oi! 💕 Me conta um pouquinho: é para alguma ocasião especial? Posso te mostrar "
    "opções de cestas, flores e presentes!"
)

TEAM_CONFIRMATION_REPLY = (
    "Vou confirmar essa informação com nossa equipe e já te retorno! 💕"
)

EMPTY_REPLY_FALLBACK = (
    "Desculpe, tive um problema ao processar sua mensagem. Pode tentar novamente? 🙏"
)

INVALID_REPLY_FALLBACK = (
    "Desculpe, não consegui processar sua mensagem adequadamente. 😔"
)
