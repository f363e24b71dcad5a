"""
AI-written marketing copy for events.

Calls an OpenAI-compatible chat-completions gateway with a fixed system
prompt and a pt-BR summary of the event. Gateway rate limiting (429) and
exhausted credits (402) are reported to the caller with their own status
codes; everything else is a plain upstream failure.
"""

import logging
from datetime import datetime
from typing import Optional

import openai
from openai import AsyncOpenAI

from meetlines.config import get_settings
from meetlines.errors import (
    ConfigurationError, QuotaExhaustedError, RateLimitedError, UpstreamError,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Limite de requisições excedido. Tente novamente em alguns segundos."
QUOTA_MESSAGE = "Créditos de IA esgotados. Adicione créditos ao workspace."

MONTHS_PT = [
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]

SYSTEM_PROMPT = """Você é um especialista em marketing de eventos. Sua tarefa é criar descrições atraentes e envolventes para eventos.

INSTRUÇÕES:
- Crie uma descrição de 2-3 frases que capture a essência do evento
- Use linguagem convidativa e motivadora
- Destaque os pontos fortes e o que torna o evento especial
- Seja específico sobre o que os participantes podem esperar
- Use emojis quando apropriado para tornar mais visual
- NÃO repita informações já presentes (título, data, local)
- Foque no VALOR e EXPERIÊNCIA que o evento oferece

Retorne APENAS a descrição, sem texto adicional ou formatação."""


def format_date_pt(value: str) -> str:
    """'2026-10-19T20:00:00' -> '19 de outubro de 2026 às 20:00'."""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return f"{dt.day} de {MONTHS_PT[dt.month - 1]} de {dt.year} às {dt:%H:%M}"


def format_price(price: float) -> str:
    return "Gratuito" if price == 0 else f"R$ {price:.2f}"


def build_event_info(
    title: str,
    organizer_name: str,
    event_date: str,
    location: str,
    category: Optional[str] = None,
    ticket_price: Optional[float] = None,
) -> str:
    lines = [
        f"Título: {title}",
        f"Organizador: {organizer_name}",
        f"Data: {format_date_pt(event_date)}",
        f"Local: {location}",
    ]
    if category:
        lines.append(f"Categoria: {category}")
    if ticket_price is not None:
        lines.append(f"Preço: {format_price(ticket_price)}")
    return "\n".join(lines)


_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    """Lazily build the gateway client."""
    global _client
    settings = get_settings()
    if not settings.ai_gateway_api_key:
        raise ConfigurationError("AI_GATEWAY_API_KEY not configured")
    if _client is None:
        # Upstream errors go straight back to the caller; no SDK retries
        _client = AsyncOpenAI(
            api_key=settings.ai_gateway_api_key,
            base_url=settings.ai_gateway_url,
            max_retries=0,
        )
    return _client


async def generate_description(event_info: str) -> str:
    client = get_client()
    try:
        response = await client.chat.completions.create(
            model=get_settings().ai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Crie uma descrição atraente para este evento:\n\n{event_info}"},
            ],
        )
    except openai.RateLimitError:
        raise RateLimitedError(RATE_LIMIT_MESSAGE)
    except openai.APIStatusError as e:
        if e.status_code == 402:
            raise QuotaExhaustedError(QUOTA_MESSAGE)
        logger.error("AI API error: %s", e)
        raise UpstreamError(f"AI API request failed: {e.message}")
    except openai.APIError as e:
        logger.error("AI API error: %s", e)
        raise UpstreamError(f"AI API request failed: {e}")

    description = None
    if response.choices:
        description = (response.choices[0].message.content or "").strip()
    if not description:
        raise UpstreamError("No description generated")

    logger.info("Generated description: %s", description)
    return description
