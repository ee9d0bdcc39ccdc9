# /chathub/services/ai_service.py

import logging

import httpx
import tenacity

from chathub.config.settings import settings
from chathub.services.cache_service import cache_service
from chathub.utils.circuit_breaker import RedisCircuitBreaker
from chathub.utils.errors import UpstreamFailure
from chathub.utils.metrics import ai_requests_counter

# Client for the external AI responder. The responder owns prompts, models
# and retrieval; this service only relays the visitor's text and returns the
# reply, raising UpstreamFailure for anything that is not a usable answer.

logger = logging.getLogger(__name__)


class AIService:
    def __init__(self, base_url: str, timeout: float):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "ai_responder")

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=2, min=1, max=10),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def resilient_api_call(self, func, *args, **kwargs) -> httpx.Response:
        return await self.circuit_breaker.call(func, *args, **kwargs)

    async def generate_reply(self, chatbot_code: str, chat_id: str, prompt: str) -> str:
        """
        Ask the AI responder to answer ``prompt`` in the context of one chat.

        Raises:
            UpstreamFailure: transport error, non-2xx status, open circuit,
                or a response without text.
        """
        payload = {"chatbotCode": chatbot_code, "chatId": chat_id, "prompt": prompt}
        try:
            response = await self.resilient_api_call(self.client.post, f"{self.base_url}/chat", json=payload)
            response.raise_for_status()
            reply = response.json().get("response")
        except UpstreamFailure:
            ai_requests_counter.labels(status="circuit_open").inc()
            raise
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            ai_requests_counter.labels(status="error").inc()
            logger.error(f"AI responder call failed for chat {chat_id}: {e}")
            raise UpstreamFailure("ai_responder", str(e)) from e

        if not isinstance(reply, str) or not reply.strip():
            ai_requests_counter.labels(status="empty").inc()
            raise UpstreamFailure("ai_responder", "response contained no text")

        ai_requests_counter.labels(status="success").inc()
        return reply

    async def cleanup(self):
        await self.client.aclose()


def contains_handoff_sentinel(reply: str, sentinel: str | None = None) -> bool:
    """True when the AI asked to hand the conversation to a human."""
    token = (sentinel or settings.human_handoff_sentinel).lower()
    return token in (reply or "").lower()


# Globally accessible instance
ai_service = AIService(settings.ai_url, settings.ai_timeout_seconds)
