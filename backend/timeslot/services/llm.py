import logging
import threading
import time
import uuid

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Sos un asistente virtual llamado TimeSlotBot. Contestás siempre en español, "
    "breve y claro. Ayudás a reservar turnos médicos."
)
EMPTY_COMPLETION_REPLY = "No pude generar una respuesta ahora."

_client: httpx.AsyncClient | None = None
_client_lock = threading.Lock()


class FreeformReplyError(Exception):
    """The completion service could not produce a reply."""


def get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not settings.groq_api_key:
                    raise FreeformReplyError("groq_api_key is not configured")
                _client = httpx.AsyncClient(
                    base_url=settings.llm_base_url,
                    timeout=settings.llm_timeout_seconds,
                    headers={
                        "Authorization": f"Bearer {settings.groq_api_key}",
                        "content-type": "application/json",
                    },
                )
                logger.info("llm_client_initialized base_url=%s", settings.llm_base_url)
    return _client


async def freeform_reply(message: str) -> str:
    request_id = uuid.uuid4().hex
    start = time.perf_counter()
    failed = False
    try:
        client = get_client()
        payload = {
            "model": settings.llm_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": message},
            ],
        }
        response = await client.post("/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()
    except FreeformReplyError:
        failed = True
        raise
    except (httpx.HTTPError, ValueError) as exc:
        failed = True
        raise FreeformReplyError(f"completion request failed: {type(exc).__name__}") from exc
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "llm_reply request_id=%s latency_ms=%s failed=%s",
            request_id,
            latency_ms,
            failed,
        )

    if not isinstance(data, dict):
        raise FreeformReplyError("completion response is not a JSON object")
    choices = data.get("choices") or []
    content = None
    if choices:
        content = (choices[0].get("message") or {}).get("content")
    return content or EMPTY_COMPLETION_REPLY
