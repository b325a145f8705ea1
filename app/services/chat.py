import logging
from typing import Any

from app.ai.fallback import ProviderFallbackChain
from app.ai.providers.base import ChatMessage, ChatOptions
from app.api.models import ChatCompletionRequest, ChatCompletionResponse
from app.config import Settings
from app.jobs.factory import get_pipeline
from app.services.request_validation import _parse_request

logger = logging.getLogger(__name__)


def _resolve_chain(request: ChatCompletionRequest, settings: Settings) -> ProviderFallbackChain:
  """Pick the provider order for one chat request."""
  chain = get_pipeline(settings).chain
  if request.provider is None:
    return chain
  if request.fallback:
    return chain.with_primary(request.provider)
  # A pinned provider behaves like a direct proxy to that provider.
  return ProviderFallbackChain(get_pipeline(settings).gateway, (request.provider,))


async def complete_chat(payload: Any, settings: Settings) -> ChatCompletionResponse:
  """Run one synchronous completion; raises AllProvidersFailedError when nothing answers."""
  request = _parse_request(ChatCompletionRequest, payload)
  messages: list[ChatMessage] = [{"role": message.role, "content": message.content} for message in request.messages]
  options = ChatOptions(temperature=request.temperature, max_tokens=request.max_tokens, model=request.model)
  chain = _resolve_chain(request, settings)

  logger.info("Chat completion order=%s messages=%d", ",".join(chain.order), len(messages))
  result = (await chain.call_with_fallback(messages, options)).unwrap()
  return ChatCompletionResponse(content=result.content, model=result.model_used, provider=result.provider_used)
