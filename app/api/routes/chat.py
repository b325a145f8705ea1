from typing import Annotated, Any

from fastapi import APIRouter, Depends

from app.api.deps import get_json_body
from app.api.models import ChatCompletionResponse
from app.config import Settings, get_settings
from app.services.chat import complete_chat

router = APIRouter()


@router.post("/completions", response_model=ChatCompletionResponse)
async def chat_completions(payload: Annotated[Any, Depends(get_json_body)], settings: Annotated[Settings, Depends(get_settings)]) -> ChatCompletionResponse:
  """Answer a chat request through the provider fallback chain."""
  return await complete_chat(payload, settings)
