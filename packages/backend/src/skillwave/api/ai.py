"""AI chatbot API — multipart prompt + files proxied to Gemini.

- POST /ai-chatbot (authenticated): the prompt as typed
- POST /ai-help (public): the prompt prefixed for a short answer
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from skillwave.auth.dependencies import CurrentIdentity, get_current_user
from skillwave.errors import SkillwaveError
from skillwave.services.ai_service import (
    CONCISE_PREFIX,
    AIAttachment,
    GeminiClient,
    get_ai_client,
)

router = APIRouter()


async def _attachments(files: Optional[list[UploadFile]]) -> list[AIAttachment]:
    out = []
    for f in files or []:
        out.append(
            AIAttachment(
                data=await f.read(),
                mime_type=f.content_type or "application/octet-stream",
                filename=f.filename or "",
            )
        )
    return out


async def _generate(client: GeminiClient, prompt: Optional[str], files) -> dict:
    try:
        text = await client.generate(prompt, await _attachments(files))
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"aiResponse": text}


@router.post("/ai-chatbot")
async def ai_chatbot(
    prompt: Optional[str] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    identity: CurrentIdentity = Depends(get_current_user),
    client: GeminiClient = Depends(get_ai_client),
):
    return await _generate(client, prompt, files)


@router.post("/ai-help")
async def ai_help(
    prompt: Optional[str] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    client: GeminiClient = Depends(get_ai_client),
):
    """Public helper bot; always sends a prompt, even without text."""
    return await _generate(client, f"{CONCISE_PREFIX}{prompt or ''}", files)
