from fastapi import HTTPException
import base64
import binascii
import logging

from openai import AsyncOpenAI

from config import OPENAI_API_KEY, AI_MODEL
from database import db
from controllers import project_controller
from models.ai import ChatRequest, ChatResponse, InlineFile
from models.rbac import DataScope

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = """You are the assistant of a construction project management system.
You help with:
- Reading budgets, cost records and budget alerts
- Schedule and work package planning
- Risk analysis for construction projects
- Summarising site journals, contracts and quotes

Give concise, actionable answers. When figures are involved, state the currency."""

TEXT_MIME_PREFIXES = ("text/",)
TEXT_MIME_TYPES = {"application/json", "application/xml", "application/csv"}


def build_user_content(message: str, file: InlineFile = None):
    """Message plus optional inline file as OpenAI chat content."""
    if file is None:
        return message
    if file.mime_type.startswith("image/"):
        return [
            {"type": "text", "text": message},
            {"type": "image_url", "image_url": {"url": f"data:{file.mime_type};base64,{file.data}"}},
        ]
    if file.mime_type.startswith(TEXT_MIME_PREFIXES) or file.mime_type in TEXT_MIME_TYPES:
        try:
            text = base64.b64decode(file.data, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise HTTPException(status_code=400, detail="Attached file is not valid base64 text")
        name = file.name or "attachment"
        return f"{message}\n\n--- {name} ---\n{text}"
    raise HTTPException(status_code=400, detail=f"Unsupported attachment type: {file.mime_type}")


async def _project_context(project_id: str, scope: DataScope) -> str:
    # raises 404 for projects outside the caller's scope
    project = await project_controller.get_project(project_id, scope)
    context = f"Project: {project.name} ({project.code}), status {project.status}"
    budget = await db.project_budgets.find_one({"project_id": project_id}, {"_id": 0})
    if budget:
        context += f"\nBudget: {budget.get('total_budget')} {budget.get('currency')}"
    return context


async def chat(request: ChatRequest, scope: DataScope) -> ChatResponse:
    if not OPENAI_API_KEY:
        raise HTTPException(status_code=500, detail="AI service not configured")

    messages = [{"role": "system", "content": SYSTEM_MESSAGE}]
    if request.project_id:
        messages.append({"role": "system", "content": await _project_context(request.project_id, scope)})
    messages.extend({"role": m.role, "content": m.content} for m in request.history)
    messages.append({"role": "user", "content": build_user_content(request.message, request.file)})

    try:
        openai_client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        completion = await openai_client.chat.completions.create(model=AI_MODEL, messages=messages)
    except Exception as e:
        logger.error(f"AI chat error: {str(e)}")
        raise HTTPException(status_code=502, detail=f"AI service error: {str(e)}")
    return ChatResponse(response=completion.choices[0].message.content, model=AI_MODEL)
