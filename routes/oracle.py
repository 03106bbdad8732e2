from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from core.context import AppContext
from schemas.oracle import ChatMessageView, OracleAnswerResponse, OracleQuestionRequest, QuickQuestionsResponse
from services.oracle_wisdom import QUICK_ORACLE_QUESTIONS

from .common import get_context

router = APIRouter()
logger = logging.getLogger("oxalate-app")


@router.post("/v1/oracle/ask", response_model=OracleAnswerResponse)
async def ask_oracle(body: OracleQuestionRequest, ctx: AppContext = Depends(get_context)):
    question = body.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Ask the Oracle a question first.")

    reply = await ctx.oracle_chat.send_message(
        question,
        body.system_context,
        current_meal=body.current_meal,
        recent_food=body.recent_food,
    )
    await ctx.usage.flush()
    if reply is None:
        raise HTTPException(status_code=409, detail="The Oracle is still answering your previous question.")

    logger.info("oracle_answer", extra={"allowed": reply.allowed, "source": reply.source})
    return OracleAnswerResponse(
        allowed=reply.allowed,
        text=reply.text,
        source=reply.source,
        remaining=ctx.usage.get_remaining_oracle_questions(),
    )


@router.get("/v1/oracle/messages", response_model=List[ChatMessageView])
async def list_messages(ctx: AppContext = Depends(get_context)):
    return [
        ChatMessageView(id=m.id, text=m.text, is_user=m.is_user, timestamp=m.timestamp)
        for m in ctx.oracle_chat.messages
    ]


@router.delete("/v1/oracle/messages")
async def clear_messages(ctx: AppContext = Depends(get_context)):
    ctx.oracle_chat.clear_chat()
    return {"ok": True}


@router.get("/v1/oracle/quick-questions", response_model=QuickQuestionsResponse)
async def quick_questions():
    return QuickQuestionsResponse(questions=list(QUICK_ORACLE_QUESTIONS))
