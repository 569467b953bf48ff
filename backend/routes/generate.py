"""Stateless generation endpoints: POST /outline and POST /dialogs.

Both answer with the envelope the web client expects:

    {"success": true,  "data": <raw AI JSON>}
    {"success": false, "error": "<message>"}   (HTTP 500)

Invalid bodies use the same failure envelope. A request superseded by a
newer one for the same run answers 409 and is not logged as an error.
"""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from novel_studio.errors import ParseError
from novel_studio.prompts import (
    DIALOGS_SYSTEM_INSTRUCTION,
    OUTLINE_SYSTEM_INSTRUCTION,
    DialogsRequest,
    OutlineRequest,
    build_dialogs_prompt,
    build_outline_prompt,
)

from backend import llm

logger = logging.getLogger(__name__)

router = APIRouter()

SUPERSEDED = "Request superseded by a newer one"


def _ok(data: Any) -> JSONResponse:
    return JSONResponse({"success": True, "data": data})


def _fail(message: str, status: int = 500) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status)


async def _run(run: str, prompt: str, system_instruction: str) -> JSONResponse:
    gw = llm.gateway(run)
    try:
        data = await gw.generate(prompt, system_instruction, expect="object", stage=run)
    except ParseError as e:
        logger.error("Generate %s error: %s", run, e)
        return _fail(str(e))
    finally:
        llm.release(run)
    if data is None:
        if gw.last_error is None:
            return _fail(SUPERSEDED, status=409)
        logger.error("Generate %s error: %s", run, gw.last_error)
        return _fail(gw.last_error)
    return _ok(data)


@router.post("/outline")
async def generate_outline(body: dict):
    """Director pass: plan characters, backgrounds and branching chapters."""
    try:
        request = OutlineRequest.model_validate(body)
    except PydanticValidationError as e:
        logger.warning("Invalid outline request: %s", e)
        return _fail(str(e))
    return await _run("outline", build_outline_prompt(request), OUTLINE_SYSTEM_INSTRUCTION)


@router.post("/dialogs")
async def generate_dialogs(body: dict):
    """Scriptwriter pass: write the dialog lines of one chapter."""
    try:
        request = DialogsRequest.model_validate(body)
    except PydanticValidationError as e:
        logger.warning("Invalid dialogs request: %s", e)
        return _fail(str(e))
    return await _run(
        f"dialogs:{request.chapter_id}",
        build_dialogs_prompt(request),
        DIALOGS_SYSTEM_INSTRUCTION,
    )
