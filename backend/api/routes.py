import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from backend.graph.composer import ResponseComposer
from backend.schemas import ChatRequest, ChatResponse
from backend.services.record_store import RecordStoreGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_composer(request: Request) -> ResponseComposer:
    return request.app.state.composer


def get_gateway(request: Request) -> RecordStoreGateway:
    return request.app.state.gateway


# ---------------------------------------------------------------------------
# POST /api/chat
# ---------------------------------------------------------------------------

@router.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, composer: ResponseComposer = Depends(get_composer)):
    """
    Answer one user turn.

    Body: { message?, messages?: [{role, content}] }; `messages` is the full
    text-only history ending with the new user message.
    Returns { message, timestamp, type: text|chart, chart_data?, chart_title?, chart_type? }.
    """
    if not body.message and not body.messages:
        raise HTTPException(status_code=400, detail="Message or messages array is required")

    history = [m.model_dump() for m in body.messages] if body.messages else None
    try:
        return await composer.respond(body.message, history)
    except Exception as exc:
        logger.error("Chat endpoint failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------------------
# GET /api/companies
# ---------------------------------------------------------------------------

@router.get("/companies")
async def list_companies(gateway: RecordStoreGateway = Depends(get_gateway)):
    result = await gateway.list_companies()
    if result.error:
        raise HTTPException(status_code=500, detail=result.error)
    return [row.model_dump(mode="json") for row in result.data]
