"""
Response composer: one chat turn as a LangGraph state machine.

    first_pass ─▶ extract_query ─▶ run_query ─▶ second_pass ─▶ extract_chart ─▶ END
        │               │               │              │
        └──── END ◀─────┴───────────────┴──────────────┘   (once `response` is set)

The first pass asks the model for a query block, the gateway runs it, the
second pass turns the rows into prose, and the chart extractor attaches a
payload when one resolves. Every fault along the way ends the turn with a
user-visible message instead of an exception.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langgraph.graph import END, START, StateGraph

from backend import config
from backend.database import AsyncSessionLocal
from backend.graph.directives import (
    CHART_TAG,
    QueryValidationError,
    extract_chart,
    extract_query,
    find_block,
    render_chart_block,
    validate_statement,
)
from backend.graph.state import ChatTurnState
from backend.schemas import ChatResponse, MessageKind
from backend.services.record_store import RecordStoreGateway

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts"

MISSING_KEY_MESSAGE = (
    "Anthropic API key not configured. Please add your ANTHROPIC_API_KEY to the .env file."
)
INVALID_KEY_MESSAGE = "Invalid Anthropic API key. Please check your configuration."
UNAVAILABLE_MESSAGE = "The assistant is temporarily unavailable. Please try again later."
EMPTY_COMPLETION_MESSAGE = "Sorry, I couldn't generate a response."
NO_MATCHES_MESSAGE = "I couldn't find any companies matching your criteria."
QUERY_FAILED_ANNOTATION = "\n\n⚠️ *Error executing database query*"
VISUAL_CUE = "\n\n📊 *See the visual comparison below*"

CHART_TRIGGERS = ("chart", "compare", "comparison", "visualize")
# (keyword in the user's text, metric name for the chart block)
_CHART_METRIC_KEYWORDS = [
    ("arr", "ARR"),
    ("valuation", "Valuation"),
    ("revenue", "Revenue"),
    ("cash", "Cash Balance"),
    ("employees", "Employees"),
]
_DEFAULT_CHART_METRIC = "ARR"

_ANSWER_INSTRUCTION = (
    "Based on this database query result, please provide a natural, conversational "
    "answer to the original question. Here's the data retrieved:\n\n{rows}\n\n"
    "Please answer the original question naturally and concisely, including the "
    "currency and data source for any financial figures mentioned."
)


def _load_prompt(name: str) -> str:
    return (_PROMPTS_DIR / name).read_text(encoding="utf-8")


def _to_langchain_messages(history: list[dict]) -> list[BaseMessage]:
    """Convert {role, content} dicts; the model API wants a user turn first."""
    messages: list[BaseMessage] = []
    for item in history:
        role, content = item.get("role"), item.get("content")
        if not content:
            continue
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "assistant" and messages:
            messages.append(AIMessage(content=content))
    return messages


def _completion_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") if isinstance(part, dict) else str(part) for part in content
        )
    return (content or "").strip()


def _is_auth_error(exc: BaseException) -> bool:
    return isinstance(exc, anthropic.AuthenticationError) or getattr(exc, "status_code", None) == 401


def model_fault_response(exc: BaseException) -> ChatResponse:
    if _is_auth_error(exc):
        return ChatResponse(message=INVALID_KEY_MESSAGE)
    return ChatResponse(message=UNAVAILABLE_MESSAGE)


def annotate_error(text: str, error: str) -> str:
    return f"{text}\n\n⚠️ *Database Error: {error}*"


def wants_chart(user_message: str) -> bool:
    lowered = user_message.lower()
    return any(trigger in lowered for trigger in CHART_TRIGGERS)


def synthesize_chart_block(user_message: str, company_names: list[str]) -> str:
    """Chart block for a visualisation request the planner did not carry through."""
    lowered = user_message.lower()
    chart_type = "pie" if "pie" in lowered else "bar"
    metric = next(
        (name for keyword, name in _CHART_METRIC_KEYWORDS if keyword in lowered),
        _DEFAULT_CHART_METRIC,
    )
    title = f"{metric} Comparison - {' vs '.join(company_names)}"
    return render_chart_block(chart_type, company_names, metric, title)


def _done_or(next_node: str):
    def route(state: ChatTurnState) -> str:
        return END if state.get("response") is not None else next_node

    return route


class ResponseComposer:
    """Two model passes around one record-store lookup.

    The models and the gateway are injected so tests can swap in fakes.
    `query_llm` and `answer_llm` may be the same object.
    """

    def __init__(
        self,
        query_llm,
        answer_llm,
        gateway: RecordStoreGateway,
        *,
        credentials_configured: bool = True,
        call_timeout: Optional[float] = None,
    ) -> None:
        self._query_llm = query_llm
        self._answer_llm = answer_llm
        self._gateway = gateway
        self._credentials_configured = credentials_configured
        self._call_timeout = call_timeout
        self._query_prompt = _load_prompt("query_planner.txt")
        self._answer_prompt = _load_prompt("answer_writer.txt")
        self._graph = self._build_graph()

    @property
    def gateway(self) -> RecordStoreGateway:
        return self._gateway

    def _build_graph(self):
        graph = StateGraph(ChatTurnState)

        graph.add_node("first_pass", self._first_pass)
        graph.add_node("extract_query", self._extract_query)
        graph.add_node("run_query", self._run_query)
        graph.add_node("second_pass", self._second_pass)
        graph.add_node("extract_chart", self._extract_chart)

        graph.add_edge(START, "first_pass")
        graph.add_conditional_edges("first_pass", _done_or("extract_query"), ["extract_query", END])
        graph.add_conditional_edges(
            "extract_query", self._after_extract, ["run_query", "extract_chart", END]
        )
        graph.add_conditional_edges("run_query", _done_or("second_pass"), ["second_pass", END])
        graph.add_conditional_edges("second_pass", _done_or("extract_chart"), ["extract_chart", END])
        graph.add_edge("extract_chart", END)

        return graph.compile()

    async def _call_model(self, llm, messages: list[BaseMessage]) -> str:
        response = await asyncio.wait_for(llm.ainvoke(messages), timeout=self._call_timeout)
        return _completion_text(response)

    # ── nodes ────────────────────────────────────────────────────────────

    async def _first_pass(self, state: ChatTurnState) -> dict:
        messages = [SystemMessage(content=self._query_prompt), *_to_langchain_messages(state["history"])]
        try:
            raw = await self._call_model(self._query_llm, messages)
        except Exception as exc:
            logger.error("Query planning call failed: %s", exc)
            return {"response": model_fault_response(exc)}
        return {"raw_response": raw or EMPTY_COMPLETION_MESSAGE}

    async def _extract_query(self, state: ChatTurnState) -> dict:
        extracted = extract_query(state["raw_response"])
        if not extracted.has_query:
            return {"clean_text": extracted.clean_text, "answer": extracted.clean_text, "rows": []}

        try:
            statement = validate_statement(extracted.statement or "")
        except QueryValidationError as exc:
            logger.warning("Model produced a non read-only statement: %r", extracted.statement)
            return {"response": ChatResponse(message=annotate_error(extracted.clean_text, str(exc)))}

        return {"clean_text": extracted.clean_text, "statement": statement}

    def _after_extract(self, state: ChatTurnState) -> str:
        if state.get("response") is not None:
            return END
        return "run_query" if state.get("statement") else "extract_chart"

    async def _run_query(self, state: ChatTurnState) -> dict:
        clean_text = state["clean_text"]
        try:
            result = await self._gateway.execute(state["statement"])
        except Exception as exc:
            logger.error("Gateway raised unexpectedly: %s", exc)
            return {"response": ChatResponse(message=clean_text + QUERY_FAILED_ANNOTATION)}

        if result.error:
            return {"response": ChatResponse(message=annotate_error(clean_text, result.error))}
        if not result.data:
            return {"response": ChatResponse(message=NO_MATCHES_MESSAGE)}
        return {"rows": result.data, "formatted_rows": result.formatted_response}

    async def _second_pass(self, state: ChatTurnState) -> dict:
        rows = state["rows"]
        serialized = json.dumps(
            [row.model_dump(mode="json", exclude_unset=True) for row in rows], indent=2
        )
        messages = [
            SystemMessage(content=self._answer_prompt),
            *_to_langchain_messages(state["history"]),
            AIMessage(content=state["raw_response"]),
            HumanMessage(content=_ANSWER_INSTRUCTION.format(rows=serialized)),
        ]
        try:
            answer = await self._call_model(self._answer_llm, messages)
        except Exception as exc:
            logger.error("Answer call failed: %s", exc)
            return {"response": model_fault_response(exc)}

        answer = answer or state.get("formatted_rows") or state["clean_text"]

        has_block = find_block(answer, CHART_TAG) is not None
        if not has_block and wants_chart(state["user_message"]) and len(rows) > 1:
            names = [row.name for row in rows if row.name]
            answer += "\n\n" + synthesize_chart_block(state["user_message"], names)
        return {"answer": answer}

    async def _extract_chart(self, state: ChatTurnState) -> dict:
        extraction = extract_chart(state["answer"], state.get("rows"))
        for warning in extraction.warnings:
            logger.info("Chart not rendered: %s", warning)

        if not extraction.has_chart:
            return {"response": ChatResponse(message=extraction.clean_text)}

        payload = extraction.payload
        return {
            "response": ChatResponse(
                message=extraction.clean_text + VISUAL_CUE,
                type=MessageKind.CHART,
                chart_data=payload,
                chart_title=extraction.title,
                chart_type=payload.chart_type,
            )
        }

    # ── entry point ──────────────────────────────────────────────────────

    async def respond(self, message: Optional[str], history: Optional[list[dict]] = None) -> ChatResponse:
        """Run one turn. `history` already ends with the user's message when given."""
        if not self._credentials_configured:
            return ChatResponse(message=MISSING_KEY_MESSAGE)

        if not history:
            history = [{"role": "user", "content": message or ""}]
        if not message:
            message = next(
                (item.get("content") or "" for item in reversed(history) if item.get("role") == "user"),
                "",
            )

        try:
            final_state = await self._graph.ainvoke({"user_message": message, "history": history})
        except Exception as exc:
            logger.error("Chat turn failed: %s", exc)
            return ChatResponse(message=UNAVAILABLE_MESSAGE)
        return final_state["response"]


def build_composer(session_factory=AsyncSessionLocal) -> ResponseComposer:
    """Wire the production models and gateway from configuration."""
    query_llm = ChatAnthropic(
        model=config.CHAT_MODEL,
        max_tokens=config.QUERY_MAX_TOKENS,
        temperature=config.CHAT_TEMPERATURE,
    )
    answer_llm = ChatAnthropic(
        model=config.CHAT_MODEL,
        max_tokens=config.ANSWER_MAX_TOKENS,
        temperature=config.CHAT_TEMPERATURE,
    )
    gateway = RecordStoreGateway(session_factory, timeout=config.CALL_TIMEOUT_SECONDS)
    return ResponseComposer(
        query_llm,
        answer_llm,
        gateway,
        credentials_configured=config.anthropic_key_configured(),
        call_timeout=config.CALL_TIMEOUT_SECONDS,
    )
