from typing import Optional, TypedDict

from backend.schemas import ChatResponse, CompanyRecord


class ChatTurnState(TypedDict, total=False):
    user_message: str
    history: list[dict]  # [{role: 'user'|'assistant', content}], oldest first
    raw_response: str  # first-pass completion
    clean_text: str  # first-pass completion without the query block
    statement: Optional[str]
    rows: list[CompanyRecord]
    formatted_rows: Optional[str]
    answer: str  # second-pass completion, possibly with a chart block appended
    response: ChatResponse  # set exactly once, when the turn is done
