from langchain_core.messages import AIMessage

from backend.services.record_store import QueryResult


class ScriptedModel:
    """Chat model stand-in: replays canned replies and records what it was sent."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def ainvoke(self, messages, **kwargs):
        self.calls.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return AIMessage(content=reply)


class SpyGateway:
    """Gateway stand-in that returns a fixed result and records statements."""

    def __init__(self, result: QueryResult):
        self.result = result
        self.statements = []

    async def execute(self, statement):
        self.statements.append(statement)
        return self.result


class StatusError(Exception):
    """Mimics an SDK error carrying an HTTP status."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code
