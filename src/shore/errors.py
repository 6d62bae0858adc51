"""Exception types shared across the store, dispatch engine and controller."""


class ShoreError(Exception):
    pass


class PersistenceError(ShoreError):
    """A store mutation failed and was rolled back as a whole."""


class ChatNotFoundError(ShoreError):
    def __init__(self, chat_id: int) -> None:
        self.chat_id = chat_id
        super().__init__(f"Chat {chat_id} not found")


class DispatchRejectedError(ShoreError):
    """Raised before any message is written when a turn cannot be dispatched."""

    def __init__(self, reason: str, unavailable: list[tuple[str, str]] | None = None) -> None:
        self.reason = reason
        self.unavailable = unavailable or []
        super().__init__(reason)


class ProviderError(ShoreError):
    pass


class ToolCallError(ShoreError):
    """A tool-call payload could not be interpreted (bad JSON, unknown tool)."""


class ToolLoopLimitError(ShoreError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"tool loop limit exceeded ({limit} iterations)")
