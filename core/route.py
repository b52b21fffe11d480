# core/route.py
from enum import Enum


class RoutePath(str, Enum):
    """
    How a turn gets answered.
    """

    FAST = "fast"
    LLM = "llm"
    CACHED = "cached"

    def is_fast(self) -> bool:
        return self is RoutePath.FAST


class RouteCategory(str, Enum):
    """
    The domain a turn belongs to.
    """

    BOOKKEEPER = "bookkeeper"
    CFO = "cfo"
    GENERAL_CHAT = "general_chat"

    def is_advisory(self) -> bool:
        return self is RouteCategory.CFO
