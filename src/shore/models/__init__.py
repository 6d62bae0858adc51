from shore.models.chat import Chat, ChatMessage, ChatModelLink, ChatRole, ChatToolLink
from shore.models.profile import ChatProfile, ChatProfileModel, ChatProfileTool
from shore.models.provider import ApiShape, LLMModel, Provider
from shore.models.tool import Tool

__all__ = [
    "ApiShape",
    "Chat",
    "ChatMessage",
    "ChatModelLink",
    "ChatProfile",
    "ChatProfileModel",
    "ChatProfileTool",
    "ChatRole",
    "ChatToolLink",
    "LLMModel",
    "Provider",
    "Tool",
]
