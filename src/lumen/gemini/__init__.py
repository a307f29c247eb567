from lumen.gemini.client import GeminiClient
from lumen.gemini.types import (
    FunctionCallPart,
    FunctionResponsePart,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
)

__all__ = [
    "FunctionCallPart",
    "FunctionResponsePart",
    "GeminiClient",
    "InlineDataPart",
    "Part",
    "TextPart",
    "Turn",
]
