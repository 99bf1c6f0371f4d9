"""Meeting summarization."""

from .engine import SummarizationEngine, ChatAPIError
from .parsing import extract_json_object

__all__ = ["SummarizationEngine", "ChatAPIError", "extract_json_object"]
