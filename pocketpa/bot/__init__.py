"""Bot layer — PA pipeline, slash commands and application wiring."""

from .app import PocketApp
from .assistant import PersonalAssistant, parse_ai_reply
from .commands import CommandHandler
from .errors import classify_error

__all__ = ["PocketApp", "PersonalAssistant", "CommandHandler", "classify_error", "parse_ai_reply"]
