"""pocketpa configuration management."""

import logging
import os
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class PocketSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    # Bot
    bot_name: str = Field(default="HackTheChat", description="Bot display name")
    ai_enabled: bool = Field(default=False, description="Route PA messages through the AI service")
    keyword_prefixes: list[str] = Field(default=["@PA", "@pa"], description="Text prefixes that address the PA")
    voice_keyword: str = Field(default="pocket", description="Word a voice note must contain to reach the PA")
    pa_group_jid: Optional[str] = Field(default=None, description="Group whose messages skip keyword checks")
    reply_prefix: str = Field(default="[PA]: ", description="Prefix for every PA message")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible endpoint")
    chat_model: str = Field(default="gpt-4.1-mini-2025-04-14", description="Chat completion model")
    transcription_model: str = Field(default="whisper-1", description="Speech-to-text model")
    system_prompt: str = Field(default="", description="Fixed instruction turn for every completion")
    transcription_language: str = Field(default="en", description="ISO 639-1 transcription language")

    # WhatsApp bridge
    bridge_url: str = Field(default="http://127.0.0.1:8081", description="WhatsApp bridge base URL")
    bridge_token: Optional[str] = Field(default=None, description="Bearer token for the bridge")
    bridge_poll_interval: float = Field(default=2.0, description="Seconds between event polls")

    # Storage
    data_dir: str = Field(default="data", description="Directory for the contact directory files")
    contacts_file: str = Field(default="contacts.json", description="Contact directory file name")
    contacts_backup_file: str = Field(default="contacts_backup.json", description="Contact backup file name")
    contacts_save_delay: float = Field(default=5.0, description="Debounce quiet period for contact writes")
    groups_cache_file: str = Field(default="groups_cache.json", description="Groups snapshot path")
    groups_cache_ttl_hours: float = Field(default=24.0, description="Groups snapshot time-to-live")
    history_cache_dir: str = Field(default="history_cache", description="Conversation history directory")
    history_cache_ttl_hours: float = Field(default=6.0, description="History snapshot time-to-live")
    history_buffer_size: int = Field(default=500, description="Messages kept per conversation by the collector")

    # Group refresh queue
    refresh_base_delay: float = Field(default=2.0, description="Wait before each metadata fetch")
    refresh_step_delay: float = Field(default=3.0, description="Extra wait per retry attempt")
    refresh_max_retries: int = Field(default=3, description="Rate-limit retries before an entry is dropped")
    refresh_cooldown: float = Field(default=10.0, description="Pause before draining deferred retries")
    initial_groups_delay: float = Field(default=5.0, description="Wait after connecting before loading groups")

    # External calls
    external_call_timeout: float = Field(default=30.0, description="Overall timeout for transport calls")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[str] = Field(default="~/pocketpa.log", description="Log file path (empty disables)")

    model_config = {"env_prefix": "POCKETPA_", "env_file": ".env", "extra": "ignore"}

    @property
    def contacts_path(self) -> str:
        return os.path.join(self.data_dir, self.contacts_file)

    @property
    def contacts_backup_path(self) -> str:
        return os.path.join(self.data_dir, self.contacts_backup_file)


def load_settings() -> PocketSettings:
    """Load settings from environment."""
    settings = PocketSettings()

    logger = logging.getLogger("pocketpa.config")
    if settings.ai_enabled and not settings.openai_api_key:
        logger.warning(
            "AI is enabled but POCKETPA_OPENAI_API_KEY is not set — "
            "every PA request will get the 'AI unavailable' reply."
        )

    return settings
