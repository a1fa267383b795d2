from __future__ import annotations

import base64
import binascii

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from krakenbot.domain.models import ConfigurationError, normalize_symbol


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kraken_api_key: SecretStr | None = Field(default=None, alias="KRAKEN_API_KEY")
    kraken_api_secret: SecretStr | None = Field(default=None, alias="KRAKEN_API_SECRET")
    kraken_base_url: str = Field(default="https://futures.kraken.com", alias="KRAKEN_BASE_URL")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    trading_symbol: str = Field(default="PF_XBTUSD", alias="TRADING_SYMBOL")
    cycle_seconds: int = Field(default=60, alias="CYCLE_SECONDS")
    max_cycles: int | None = Field(default=None, alias="MAX_CYCLES")
    dead_man_switch_seconds: int = Field(default=0, alias="DEAD_MAN_SWITCH_SECONDS")

    llm_api_key: SecretStr | None = Field(default=None, alias="LLM_API_KEY")
    llm_base_url: str = Field(default="https://api.openai.com/v1", alias="LLM_BASE_URL")
    llm_model: str = Field(default="gpt-4o-mini", alias="LLM_MODEL")
    llm_temperature: float = Field(default=0.2, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=700, alias="LLM_MAX_TOKENS")
    llm_timeout_seconds: float = Field(default=60.0, alias="LLM_TIMEOUT_SECONDS")
    history_entry_max_chars: int = Field(default=2000, alias="HISTORY_ENTRY_MAX_CHARS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("trading_symbol")
    def validate_trading_symbol(cls, value: str) -> str:
        symbol = normalize_symbol(value)
        if not symbol:
            raise ValueError("TRADING_SYMBOL must not be empty")
        return symbol

    @field_validator("cycle_seconds")
    def validate_cycle_seconds(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("CYCLE_SECONDS must be > 0")
        return value

    @field_validator("max_cycles")
    def validate_max_cycles(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("MAX_CYCLES must be >= 1 when set")
        return value

    @field_validator("dead_man_switch_seconds")
    def validate_dead_man_switch_seconds(cls, value: int) -> int:
        if value < 0:
            raise ValueError("DEAD_MAN_SWITCH_SECONDS must be >= 0")
        return value

    @field_validator("http_timeout_seconds", "llm_timeout_seconds")
    def validate_timeouts(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @field_validator("llm_temperature")
    def validate_llm_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("LLM_TEMPERATURE must be within [0, 2]")
        return value

    @field_validator("llm_max_tokens", "history_entry_max_chars")
    def validate_positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    def require_exchange_credentials(self) -> tuple[str, str]:
        key = self.kraken_api_key.get_secret_value() if self.kraken_api_key else ""
        secret = self.kraken_api_secret.get_secret_value() if self.kraken_api_secret else ""
        if not key or not secret:
            raise ConfigurationError("KRAKEN_API_KEY and KRAKEN_API_SECRET are required")
        try:
            base64.b64decode(secret, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError("KRAKEN_API_SECRET must be valid base64") from exc
        return key, secret

    def require_llm_api_key(self) -> str:
        key = self.llm_api_key.get_secret_value() if self.llm_api_key else ""
        if not key:
            raise ConfigurationError("LLM_API_KEY is required")
        return key
