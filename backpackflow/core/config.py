"""
Configuration management for BackpackFlow.

Handles environment variables, API keys, and default node policies.
Uses Pydantic Settings for validation and type safety.
"""

from functools import lru_cache
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """
    Application configuration with environment variable support.

    All settings can be overridden via environment variables with the
    BACKPACKFLOW_ prefix (e.g., BACKPACKFLOW_GEMINI_API_KEY).
    """

    # ==================== API Keys ====================
    gemini_api_key: str = Field(
        default="",
        description="Google Gemini API key for LLM nodes"
    )
    tavily_api_key: str = Field(
        default="",
        description="Tavily AI API key for web search"
    )

    # ==================== LLM Settings ====================
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used by every LLM node"
    )
    llm_temperature: float = Field(
        default=0.7,
        description="Default sampling temperature"
    )
    llm_max_tokens: int = Field(
        default=4096,
        description="Maximum tokens for LLM responses"
    )

    # ==================== Search Settings ====================
    tavily_max_results: int = Field(
        default=5,
        description="Maximum results from Tavily search"
    )
    tavily_search_depth: str = Field(
        default="basic",
        description="Tavily search depth (basic or advanced)"
    )
    max_searches: int = Field(
        default=3,
        description="Search budget for the research agent"
    )

    # ==================== Node Policy ====================
    node_max_retries: int = Field(
        default=3,
        description="Exec attempts for nodes that call external services"
    )
    node_retry_wait: float = Field(
        default=1.0,
        description="Seconds to wait between exec attempts"
    )

    # ==================== MCP Settings ====================
    mcp_server_command: Optional[str] = Field(
        default=None,
        description="Command that launches the default stdio MCP server"
    )
    mcp_server_args: List[str] = Field(
        default_factory=list,
        description="Arguments for the default MCP server command"
    )

    # ==================== System Settings ====================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    model_config = {
        "env_prefix": "BACKPACKFLOW_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @field_validator("gemini_api_key", "tavily_api_key")
    @classmethod
    def validate_required_keys(cls, v: str, info) -> str:
        """Warn when an API key is missing."""
        if not v:
            # Allow empty for testing and offline demos, but warn
            import warnings
            warnings.warn(f"{info.field_name} is not set. Some examples will not work.")
        return v

    @field_validator("llm_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is between 0 and 2."""
        if not 0 <= v <= 2:
            raise ValueError("llm_temperature must be between 0 and 2")
        return v

    @field_validator("tavily_search_depth")
    @classmethod
    def validate_search_depth(cls, v: str) -> str:
        if v not in ("basic", "advanced"):
            raise ValueError("tavily_search_depth must be 'basic' or 'advanced'")
        return v

    def get_retry_config(self) -> dict:
        """Get keyword arguments for nodes that call external services."""
        return {
            "max_retries": self.node_max_retries,
            "wait": self.node_retry_wait,
        }


@lru_cache()
def get_settings() -> Config:
    """
    Get cached application settings.

    Returns:
        Config: Application configuration instance
    """
    return Config()


# Global settings instance
settings = get_settings()


# ==================== Model Configuration ====================

class ModelConfig:
    """Generation parameters for each LLM node."""

    CHAT = {
        "model": settings.gemini_model,
        "temperature": settings.llm_temperature,
        "max_tokens": settings.llm_max_tokens,
        "purpose": "Open-ended conversation"
    }

    DECIDE = {
        "model": settings.gemini_model,
        "temperature": 0.3,
        "max_tokens": 1024,
        "purpose": "Choose between searching and answering"
    }

    SEARCH_ANALYSIS = {
        "model": settings.gemini_model,
        "temperature": 0.2,
        "max_tokens": 2048,
        "purpose": "Extract key findings from search results"
    }

    ANSWER = {
        "model": settings.gemini_model,
        "temperature": 0.7,
        "max_tokens": settings.llm_max_tokens,
        "purpose": "Write the final research answer"
    }

    TOOL_SELECTION = {
        "model": settings.gemini_model,
        "temperature": 0.1,
        "max_tokens": 1024,
        "purpose": "Pick an MCP tool and its arguments"
    }

    EXTRACTION = {
        "model": settings.gemini_model,
        "temperature": 0.1,
        "max_tokens": 2048,
        "purpose": "Structured extraction from free text"
    }
