"""
Runtime configuration.

Settings are read from the environment (a .env file is loaded by the CLI before
this module is used). Credentials are only checked when the clients that need
them are built, so listing or inspecting sessions works without any keys.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from review_assistant.errors import ConfigurationError

LLM_PROVIDERS = ("anthropic", "openai", "gemini")
WEB_SEARCH_PROVIDERS = ("tavily", "google", "none")

# provider -> (default endpoint, fast model, smart model)
PROVIDER_DEFAULTS = {
    "anthropic": ("https://api.anthropic.com/v1", "claude-3-5-haiku-20241022", "claude-sonnet-4-20250514"),
    "openai": ("https://api.openai.com/v1", "gpt-4o-mini", "gpt-4o"),
    "gemini": ("https://generativelanguage.googleapis.com/v1beta", "gemini-1.5-flash", "gemini-2.0-flash"),
}

# Provider-specific key variables checked when LLM_API_KEY is not set
PROVIDER_KEY_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

DEFAULT_STORE_PATH = Path.home() / ".review_assistant" / "sessions.json"


@dataclass
class Settings:
    llm_provider: str = "anthropic"
    llm_api_key: Optional[str] = None
    llm_api_endpoint: Optional[str] = None
    fast_model: Optional[str] = None
    smart_model: Optional[str] = None

    ncbi_api_key: Optional[str] = None

    web_search_provider: str = "none"
    tavily_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    google_cse_id: Optional[str] = None

    session_store_path: Path = field(default_factory=lambda: DEFAULT_STORE_PATH)
    scrape_timeout_seconds: float = 20.0

    @classmethod
    def from_env(cls) -> "Settings":
        provider = os.environ.get("LLM_PROVIDER", "anthropic").strip().lower()
        api_key = os.environ.get("LLM_API_KEY") or os.environ.get(PROVIDER_KEY_VARS.get(provider, ""), None)
        store_path = os.environ.get("SESSION_STORE_PATH")
        timeout = os.environ.get("SCRAPE_TIMEOUT_SECONDS")
        return cls(
            llm_provider=provider,
            llm_api_key=api_key or None,
            llm_api_endpoint=os.environ.get("LLM_API_ENDPOINT") or None,
            fast_model=os.environ.get("FAST_MODEL") or None,
            smart_model=os.environ.get("SMART_MODEL") or None,
            ncbi_api_key=os.environ.get("NCBI_API_KEY") or None,
            web_search_provider=os.environ.get("WEB_SEARCH_PROVIDER", "none").strip().lower(),
            tavily_api_key=os.environ.get("TAVILY_API_KEY") or None,
            google_api_key=os.environ.get("GOOGLE_API_KEY") or None,
            google_cse_id=os.environ.get("GOOGLE_CSE_ID") or None,
            session_store_path=Path(store_path).expanduser() if store_path else DEFAULT_STORE_PATH,
            scrape_timeout_seconds=float(timeout) if timeout else 20.0,
        )

    def resolved_llm(self) -> tuple[str, str, str]:
        """Return (endpoint, fast model, smart model) with provider defaults filled in."""
        if self.llm_provider not in PROVIDER_DEFAULTS:
            raise ConfigurationError(
                f"Unknown LLM provider {self.llm_provider!r}; expected one of {', '.join(LLM_PROVIDERS)}"
            )
        endpoint, fast, smart = PROVIDER_DEFAULTS[self.llm_provider]
        return (
            (self.llm_api_endpoint or endpoint).rstrip("/"),
            self.fast_model or fast,
            self.smart_model or smart,
        )
