"""Runtime configuration."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from .models import ProviderConfig, ProviderId

load_dotenv()


@dataclass(frozen=True)
class RunProfile:
    """Sampling and context budget applied to every call of a run."""
    id: str
    label: str
    description: str
    temperature: float
    num_ctx: int
    num_predict: int


RUN_PROFILES: Dict[str, RunProfile] = {
    "fast": RunProfile(
        id="fast",
        label="Fast",
        description="Lower context and short responses for fast iteration.",
        temperature=0.2,
        num_ctx=768,
        num_predict=128,
    ),
    "balanced": RunProfile(
        id="balanced",
        label="Balanced",
        description="Mix quality and speed for everyday usage.",
        temperature=0.3,
        num_ctx=1024,
        num_predict=256,
    ),
    "reliable": RunProfile(
        id="reliable",
        label="Reliable SLM",
        description="Stability-first defaults to reduce runner failures.",
        temperature=0.15,
        num_ctx=896,
        num_predict=180,
    ),
}


@dataclass
class ProviderSettings:
    """Session-level settings for one provider."""
    base_url: str
    model: str = ""
    api_key: str = ""


@dataclass
class Config:
    """Configuration loaded from environment variables."""

    # Server
    host: str = field(default_factory=lambda: os.getenv("FORGE_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("FORGE_PORT", "8000")))

    # Runtime
    active_provider: ProviderId = field(
        default_factory=lambda: ProviderId(os.getenv("FORGE_PROVIDER", "ollama")))
    default_profile: str = field(default_factory=lambda: os.getenv("FORGE_PROFILE", "reliable"))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "300")))
    telemetry_interval: float = field(
        default_factory=lambda: float(os.getenv("TELEMETRY_INTERVAL", "1.0")))

    # Providers
    providers: Dict[ProviderId, ProviderSettings] = field(default_factory=lambda: {
        ProviderId.OPENAI: ProviderSettings(
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            model=os.getenv("OPENAI_MODEL", ""),
            api_key=os.getenv("OPENAI_API_KEY", ""),
        ),
        ProviderId.GEMINI: ProviderSettings(
            base_url=os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
            model=os.getenv("GEMINI_MODEL", ""),
            api_key=os.getenv("GEMINI_API_KEY", ""),
        ),
        ProviderId.OLLAMA: ProviderSettings(
            base_url=os.getenv("OLLAMA_URL", "http://localhost:11434"),
            model=os.getenv("OLLAMA_MODEL", ""),
        ),
    })

    def profile(self, profile_id: Optional[str] = None) -> RunProfile:
        """Look up a run profile, falling back to the reliable one."""
        return RUN_PROFILES.get(profile_id or self.default_profile, RUN_PROFILES["reliable"])

    def provider_config(
        self,
        provider: ProviderId,
        profile_id: Optional[str] = None,
    ) -> ProviderConfig:
        """
        Snapshot the current settings for one run.

        The returned config is frozen, so later edits to these settings
        never reach a request that is already in flight.
        """
        settings = self.providers[provider]
        profile = self.profile(profile_id)
        return ProviderConfig(
            base_url=settings.base_url.rstrip("/"),
            api_key=settings.api_key,
            model=settings.model.strip(),
            temperature=profile.temperature,
            context_window=profile.num_ctx,
            max_output_tokens=profile.num_predict,
        )


# Global config instance
config = Config()
