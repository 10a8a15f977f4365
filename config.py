import logging
import os
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


class GeminiSettings(BaseModel):
    api_key: str = ""
    model: str = "gemini-2.0-flash"
    temperature: float = 0.3


class AutomationSettings(BaseModel):
    enabled: bool = True
    backend: Literal["mcp", "playwright"] = "mcp"
    server_command: str = "npx"
    server_args: List[str] = Field(default_factory=lambda: ["@playwright/mcp@latest"])
    headless: bool = True
    step_settle_delay: float = 1.0


class OutputSettings(BaseModel):
    selector_strategy: Literal["role-first", "css"] = "role-first"
    language: Literal["typescript", "python"] = "typescript"
    results_dir: str = "results"
    mirror_dir: Optional[str] = None


class AppConfig(BaseModel):
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """Build the configuration from the process environment.

        Values from ``env_file`` (or ``.env`` in the working directory) are
        loaded first without overriding variables that are already set.
        """
        load_dotenv(env_file)

        server_args = os.getenv("MCP_SERVER_ARGS")
        return cls(
            gemini=GeminiSettings(
                api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "",
                model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
                temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.3")),
            ),
            automation=AutomationSettings(
                enabled=_env_bool("MCP_ENABLED", True),
                backend=os.getenv("AUTOMATION_BACKEND", "mcp"),
                server_command=os.getenv("MCP_SERVER_COMMAND", "npx"),
                server_args=server_args.split() if server_args else ["@playwright/mcp@latest"],
                headless=_env_bool("HEADLESS", True),
                step_settle_delay=float(os.getenv("STEP_SETTLE_DELAY", "1.0")),
            ),
            output=OutputSettings(
                selector_strategy=os.getenv("SELECTOR_STRATEGY", "role-first"),
                language=os.getenv("TARGET_LANGUAGE", "typescript"),
                results_dir=os.getenv("RESULTS_DIR", "results"),
                mirror_dir=os.getenv("MIRROR_DIR") or None,
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
