"""
Development entry point for the voice session control server.

    voice-session-server            (installed script)
    python -m server.main           (from backend/)

Loads .env (OPENAI_API_KEY, REALTIME_* settings) and serves the app from
server.asgi with uvicorn. Production deployments point uvicorn at
server.asgi:app directly.
"""

from __future__ import annotations

import os

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def uvicorn_options(config: AppConfig) -> dict[str, object]:
    """uvicorn.run() keyword arguments for this config."""
    return {
        "host": os.environ.get("HOST", "127.0.0.1"),
        "port": int(os.environ.get("PORT", "8000")),
        "log_level": config.log_level.lower(),
        "reload": config.env == "dev",  # Dev mode only
    }


def main() -> None:
    """Run the control server with uvicorn."""
    load_dotenv()
    uvicorn.run("server.asgi:app", **uvicorn_options(AppConfig.load_from_env()))


if __name__ == "__main__":
    main()
