"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import CAPTURE_SAMPLE_RATE_HZ_DEFAULT


DEFAULT_INSTRUCTIONS = """\
You are ProjectorAI, a friendly AI tutor that can see through the user's camera and have voice conversations.

Your role:
- When the user speaks to you, look at what's visible on their camera (usually a whiteboard)
- Provide helpful tutoring, hints, and explanations about what you see
- Keep your responses concise and conversational - you're having a real-time voice chat
- Be encouraging and supportive like a patient tutor
- If you can't see anything relevant, ask the user to point the camera at what they need help with

Remember: This is a voice conversation. Keep responses brief and natural.
"""


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default) == "1"


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the gateway and each VoiceSession it creates.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Realtime endpoint
    # ------------------------------------------------------------------

    realtime_model: str = "gpt-4o-realtime-preview-2024-12-17"
    realtime_base_url: str = "wss://api.openai.com/v1/realtime"
    credential_name: str = "OPENAI_API_KEY"

    # ------------------------------------------------------------------
    # Session configuration (sent in session.update)
    # ------------------------------------------------------------------

    instructions: str = DEFAULT_INSTRUCTIONS
    voice: str = "alloy"
    transcription_model: str = "whisper-1"
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 800
    temperature: float = 0.8
    max_response_output_tokens: int = 512

    # ------------------------------------------------------------------
    # Local audio
    # ------------------------------------------------------------------

    capture_sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ_DEFAULT
    barge_in_stops_playback: bool = False

    # ------------------------------------------------------------------
    # Camera context
    # ------------------------------------------------------------------

    camera_context_enabled: bool = False

    @property
    def realtime_url(self) -> str:
        """Full websocket URL including the model query parameter."""
        return f"{self.realtime_base_url}?model={self.realtime_model}"

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Credentials are NOT read here; see session.credentials.

        Raises:
            ValueError if a numeric variable is malformed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=_env_bool("ENABLE_JSON_LOGS", "1"),

            realtime_model=os.environ.get(
                "REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17"
            ),
            realtime_base_url=os.environ.get(
                "REALTIME_URL", "wss://api.openai.com/v1/realtime"
            ),
            credential_name=os.environ.get("REALTIME_CREDENTIAL_NAME", "OPENAI_API_KEY"),

            instructions=os.environ.get("REALTIME_INSTRUCTIONS", DEFAULT_INSTRUCTIONS),
            voice=os.environ.get("REALTIME_VOICE", "alloy"),
            transcription_model=os.environ.get("TRANSCRIPTION_MODEL", "whisper-1"),
            vad_threshold=float(os.environ.get("VAD_THRESHOLD", "0.5")),
            vad_prefix_padding_ms=int(os.environ.get("VAD_PREFIX_PADDING_MS", "300")),
            vad_silence_duration_ms=int(os.environ.get("VAD_SILENCE_DURATION_MS", "800")),
            temperature=float(os.environ.get("TEMPERATURE", "0.8")),
            max_response_output_tokens=int(
                os.environ.get("MAX_RESPONSE_OUTPUT_TOKENS", "512")
            ),

            capture_sample_rate_hz=int(
                os.environ.get("CAPTURE_SAMPLE_RATE_HZ", str(CAPTURE_SAMPLE_RATE_HZ_DEFAULT))
            ),
            barge_in_stops_playback=_env_bool("BARGE_IN_STOPS_PLAYBACK", "0"),
            camera_context_enabled=_env_bool("CAMERA_CONTEXT_ENABLED", "0"),
        )
