"""
Session gateway.

Responsibilities:
- Owns VoiceSession lifecycle (at most one live session per gateway)
- Builds the session's collaborators (transport factory, devices, codec)
- Wires Runtime + RuntimeExecutionContext to the session
- Re-subscribes gateway-level observers to every new session
- Mirrors runtime state for observability only

NOT responsible for:
- Executing commands
- Any state machine logic
"""

from __future__ import annotations

from typing import Callable, TYPE_CHECKING
from uuid import uuid4

from audio.codec import AudioFrameCodec
from audio.devices import CaptureStream, SoundDeviceCapture, SoundDeviceOutput
from audio.playback import OutputDevice, PlaybackScheduler
from errors import SessionAlreadyActiveError
from observability.logger import log_event
from orchestrator.enums.state import RESTARTABLE_STATES
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import (
    CameraFrameProvider,
    CredentialProvider,
    RuntimeExecutionContext,
)
from orchestrator.state_dataclass import SessionState
from session.credentials import EnvCredentialProvider
from session.observers import SessionObserver
from session.voice_session import VoiceSession
from transport.base import DuplexTransport
from transport.websocket import WebSocketTransport

if TYPE_CHECKING:
    from config import AppConfig


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class SessionGateway:
    """
    One gateway == one live voice session at a time.

    The previous session is disposed when a new one is created; creating a
    new one while the current session is still live raises
    SessionAlreadyActiveError.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        transport_factory: Callable[[], DuplexTransport] = WebSocketTransport,
        credentials: CredentialProvider | None = None,
        capture_factory: Callable[[], CaptureStream] | None = None,
        output_factory: Callable[[], OutputDevice] | None = None,
        camera: CameraFrameProvider | None = None,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._credentials = credentials or EnvCredentialProvider()
        self._capture_factory = capture_factory or self._default_capture
        self._output_factory = output_factory or SoundDeviceOutput
        self._camera = camera

        self.session: VoiceSession | None = None

        # Observers that follow every session this gateway creates
        self._observers: list[SessionObserver] = []
        self._session_unsubscribes: dict[int, Callable[[], None]] = {}

    def _default_capture(self) -> CaptureStream:
        return SoundDeviceCapture(sample_rate_hz=self._config.capture_sample_rate_hz)

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """
        Observe the current session and every session created after it.

        Returns the unsubscribe function (idempotent).
        """
        self._observers.append(observer)
        if self.session is not None:
            self._session_unsubscribes[id(observer)] = self.session.subscribe(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)
            unsubscribe = self._session_unsubscribes.pop(id(observer), None)
            if unsubscribe is not None:
                unsubscribe()

        return _unsubscribe

    def _detach_observers(self) -> None:
        for unsubscribe in self._session_unsubscribes.values():
            unsubscribe()
        self._session_unsubscribes.clear()

    @property
    def has_live_session(self) -> bool:
        session = self.session
        return (
            session is not None
            and session.state.connection_state not in RESTARTABLE_STATES
        )

    async def create_session(self) -> VoiceSession:
        """
        Create and wire a new idle session.

        Raises:
            SessionAlreadyActiveError if the current session is still live.
        """
        if self.has_live_session:
            assert self.session is not None
            raise SessionAlreadyActiveError(
                f"session {self.session.session_id} is "
                f"{self.session.state.connection_state.value}"
            )

        if self.session is not None:
            await self.session.close()
            self.session = None
            self._detach_observers()

        session = VoiceSession(
            session_id=_new_session_id(),
            config=self._config,
            transport_factory=self._transport_factory,
            credentials=self._credentials,
            capture=self._capture_factory(),
            playback=PlaybackScheduler(device=self._output_factory()),
            camera=self._camera,
            codec=AudioFrameCodec(),
        )
        runtime = Runtime(
            initial_state=SessionState(config=self._config),
            context=RuntimeExecutionContext(session=session),
        )
        session.attach_runtime(runtime)
        self.session = session
        for observer in self._observers:
            self._session_unsubscribes[id(observer)] = session.subscribe(observer)

        log_event({
            "event_type": "SESSION_CREATED",
            "session_id": session.session_id,
            "realtime_model": self._config.realtime_model,
        })
        return session

    async def get_or_create_session(self) -> VoiceSession:
        """Current session, or a fresh one if none exists yet."""
        if self.session is not None:
            return self.session
        return await self.create_session()

    async def close(self) -> None:
        """Dispose the current session (disconnects it first)."""
        session = self.session
        self.session = None
        if session is None:
            return
        await session.close()
        self._detach_observers()
        log_event({
            "event_type": "SESSION_ENDED",
            "session_id": session.session_id,
        })
