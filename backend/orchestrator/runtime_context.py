"""
Runtime execution context.

Provides Runtime with live access to session-owned imperative resources
needed for command execution (transport factory, devices, queues, observers).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from audio.codec import AudioFrameCodec, CaptureEncoder
    from audio.devices import CaptureStream
    from audio.frames import AudioChunk
    from orchestrator.notifications import Notification
    from session.voice_session import VoiceSession
    from transport.base import DuplexTransport


# ---------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class CredentialProvider(Protocol):
    def get_credential(self, name: str) -> str:
        """
        Return the secret stored under name.

        Raises CredentialError if it is missing or empty.
        """


@runtime_checkable
class CameraFrameProvider(Protocol):
    def capture_frame(self) -> bytes | None:
        """Latest JPEG frame, or None when no frame is available."""


class PlaybackProtocol(Protocol):
    def enqueue(self, chunk: AudioChunk) -> None: ...
    def stop(self) -> int: ...


class PendingAudioProtocol(Protocol):
    def dequeue(self) -> AudioChunk | None: ...
    def discard(self) -> int: ...
    def depth_seconds(self) -> float: ...


class ObserverSinkProtocol(Protocol):
    def notify(self, notification: Notification) -> None: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    This object provides *live views* into session-owned resources
    so Runtime does not need to synchronize or cache anything.

    Runtime is allowed to:
    - Open, use and close transports
    - Start and stop devices
    - Read and discard queues
    - Notify observers

    Runtime is NOT allowed to:
    - Mutate session state directly
    - Perform orchestration decisions
    """

    def __init__(self, session: VoiceSession) -> None:
        self.session = session

    # ----------------------------
    # Session metadata
    # ----------------------------

    @property
    def session_id(self) -> str:
        return self.session.session_id

    # ----------------------------
    # Transport
    # ----------------------------

    @property
    def transport_factory(self) -> Callable[[], DuplexTransport]:
        return self.session.transport_factory

    @property
    def credentials(self) -> CredentialProvider:
        return self.session.credentials

    # ----------------------------
    # Audio
    # ----------------------------

    @property
    def capture(self) -> CaptureStream:
        return self.session.capture

    @property
    def on_capture_available(self) -> Callable[[], None]:
        return self.session.on_capture_available

    @property
    def codec(self) -> AudioFrameCodec:
        return self.session.codec

    @property
    def capture_encoder(self) -> CaptureEncoder:
        return self.session.capture_encoder

    @property
    def playback(self) -> PlaybackProtocol:
        return self.session.playback

    @property
    def pending_audio(self) -> PendingAudioProtocol:
        return self.session.pending_audio

    # ----------------------------
    # Camera / observers
    # ----------------------------

    @property
    def camera(self) -> CameraFrameProvider | None:
        return self.session.camera

    @property
    def observers(self) -> ObserverSinkProtocol:
        return self.session.observers
