# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
from collections import deque
from typing import Any, AsyncIterator, Callable

from audio.frames import RawAudioFrame
from audio.playback import PullFn
from config import AppConfig
from errors import AudioDeviceError, TransportClosedError
from orchestrator.enums.state import ConnectionState
from session.gateway import SessionGateway
from session.observers import SessionObserver
from session.voice_session import VoiceSession
from transport.base import DuplexTransport


_CLOSE = object()


class FakeTransport(DuplexTransport):
    """In-memory duplex transport driven by the test."""

    def __init__(self) -> None:
        self.url: str | None = None
        self.headers: dict[str, str] = {}
        self.sent: list[str | bytes] = []
        self.opened = False
        self.closed = False

        self.open_error: Exception | None = None
        self.send_error: Exception | None = None
        # When set, open() waits for it
        self.open_gate: asyncio.Event | None = None

        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    # -- DuplexTransport ------------------------------------------------

    async def open(self, url: str, headers: dict[str, str]) -> None:
        self.url = url
        self.headers = dict(headers)
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def send(self, message: str | bytes) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def messages(self) -> AsyncIterator[str | bytes]:
        while True:
            item = await self._inbound.get()
            if item is _CLOSE:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._inbound.put_nowait(_CLOSE)

    # -- test controls ----------------------------------------------------

    def push(self, message: dict[str, Any] | str | bytes) -> None:
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbound.put_nowait(message)

    def remote_close(self) -> None:
        self._inbound.put_nowait(_CLOSE)

    def fail(self, reason: str = "connection reset") -> None:
        self._inbound.put_nowait(TransportClosedError(reason))

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.sent_json()]


class FakeTransportFactory:
    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.configure: Callable[[FakeTransport], None] | None = None

    def __call__(self) -> FakeTransport:
        transport = FakeTransport()
        if self.configure is not None:
            self.configure(transport)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeCapture:
    def __init__(self) -> None:
        self.start_error: Exception | None = None
        self.starts = 0
        self.stops = 0
        self.active = False
        self._on_frame: Callable[[], None] | None = None
        self._frames: deque[RawAudioFrame] = deque()

    def start(self, on_frame_available: Callable[[], None]) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.starts += 1
        self.active = True
        self._on_frame = on_frame_available

    def stop(self) -> None:
        self.stops += 1
        self.active = False
        self._frames.clear()

    def read_frame(self) -> RawAudioFrame | None:
        return self._frames.popleft() if self._frames else None

    def push_frame(self, frame: RawAudioFrame) -> None:
        self._frames.append(frame)
        if self._on_frame is not None:
            self._on_frame()


class FakeOutputDevice:
    def __init__(self, start_error: Exception | None = None) -> None:
        self.start_error = start_error
        self.starts = 0
        self.stops = 0
        self.pull: PullFn | None = None

    @property
    def active(self) -> bool:
        return self.starts > self.stops

    def start(self, pull: PullFn) -> None:
        if self.start_error is not None:
            raise AudioDeviceError(str(self.start_error))
        self.starts += 1
        self.pull = pull

    def stop(self) -> None:
        self.stops += 1


class FakeCamera:
    def __init__(self, frame: bytes | None = b"\xff\xd8jpeg") -> None:
        self.frame = frame
        self.captures = 0

    def capture_frame(self) -> bytes | None:
        self.captures += 1
        return self.frame


class StaticCredentials:
    def __init__(self, value: str = "sk-test") -> None:
        self.value = value
        self.requested: list[str] = []

    def get_credential(self, name: str) -> str:
        self.requested.append(name)
        return self.value


class RecordingObserver(SessionObserver):
    def __init__(self) -> None:
        self.states: list[ConnectionState] = []
        self.transcripts: list[str] = []
        self.responses: list[str] = []
        self.errors: list[str] = []
        self.speaking: list[bool] = []
        self.listening: list[bool] = []

    def on_connection_state_changed(self, state: ConnectionState) -> None:
        self.states.append(state)

    def on_transcript(self, text: str) -> None:
        self.transcripts.append(text)

    def on_assistant_response(self, text: str) -> None:
        self.responses.append(text)

    def on_error(self, message: str) -> None:
        self.errors.append(message)

    def on_speaking_changed(self, speaking: bool) -> None:
        self.speaking.append(speaking)

    def on_listening_changed(self, listening: bool) -> None:
        self.listening.append(listening)


class Harness:
    """One wired session with fake collaborators."""

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        camera: FakeCamera | None = None,
        credentials: Any = None,
    ) -> None:
        self.config = config or AppConfig()
        self.factory = FakeTransportFactory()
        self.capture = FakeCapture()
        self.output = FakeOutputDevice()
        self.camera = camera
        self.credentials = credentials or StaticCredentials()
        self.observer = RecordingObserver()
        self.gateway = SessionGateway(
            config=self.config,
            transport_factory=self.factory,
            credentials=self.credentials,
            capture_factory=lambda: self.capture,
            output_factory=lambda: self.output,
            camera=self.camera,
        )
        self.session: VoiceSession | None = None

    async def start(self) -> VoiceSession:
        self.session = await self.gateway.create_session()
        self.session.subscribe(self.observer)
        return self.session

    @property
    def state(self) -> Any:
        assert self.session is not None
        return self.session.state

    async def activate(self) -> FakeTransport:
        """connect() and complete the handshake up to ACTIVE."""
        assert self.session is not None
        await self.session.connect()
        await settle()
        transport = self.factory.last
        transport.push({"type": "session.created", "session": {"id": "sess_remote"}})
        await settle()
        return transport


async def settle(rounds: int = 20) -> None:
    """Let background tasks (connect, receive loop, audio pump) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)

