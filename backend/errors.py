"""
Exception hierarchy for the voice session.

Exceptions are raised by imperative components (transport, devices, codec,
gateway) and converted into events or observer notifications at the
component boundary. None of them is meant to escape the runtime.
"""

from __future__ import annotations


class VoiceSessionError(Exception):
    """Base class for voice session errors."""


class SessionAlreadyActiveError(VoiceSessionError):
    """
    Raised when a second session is created while another one is still live.

    Only one session may hold the capture device, the output device and the
    transport at any time.
    """


class TransportError(VoiceSessionError):
    """Duplex transport failed to open, send, or stay connected."""


class TransportClosedError(TransportError):
    """Operation attempted on a transport whose connection is gone."""


class AudioDeviceError(VoiceSessionError):
    """Local capture or output device could not be started or used."""


class CodecError(VoiceSessionError):
    """Audio could not be converted to or from the wire format."""


class CredentialError(VoiceSessionError):
    """Named credential is missing or empty."""
