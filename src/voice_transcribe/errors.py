"""Error kinds surfaced by the capture, codec and session layers."""


class TranscriberError(Exception):
    """Base for every error the pipeline lets reach a caller."""


# --- Acquisition ---

class AcquisitionError(TranscriberError):
    """A capture device could not be acquired. Never retried internally."""


class PermissionDenied(AcquisitionError):
    pass


class DeviceUnavailable(AcquisitionError):
    pass


class NoAudioTrackAvailable(AcquisitionError):
    pass


# --- Codec ---

class CodecError(TranscriberError):
    pass


class MalformedFrame(CodecError, ValueError):
    """Buffer length does not divide evenly into 16-bit samples per channel."""


# --- Session / transport ---

class SessionError(TranscriberError):
    pass


class AuthMissing(SessionError):
    pass


class ConnectionDropped(SessionError):
    pass


class RemoteProtocolError(SessionError):
    pass
