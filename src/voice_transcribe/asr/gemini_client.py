"""
Gemini Live API transport for the transcription session.

Opens one Live session per capture, pushes PCM16 frames as realtime input and
turns the service's input-transcription messages into RecognitionEvents.

The service streams input transcription as incremental fragments and marks the
end of an utterance with turn_complete. Fragments of the current turn are
accumulated so every partial event carries the whole hypothesis so far; the
turn_complete message yields the final event for that turn.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Optional

import websockets.exceptions
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from voice_transcribe.config import Config, cfg
from voice_transcribe.errors import AuthMissing, ConnectionDropped, RemoteProtocolError, SessionError
from voice_transcribe.models import EncodedFrame, RecognitionConfig, RecognitionEvent

logger = logging.getLogger(__name__)

AUTH_HINTS = ("api key", "api_key", "permission", "unauthenticated", "unauthorized")


def translate_error(e: Exception) -> SessionError:
    """Map SDK/websocket failures onto the session error kinds."""
    if isinstance(e, SessionError):
        return e
    message = str(e)
    if isinstance(e, genai_errors.APIError):
        if e.code in (401, 403) or any(h in message.lower() for h in AUTH_HINTS):
            return AuthMissing(f"Gemini rejected the credentials: {message}")
        return RemoteProtocolError(f"Gemini API error: {message}")
    if isinstance(e, (websockets.exceptions.ConnectionClosedError, ConnectionError, OSError, TimeoutError)):
        return ConnectionDropped(f"Connection to Gemini Live dropped: {message}")
    if isinstance(e, websockets.exceptions.WebSocketException):
        return ConnectionDropped(f"WebSocket error: {message}")
    return RemoteProtocolError(f"Unexpected message from Gemini Live: {type(e).__name__}: {message}")


class GeminiLiveTransport:
    """One duplex Live connection. Not reusable after close()."""

    def __init__(self, config: Config = cfg, client: Optional[genai.Client] = None):
        self.config = config
        self._client = client
        self._session_context = None
        self._session = None
        self._connected_at = 0.0

    @property
    def connected(self) -> bool:
        return self._session is not None

    def build_live_config(self, recognition: RecognitionConfig) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality(self.config.response_modality)],
            input_audio_transcription=types.AudioTranscriptionConfig(),
            system_instruction=recognition.system_instruction,
        )

    async def open(self, recognition: RecognitionConfig):
        """
        Raises:
            AuthMissing: no API key configured, or the service rejected it.
            ConnectionDropped / RemoteProtocolError: connect failed.
        """
        if self._client is None:
            if not self.config.api_key:
                raise AuthMissing("GEMINI_API_KEY environment variable not set.")
            self._client = genai.Client(api_key=self.config.api_key)

        logger.info(f"[GEMINI] Connecting | Model: {self.config.live_model} | Language: {recognition.language}")
        start_time = time.time()
        try:
            # Keep the context so close() can exit it
            self._session_context = self._client.aio.live.connect(
                model=self.config.live_model,
                config=self.build_live_config(recognition),
            )
            self._session = await self._session_context.__aenter__()
        except asyncio.CancelledError:
            self._session_context = None
            raise
        except Exception as e:
            self._session_context = None
            raise translate_error(e) from e

        self._connected_at = time.time()
        logger.info(f"[GEMINI] Live session connected | Time: {self._connected_at - start_time:.3f}s")

    async def send(self, frame: EncodedFrame):
        if self._session is None:
            raise ConnectionDropped("Live session is not open")
        # The SDK base64-encodes Blob.data on the wire
        await self._session.send_realtime_input(
            audio=types.Blob(data=frame.data, mime_type=frame.mime_type)
        )

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        """Yield recognition events until the service closes the connection."""
        turn_text = ""
        try:
            while self._session is not None:
                # receive() ends after each turn_complete; re-enter for the next turn
                received = False
                async for response in self._session.receive():
                    received = True
                    content = response.server_content
                    if content is None:
                        continue
                    if content.input_transcription and content.input_transcription.text:
                        turn_text += content.input_transcription.text
                        yield RecognitionEvent(text=turn_text, is_final=False)
                    if content.turn_complete:
                        yield RecognitionEvent(text=turn_text, is_final=True)
                        turn_text = ""
                if not received:
                    # An empty pass means the connection is gone
                    logger.info("[GEMINI] Receive stream ended")
                    return
        except websockets.exceptions.ConnectionClosedOK:
            # Gemini closes with 1000 (OK) when done - this is normal
            logger.info("[GEMINI] Connection closed normally")
        except SessionError:
            raise
        except Exception as e:
            raise translate_error(e) from e

    async def close(self):
        context, self._session_context = self._session_context, None
        self._session = None
        if context is None:
            return
        try:
            await context.__aexit__(None, None, None)
            logger.info("[GEMINI] Session closed gracefully")
        except Exception as e:
            logger.warning(f"[GEMINI] Error closing session: {e}")
