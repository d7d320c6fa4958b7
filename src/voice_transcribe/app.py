import sys
import signal
import asyncio
import logging
import argparse
import keyboard

from voice_transcribe.config import cfg, LANGUAGES
from voice_transcribe.audio.capture import PyAudioBackend
from voice_transcribe.audio.sources import SourceKind
from voice_transcribe.controller import LiveTranscriber
from voice_transcribe.errors import TranscriberError
from voice_transcribe.models import RecognitionConfig, SessionState
from voice_transcribe.output.webhook import WebhookClient
from voice_transcribe.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)

hotkeys_registered = False

def register_hotkeys(loop: asyncio.AbstractEventLoop, transcriber: LiveTranscriber):
    global hotkeys_registered
    if hotkeys_registered:
        return

    def on_stop():
        logger.info("[HOTKEY] Stop requested")
        loop.call_soon_threadsafe(lambda: asyncio.ensure_future(transcriber.stop()))

    try:
        keyboard.add_hotkey(cfg.hotkey_stop, on_stop)
    except Exception as e:
        logger.warning(f"[HOTKEY] Registration failed: {e}")
        return
    hotkeys_registered = True
    logger.info(f"Hotkey registered: STOP={cfg.hotkey_stop.upper()}")

def unregister_hotkeys():
    global hotkeys_registered
    if hotkeys_registered:
        keyboard.unhook_all_hotkeys()
        hotkeys_registered = False

def print_live(text: str):
    visible = text[-70:]
    if len(text) > 70:
        visible = "..." + visible
    print(f"\r[Live] {visible}" + " " * 10, end="", flush=True)

def print_segment(segment):
    print(f"\r[Final] {segment.text}" + " " * 10, flush=True)

async def run(args) -> int:
    store = None if args.no_store else TranscriptStore(args.transcript_dir)
    webhook = WebhookClient(args.webhook_url) if args.webhook_url else None
    transcriber = LiveTranscriber(cfg, store=store, webhook=webhook)
    if cfg.log_level.upper() != "DEBUG":
        transcriber.on_live_text = print_live
        transcriber.on_segment = print_segment

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, lambda: asyncio.ensure_future(transcriber.stop()))
    except NotImplementedError:
        # Windows: Ctrl+C arrives as KeyboardInterrupt instead
        pass

    recognition = RecognitionConfig(language=args.language, vocabulary=args.vocabulary)
    try:
        session_id = await transcriber.start(SourceKind(args.source), recognition)
    except TranscriberError as e:
        print(f"Session Failed: {e}")
        return 1

    print(f"Transcribing {session_id}. Press Ctrl+C or {cfg.hotkey_stop.upper()} to stop.")
    register_hotkeys(loop, transcriber)
    try:
        await transcriber.finished.wait()
    finally:
        unregister_hotkeys()
        await transcriber.stop()
        if webhook:
            webhook.close()

    print()
    print(f"Transcript ({len(transcriber.segments)} recent segments):")
    print(transcriber.transcript)
    ended = transcriber.last_termination
    if ended is not None and ended.state is SessionState.FAILED:
        print(f"Session ended with an error: {ended.error}")
        return 1
    return 0

def main():
    parser = argparse.ArgumentParser(description="Live speech transcription via Gemini Live")
    parser.add_argument("--source", choices=[k.value for k in SourceKind], default=SourceKind.PRIMARY_INPUT.value,
                        help="mic, system (loopback) or both mixed")
    parser.add_argument("--language", default=cfg.source_language, help="Spoken language (see --list-languages)")
    parser.add_argument("--vocabulary", default=cfg.vocabulary, help="Names, terms and jargon to expect")
    parser.add_argument("--webhook-url", default=cfg.webhook_url, help="POST each finalized segment here")
    parser.add_argument("--transcript-dir", default=cfg.transcript_dir, help="Where Markdown transcripts go")
    parser.add_argument("--no-store", action="store_true", help="Do not write transcript files")
    parser.add_argument("--list-languages", action="store_true")
    parser.add_argument("--list-devices", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_languages:
        print("\n".join(LANGUAGES))
        return
    if args.list_devices:
        try:
            devices = PyAudioBackend(cfg).list_devices()
        except TranscriberError as e:
            print(f"Cannot list devices: {e}")
            sys.exit(1)
        for dev in devices:
            tag = " [loopback]" if dev["loopback"] else ""
            print(f"{dev['index']:3d}  {dev['name']}  ({dev['channels']} ch, {dev['rate']} Hz){tag}")
        return
    if args.language not in LANGUAGES:
        parser.error(f"unsupported language {args.language!r}; see --list-languages")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("Stopped.")

if __name__ == "__main__":
    main()
