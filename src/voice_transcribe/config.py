from dataclasses import dataclass, field
import os
from dotenv import load_dotenv

load_dotenv()

LANGUAGES = sorted([
    # Major Global
    "English (US)", "English (UK)", "Spanish (Spain)", "Spanish (Latin America)",
    "Portuguese (Brazil)", "Portuguese (Portugal)", "German (Germany)", "Italian",
    "Russian", "Chinese (Mandarin)", "Chinese (Cantonese)", "Japanese", "Korean",
    "Arabic (Standard)", "Hindi", "Bengali", "Urdu", "Indonesian", "Vietnamese", "Thai",
    "Turkish", "Polish", "Ukrainian", "Persian",

    # French & Dutch Variants
    "French (France)", "French (Canada)", "French (Africa)", "French (Belgium)", "French (Swiss)",
    "Dutch (Netherlands)", "Dutch (Belgium/Flemish)",

    # West/Central Africa
    "Medumba (Cameroon)", "Baoulé (Ivory Coast)", "Dioula (Ivory Coast)", "Ewondo (Cameroon)",
    "Duala (Cameroon)", "Bassa (Cameroon)", "Bamileke (Cameroon)", "Ghomala (Cameroon)",
    "Fon (Benin)", "Wolof (Senegal)", "Yoruba (Nigeria)", "Igbo (Nigeria)", "Hausa (Nigeria)",
    "Swahili (East Africa)", "Zulu (South Africa)", "Xhosa (South Africa)", "Amharic (Ethiopia)",

    # Philippines
    "Tagalog (Filipino)", "Cebuano (Bisaya)", "Ilocano", "Hiligaynon (Ilonggo)",
    "Waray-Waray", "Kapampangan", "Pangasinan", "Bikol", "Chavacano", "Surigaonon",

    # Others
    "Greek", "Hebrew", "Swedish", "Norwegian", "Danish", "Finnish", "Hungarian", "Czech", "Romanian",
], key=str.casefold)

@dataclass
class Config:
    # --- Audio Capture ---
    target_rate: int = 16000
    chunk_size: int = int(os.getenv("CHUNK_SIZE", "2048"))  # samples per AudioChunk (~128 ms)
    capture_blocksize: int = 1024
    capture_device: str | None = os.getenv("CAPTURE_DEVICE", None)
    loopback_device: str | None = os.getenv("LOOPBACK_DEVICE", None)
    capture_gain: float = float(os.getenv("CAPTURE_GAIN", "1.0"))
    mixer_max_lag_chunks: int = 2  # how far one mixed input may run ahead before the other is zero-filled

    # --- VAD ---
    vad_voice_threshold: float = float(os.getenv("VAD_VOICE_THRESHOLD", "0.01"))
    vad_silence_threshold: float = float(os.getenv("VAD_SILENCE_THRESHOLD", "0.005"))
    min_speech_ms: int = 250
    min_silence_ms: int = 900

    # --- Live session ---
    api_key: str | None = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY"))
    live_model: str = os.getenv("LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")
    response_modality: str = os.getenv("RESPONSE_MODALITY", "AUDIO")
    outbound_queue_frames: int = 64

    # --- Transcript ---
    source_language: str = os.getenv("SOURCE_LANGUAGE", "English (US)")
    vocabulary: str = os.getenv("VOCABULARY", "")
    history_size: int = 20
    silence_finalize_s: float = float(os.getenv("SILENCE_FINALIZE_S", "3.5"))
    meeting_id_prefix: str = "ORBIT"
    speaker_id: str = "00000000-0000-0000-0000-000000000000"
    participants: list[str] = field(default_factory=lambda: ["System"])

    # --- Output ---
    transcript_dir: str = os.getenv("TRANSCRIPT_DIR", "transcripts")
    webhook_url: str = os.getenv("WEBHOOK_URL", "")
    webhook_timeout_s: float = 5.0

    # --- Hotkeys ---
    hotkey_stop: str = os.getenv("HOTKEY_STOP", "f10")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def chunk_duration_ms(self) -> float:
        return self.chunk_size / self.target_rate * 1000.0

# Global instance
cfg = Config()
