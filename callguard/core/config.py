"""
CallGuard: Configuration

Centralised settings from environment variables.
All tuneable constants live here; components receive their section
through the constructor and default to the instances at the bottom.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    # Twilio <Stream url="wss://host/"> points at the root path by default
    media_stream_path: str = os.getenv("MEDIA_STREAM_PATH", "/")
    debug: bool = _env_flag("CALLGUARD_DEBUG", False)


# ---------------------------------------------------------------------------
# Speech-to-text
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TranscriptionConfig:
    """Google Cloud Speech streaming parameters. The bridge sends 8 kHz mu-law."""
    encoding: str = os.getenv("SPEECH_ENCODING", "MULAW")
    sample_rate_hertz: int = int(os.getenv("SPEECH_SAMPLE_RATE", "8000"))
    language_code: str = os.getenv("SPEECH_LANGUAGE", "fr-FR")
    interim_results: bool = _env_flag("SPEECH_INTERIM_RESULTS", True)
    # Empty string lets the backend pick its default model
    model: str = os.getenv("SPEECH_MODEL", "")
    use_enhanced: bool = _env_flag("SPEECH_USE_ENHANCED", False)
    # Audio frames held for the request stream; 250 x 20 ms = 5 s of audio
    send_queue_frames: int = int(os.getenv("SPEECH_SEND_QUEUE_FRAMES", "250"))


# ---------------------------------------------------------------------------
# Fraud classifier
# ---------------------------------------------------------------------------

DEFAULT_CLASSIFIER_PROMPT = (
    "Analyze the provided transcript of a phone conversation in French to "
    "determine if there are indications that the person is attempting to "
    "commit a scam.\n\n"
    "Identify common scam indicators or phrases that could suggest fraudulent "
    "intent. Provide a response of `Y` if the transcript contains elements "
    "that suggest a scam is likely occurring, otherwise, provide a response "
    "of `N`.\n\n"
    "# Output Format\n\n"
    "- A single character: `Y` if a scam is indicated, `N` if no scam is present.\n\n"
    "# Notes\n\n"
    "- Consider patterns such as requests for sensitive information, offers "
    "that seem too good to be true, urgent demands, or any manipulation "
    "tactics common in scam scenarios.\n"
    "- Your determination should focus on the presence or absence of these "
    "indicators rather than making a subjective judgment of the overall "
    "conversation quality."
)


@dataclass(frozen=True)
class ClassifierConfig:
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    model: str = os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")
    system_prompt: str = os.getenv("CLASSIFIER_PROMPT", DEFAULT_CLASSIFIER_PROMPT)
    # Single-character verdict, keep the completion short and stable
    max_tokens: int = int(os.getenv("CLASSIFIER_MAX_TOKENS", "1"))
    temperature: float = float(os.getenv("CLASSIFIER_TEMPERATURE", "0"))


# ---------------------------------------------------------------------------
# Per-call session policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionConfig:
    trigger_phrase: str = os.getenv("TRIGGER_PHRASE", "banque")
    # Whether non-final transcript fragments may trigger classification
    classify_interim_results: bool = _env_flag("CLASSIFY_INTERIM_RESULTS", True)
    # customParameters key carrying the conference name on the start signal
    call_key_parameter: str = os.getenv("CALL_KEY_PARAMETER", "conferenceName")
    call_key_prefix: str = "Conf-"


# ---------------------------------------------------------------------------
# Alerting (Twilio)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlertConfig:
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    from_number: str = os.getenv("TWILIO_PHONE_NUMBER", "")
    recipient: str = os.getenv("ALERT_RECIPIENT", "")
    sms_body: str = os.getenv(
        "ALERT_SMS_BODY",
        "⚠️ Alerte Éthiq : Un élément suspect a été détecté dans cet appel. "
        "Restez prudent et évitez de partager des informations sensibles.",
    )
    announce_message: str = os.getenv(
        "ANNOUNCE_MESSAGE", "Attention, please verify the identity of the person."
    )
    announce_voice: str = os.getenv("ANNOUNCE_VOICE", "female")
    announce_language: str = os.getenv("ANNOUNCE_LANGUAGE", "fr-FR")
    announce_base_url: str = os.getenv("ANNOUNCE_BASE_URL", "http://twimlets.com/message")
    # Old behaviour: announce in whichever conference is in progress
    fallback_first_conference: bool = _env_flag("ANNOUNCE_FALLBACK_FIRST_CONFERENCE", False)
    conference_list_limit: int = 5

    @property
    def has_twilio_credentials(self) -> bool:
        return all([self.twilio_account_sid, self.twilio_auth_token])


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
transcription_cfg = TranscriptionConfig()
classifier_cfg = ClassifierConfig()
session_cfg = SessionConfig()
alert_cfg = AlertConfig()
