import logging
import re

import requests

from voice_transcribe.config import Config, cfg
from voice_transcribe.models import Segment, SegmentRecord

logger = logging.getLogger(__name__)


def normalize_webhook_url(url: str) -> str:
    """Ensure the URL has a protocol; bare hosts default to https."""
    url = (url or "").strip()
    if url and not re.match(r"^https?://", url, flags=re.IGNORECASE):
        url = "https://" + url
    return url


class WebhookClient:
    def __init__(self, url: str, config: Config = cfg, session: requests.Session | None = None):
        self.url = normalize_webhook_url(url)
        self.timeout = config.webhook_timeout_s
        self.http = session or requests.Session()

    def post(self, segment: Segment, record: SegmentRecord):
        """POST the segment as JSON. Raises on transport or HTTP errors."""
        response = self.http.post(self.url, json=segment.to_dict(), timeout=self.timeout)
        response.raise_for_status()
        logger.debug(f"[WEBHOOK] Delivered segment {segment.id} -> {response.status_code}")

    def close(self):
        self.http.close()
