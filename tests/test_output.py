import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

import requests

from voice_transcribe.config import Config
from voice_transcribe.models import Segment, SegmentRecord
from voice_transcribe.output.delivery import DeliveryWorker
from voice_transcribe.output.webhook import WebhookClient, normalize_webhook_url
from voice_transcribe.transcript_store import TranscriptStore


def make_segment(text="hello world.", session_id="ORBIT-AB12CD"):
    segment = Segment(id="5b7c0c5e-0000-4000-8000-000000000001", text=text, created_at=1700000000.0)
    record = SegmentRecord(
        session_id=session_id,
        speaker_id="00000000-0000-0000-0000-000000000000",
        segment_text=text,
        cumulative_transcript=text,
        participants=["System"],
    )
    return segment, record


class TestTranscriptStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = TranscriptStore(Path(self.tmp.name) / "out")

    def tearDown(self):
        self.tmp.cleanup()

    def test_session_file_collects_segments(self):
        session = self.store.start_session("ORBIT-AB12CD")
        self.store.save(*make_segment("first line."))
        self.store.save(*make_segment("second line."))
        self.store.stop_session("ORBIT-AB12CD")

        text = session.path.read_text(encoding="utf-8")
        self.assertTrue(text.startswith("# Transcript ORBIT-AB12CD"))
        self.assertIn("] first line.\n", text)
        self.assertIn("] second line.\n", text)
        self.assertEqual(session.segment_count, 2)

    def test_same_session_id_gets_unique_paths(self):
        first = self.store.start_session("ORBIT-AB12CD")
        second = self.store.start_session("ORBIT-AB12CD")
        self.assertNotEqual(first.path, second.path)

    def test_unknown_session_is_skipped(self):
        self.store.save(*make_segment(session_id="ORBIT-NOPE00"))
        self.assertFalse((Path(self.tmp.name) / "out").exists())


class TestWebhook(unittest.TestCase):
    def test_normalize_adds_https(self):
        self.assertEqual(normalize_webhook_url("example.com/hook"), "https://example.com/hook")
        self.assertEqual(normalize_webhook_url(" http://localhost:8000/x "), "http://localhost:8000/x")
        self.assertEqual(normalize_webhook_url("HTTPS://Example.com"), "HTTPS://Example.com")
        self.assertEqual(normalize_webhook_url(""), "")

    def test_post_sends_segment_json(self):
        http = mock.Mock(spec=requests.Session)
        http.post.return_value.status_code = 200
        client = WebhookClient("hooks.example.com/segments", Config(webhook_timeout_s=2.5), session=http)

        segment, record = make_segment()
        client.post(segment, record)

        http.post.assert_called_once_with(
            "https://hooks.example.com/segments",
            json={"id": segment.id, "text": "hello world.", "createdAt": 1700000000.0},
            timeout=2.5,
        )
        http.post.return_value.raise_for_status.assert_called_once()

    def test_http_error_propagates(self):
        http = mock.Mock(spec=requests.Session)
        http.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        client = WebhookClient("https://hooks.example.com", session=http)
        with self.assertRaises(requests.HTTPError):
            client.post(*make_segment())


class TestDeliveryWorker(unittest.TestCase):
    def test_failures_are_isolated_per_collaborator(self):
        saved = []
        done = threading.Event()

        def store(segment, record):
            saved.append(segment.text)
            if len(saved) == 2:
                done.set()

        def webhook(segment, record):
            raise requests.ConnectionError("refused")

        worker = DeliveryWorker([("webhook", webhook), ("store", store)])
        worker.start()
        worker.submit(*make_segment("one"))
        worker.submit(*make_segment("two"))
        self.assertTrue(done.wait(2))
        worker.stop()

        self.assertEqual(saved, ["one", "two"])
        self.assertEqual(worker.delivered, 2)
        self.assertEqual(worker.failed, 2)
        self.assertFalse(worker.running)

    def test_stop_drains_queued_segments(self):
        saved = []
        worker = DeliveryWorker([("store", lambda s, r: saved.append(s.text))])
        worker.start()
        for i in range(5):
            worker.submit(*make_segment(f"line {i}"))
        worker.stop()
        self.assertEqual(len(saved), 5)

    def test_restart_after_timed_out_stop_keeps_one_consumer_per_queue(self):
        release = threading.Event()
        fresh_seen = threading.Event()
        seen = []

        def store(segment, record):
            if segment.text == "slow":
                release.wait(2)
            seen.append((threading.current_thread(), segment.text))
            if segment.text == "fresh":
                fresh_seen.set()

        worker = DeliveryWorker([("store", store)])
        worker.start()
        old_thread = worker.thread
        worker.submit(*make_segment("slow"))
        worker.stop(timeout=0.05)
        self.assertTrue(old_thread.is_alive())

        worker.start()
        new_thread = worker.thread
        self.assertIsNot(new_thread, old_thread)
        worker.submit(*make_segment("fresh"))
        # Delivered while the old thread is still blocked
        self.assertTrue(fresh_seen.wait(2))

        release.set()
        old_thread.join(2)
        self.assertFalse(old_thread.is_alive())
        worker.stop()
        self.assertFalse(new_thread.is_alive())
        self.assertEqual(sorted(seen, key=lambda s: s[1]), [(new_thread, "fresh"), (old_thread, "slow")])

    def test_stop_without_start_is_noop(self):
        DeliveryWorker().stop()


if __name__ == '__main__':
    unittest.main()
