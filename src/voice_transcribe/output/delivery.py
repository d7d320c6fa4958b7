import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple

from voice_transcribe.models import Segment, SegmentRecord

logger = logging.getLogger(__name__)

Collaborator = Callable[[Segment, SegmentRecord], None]


class DeliveryWorker:
    """
    Hands finalized segments to external collaborators off the event loop.

    submit() only enqueues. Each collaborator failure is logged and the
    segment is not retried.
    """

    def __init__(self, collaborators: Optional[List[Tuple[str, Collaborator]]] = None):
        self.collaborators = list(collaborators or [])
        self.queue: "queue.Queue[Optional[Tuple[Segment, SegmentRecord]]]" = queue.Queue()
        self.running = False
        self.thread = None
        self.delivered = 0
        self.failed = 0

    def submit(self, segment: Segment, record: SegmentRecord):
        self.queue.put((segment, record))

    def _run(self, inbox: queue.Queue):
        while True:
            item = inbox.get()
            if item is None:
                break
            segment, record = item
            for name, deliver in self.collaborators:
                try:
                    deliver(segment, record)
                    self.delivered += 1
                except Exception as e:
                    self.failed += 1
                    logger.warning(f"[DELIVERY] {name} failed for segment {segment.id}: {e}")

    def start(self):
        if self.running:
            return
        self.running = True
        # A fresh queue per run: a thread that outlived stop() keeps only its own sentinel
        self.queue = queue.Queue()
        self.thread = threading.Thread(target=self._run, args=(self.queue,), name="segment-delivery", daemon=True)
        self.thread.start()

    def stop(self, timeout: float = 5.0):
        """Deliver what is already queued, then stop the thread."""
        if not self.running:
            return
        self.running = False
        self.queue.put(None)
        thread, self.thread = self.thread, None
        if thread:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"[DELIVERY] Worker still busy after {timeout}s; it will exit after its current queue")
