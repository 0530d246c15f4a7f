from typing import Any, Dict

from kbrag.utils.logger import get_logger
from kbrag.utils.metrics import dead_letters_received
from kbrag.workers.pipeline import Delivery

logger = get_logger("workers.dead_letter")


class DeadLetterSink:
    """Terminal stop for ingestion tasks that failed their single attempt.

    Records the payload for operators and always acknowledges; nothing here
    may send a message back into circulation.
    """

    def handle(self, payload: Dict[str, Any]) -> Delivery:
        try:
            dead_letters_received.inc()
            document_id = payload.get("documentId", payload.get("document_id", "unknown"))
            reason = payload.get("dlq_reason", "processing failed")
            logger.error(
                f"Dead-lettered ingestion task for document {document_id}: {reason}. "
                f"Inspect the document's error message before reprocessing.",
                extra={"dead_letter_payload": payload},
            )
        except Exception:
            # Recording is best effort; the message is acknowledged regardless
            logger.exception("Dead-letter sink failed to record a message")
        return Delivery.ACK
