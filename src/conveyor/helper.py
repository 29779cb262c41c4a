import json
import time
import uuid
from typing import Any, Optional

import pika

from .models import OutboundMessage


def encode_body(raw: Any) -> bytes:
    if isinstance(raw, bytes):
        return raw
    if isinstance(raw, str):
        return raw.encode("utf-8")
    return json.dumps(raw, ensure_ascii=False).encode("utf-8")


def build_properties(message: OutboundMessage, message_id: Optional[uuid.UUID] = None) -> pika.BasicProperties:
    return pika.BasicProperties(
        content_type=message.content_type,
        delivery_mode=message.delivery_mode,
        message_id=str(message_id or uuid.uuid4()),
        timestamp=int(time.time()),
    )
