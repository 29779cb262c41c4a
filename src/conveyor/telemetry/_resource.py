import os
import socket
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ExecMetadata(BaseModel):
    service_name: str = "conveyor"
    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_start_time: str = Field(default_factory=lambda: datetime.now().isoformat())
    pid: int = Field(default_factory=os.getpid)
    host_name: str = Field(default_factory=socket.gethostname)
    consumer_tag: Optional[str] = None


def _inject_otel_resource_attributes(resource: dict, metadata: dict) -> dict:
    enriched = dict(resource)
    enriched.update(
        {
            "service.name": metadata["service_name"],
            "conveyor.execution.id": metadata["execution_id"],
            "conveyor.execution.pid": metadata["pid"],
            "conveyor.execution.host.name": metadata["host_name"],
            "conveyor.execution.start_time": metadata["execution_start_time"],
        }
    )
    if metadata.get("consumer_tag"):
        enriched["conveyor.consumer.tag"] = metadata["consumer_tag"]
    return enriched
