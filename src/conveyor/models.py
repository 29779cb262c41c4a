from pydantic import BaseModel, ConfigDict, Field

CONTENT_TYPE = "application/json"
PERSISTENT_DELIVERY_MODE = 2


class Delivery(BaseModel):
    """
    One inbound message pulled from the consumer stream.
    """

    body: bytes
    delivery_tag: int
    consumer_tag: str
    routing_key: str = ""
    exchange: str = ""
    redelivered: bool = False
    acknowledged: bool = False


class OutboundMessage(BaseModel):
    """
    One message about to be published. Exists only for the duration of a publish call.
    """

    model_config = ConfigDict(frozen=True)

    body: bytes
    routing_key: str
    content_type: str = Field(default=CONTENT_TYPE, description="Content type of the message")
    delivery_mode: int = Field(default=PERSISTENT_DELIVERY_MODE, description="1 for not persistent and 2 for persistent")
