from enum import Enum


class ExceptionType(str, Enum):
    BUSINESS = "BUSINESS"
    SYSTEM = "SYSTEM"
    TIMEOUT = "TIMEOUT"


class ConveyorException(Exception):
    """
    Base class for every error raised by conveyor.
    """

    message: str = "A broker channel error occurred."
    category: ExceptionType = ExceptionType.SYSTEM

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)

    def __str__(self):
        return self.message

    def to_dict(self):
        return {
            "message": self.message,
            "category": self.category.value,
            "type": self.__class__.__name__,
        }


class SetupException(ConveyorException):
    """
    Exception raised when one step of the open/consume sequence fails.
    `step` names the failing step (Dial, Channel, Exchange, ...).
    """

    message: str = "Broker setup failed."

    def __init__(self, message: str | None = None, step: str | None = None):
        self.step = step or "Setup"
        super().__init__(message)

    def __str__(self):
        return f"{self.step}: {self.message}"

    def to_dict(self):
        return {**super().to_dict(), "step": self.step}


class PublishException(ConveyorException):
    """
    Exception raised when a message cannot be handed to the broker.
    """

    message: str = "Failed to publish a message."


class AcknowledgementException(ConveyorException):
    """
    Exception raised when a delivery would be acknowledged twice.
    """

    message: str = "Delivery already acknowledged."

    def __init__(self, message: str | None = None, delivery_tag: int | None = None):
        self.delivery_tag = delivery_tag
        super().__init__(message)

    def __str__(self):
        if self.delivery_tag is not None:
            return f"(delivery {self.delivery_tag}) {self.message}"
        return self.message

    def to_dict(self):
        return {**super().to_dict(), "delivery_tag": self.delivery_tag}


class FatalBrokerException(ConveyorException):
    """
    Exception raised by `errors.fail`. The worker process cannot continue
    and is expected to exit.
    """

    message: str = "Fatal broker error."
