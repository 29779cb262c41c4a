"""Tests for conveyor.errors and conveyor.exceptions."""

import logging

import pytest

from conveyor import errors, exceptions


class TestFail:
    def test_raises_fatal_with_context(self):
        cause = ConnectionRefusedError("refused")

        with pytest.raises(exceptions.FatalBrokerException) as exc_info:
            errors.fail(cause, "Dial")

        assert str(exc_info.value) == "Dial: refused"
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.category is exceptions.ExceptionType.SYSTEM

    def test_logs_critical(self, caplog):
        with caplog.at_level(logging.CRITICAL, logger="conveyor.errors"):
            with pytest.raises(exceptions.FatalBrokerException):
                errors.fail(RuntimeError("x"), "Queue Bind")

        assert caplog.records[-1].levelno == logging.CRITICAL
        assert caplog.records[-1].getMessage() == "Queue Bind: x"


class TestLog:
    def test_logs_error_and_returns(self, caplog):
        with caplog.at_level(logging.ERROR, logger="conveyor.errors"):
            assert errors.log(RuntimeError("already closed"), "Channel close failed") is None

        assert caplog.records[-1].levelno == logging.ERROR
        assert caplog.records[-1].getMessage() == "Channel close failed: already closed"


class TestExceptions:
    def test_setup_exception_carries_step(self):
        exc = exceptions.SetupException("boom", step="Queue Declare")

        assert str(exc) == "Queue Declare: boom"
        assert exc.to_dict() == {
            "message": "boom",
            "category": "SYSTEM",
            "type": "SetupException",
            "step": "Queue Declare",
        }

    def test_default_messages(self):
        assert str(exceptions.PublishException()) == "Failed to publish a message."
        assert str(exceptions.SetupException()) == "Setup: Broker setup failed."

    def test_acknowledgement_exception(self):
        exc = exceptions.AcknowledgementException(delivery_tag=9)

        assert str(exc) == "(delivery 9) Delivery already acknowledged."
        assert exc.to_dict()["delivery_tag"] == 9

    def test_all_derive_from_base(self):
        for cls in (
            exceptions.SetupException,
            exceptions.PublishException,
            exceptions.AcknowledgementException,
            exceptions.FatalBrokerException,
        ):
            assert issubclass(cls, exceptions.ConveyorException)
