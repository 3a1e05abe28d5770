"""
Unit tests for channel transports and the channel registry.
"""
import pytest
from unittest.mock import patch

from notification_dispatch.domain.channels import (
    ChannelRegistry,
    ChannelStatus,
    ChannelType,
    FailureMode,
    LoggingTransport,
    MockTransport,
    TransportReceipt,
)
from notification_dispatch.domain.errors import DeliveryError
from notification_dispatch.domain.personalization import RenderedMessage


class TestChannelType:
    def test_ordered(self):
        """Test channels sort by declaration order."""
        ordered = ChannelType.ordered({ChannelType.PUSH, ChannelType.EMAIL, ChannelType.SMS})
        assert ordered == (ChannelType.EMAIL, ChannelType.SMS, ChannelType.PUSH)

    def test_values(self):
        assert ChannelType("sms") is ChannelType.SMS


class TestMockTransport:
    """Tests for the failure-injectable mock transport."""

    @pytest.mark.asyncio
    async def test_send_records_message(self):
        transport = MockTransport(ChannelType.SMS)
        receipt = await transport.send("+15551234567", "Hello", {"language": "en"})
        assert isinstance(receipt, TransportReceipt)
        assert receipt.message_id == "mock-sms-1"
        assert receipt.status == "sent"
        assert transport.sent[0].content == "Hello"
        assert transport.sent[0].options == {"language": "en"}

    @pytest.mark.asyncio
    async def test_default_never_fails(self):
        """Test the default mode is deterministic success."""
        transport = MockTransport(ChannelType.EMAIL)
        for i in range(20):
            await transport.send(f"user{i}@example.com", RenderedMessage(subject="s", body="b"))
        assert len(transport.sent) == 20

    @pytest.mark.asyncio
    async def test_always_fails(self):
        transport = MockTransport(ChannelType.EMAIL, failure_mode=FailureMode.ALWAYS,
                                  failure_reason="smtp down")
        with pytest.raises(DeliveryError) as exc_info:
            await transport.send("user@example.com", "x")
        assert exc_info.value.reason == "smtp down"
        assert exc_info.value.error_code == "TRANSPORT_ERROR"
        assert transport.sent == []
        assert transport.attempts == 1

    @pytest.mark.asyncio
    async def test_fails_for_listed_recipients(self):
        transport = MockTransport(ChannelType.SMS, failure_mode=FailureMode.RECIPIENTS,
                                  failing_recipients={"+15550000000"})
        await transport.send("+15551111111", "ok")
        with pytest.raises(DeliveryError):
            await transport.send("+15550000000", "fail")
        assert [m.recipient for m in transport.sent] == ["+15551111111"]

    @pytest.mark.asyncio
    async def test_disabled_transport_raises(self):
        transport = MockTransport(ChannelType.PUSH, enabled=False)
        assert transport.status == ChannelStatus.UNAVAILABLE
        with pytest.raises(DeliveryError):
            await transport.send("token", "x")
        assert transport.attempts == 0

    @pytest.mark.asyncio
    async def test_reset(self):
        transport = MockTransport(ChannelType.SMS)
        await transport.send("+15551234567", "x")
        transport.reset()
        assert transport.sent == [] and transport.attempts == 0


class TestLoggingTransport:
    """Tests for the logging transport."""

    @pytest.mark.asyncio
    async def test_send_returns_logged_receipt(self):
        transport = LoggingTransport(ChannelType.EMAIL, sender="noreply@example.com")
        receipt = await transport.send("user@example.com", RenderedMessage(subject="Hi", body="There"))
        assert receipt.status == "logged"
        assert receipt.message_id.startswith("email-")
        assert receipt.channel == ChannelType.EMAIL

    @pytest.mark.asyncio
    async def test_message_ids_unique(self):
        transport = LoggingTransport(ChannelType.SMS)
        first = await transport.send("+15551234567", "a")
        second = await transport.send("+15551234567", "b")
        assert first.message_id != second.message_id

    @pytest.mark.asyncio
    async def test_deliver_error_propagates(self):
        """Test errors from the concrete delivery surface from send."""
        transport = LoggingTransport(ChannelType.SMS)
        with patch.object(LoggingTransport, "_deliver",
                          side_effect=DeliveryError("sms", "+15551234567", "carrier rejected")):
            with pytest.raises(DeliveryError):
                await transport.send("+15551234567", "x")


class TestChannelRegistry:
    """Tests for ChannelRegistry."""

    def test_register_and_get(self):
        sms = MockTransport(ChannelType.SMS)
        registry = ChannelRegistry()
        registry.register(sms)
        assert registry.get(ChannelType.SMS) is sms
        assert registry.get(ChannelType.EMAIL) is None
        assert registry.has(ChannelType.SMS) is True

    def test_register_replaces(self):
        first, second = MockTransport(ChannelType.EMAIL), MockTransport(ChannelType.EMAIL)
        registry = ChannelRegistry([first, second])
        assert registry.get(ChannelType.EMAIL) is second

    def test_list_channels_ordered(self):
        registry = ChannelRegistry([MockTransport(ChannelType.PUSH, enabled=False),
                                    MockTransport(ChannelType.EMAIL)])
        assert registry.list_channels() == [
            (ChannelType.EMAIL, ChannelStatus.ACTIVE),
            (ChannelType.PUSH, ChannelStatus.UNAVAILABLE),
        ]
