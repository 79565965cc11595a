import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from salaam.transport.datagram_source import DatagramSource
from salaam.transport.udp_broadcast_listener import UdpBroadcastListener


@pytest.fixture
def mock_client(mocker):
    return mocker.create_autospec(DatagramSource.Client, instance=True)


@pytest_asyncio.fixture
async def mock_endpoint(mocker):
    """Replaces the running loop's create_datagram_endpoint."""
    loop = asyncio.get_running_loop()
    transport = MagicMock(spec=asyncio.DatagramTransport)
    transport.get_extra_info.return_value = ("0.0.0.0", 54183)
    create = AsyncMock(return_value=(transport, None))
    mocker.patch.object(loop, "create_datagram_endpoint", create)
    return create, transport


def test_client_none_rejected():
    with pytest.raises(ValueError, match="Client cannot be None"):
        UdpBroadcastListener(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_start_binds_broadcast_endpoint(mock_client, mock_endpoint):
    create, transport = mock_endpoint
    listener = UdpBroadcastListener(
        mock_client, port=54183, bind_address="0.0.0.0"
    )

    await listener.start()

    create.assert_awaited_once()
    assert create.call_args.kwargs["local_addr"] == ("0.0.0.0", 54183)
    assert create.call_args.kwargs["allow_broadcast"] is True
    assert listener.local_address == ("0.0.0.0", 54183)

    await listener.close()
    transport.close.assert_called_once()
    assert listener.local_address is None


@pytest.mark.asyncio
async def test_start_twice_raises(mock_client, mock_endpoint):
    listener = UdpBroadcastListener(mock_client)
    await listener.start()

    with pytest.raises(RuntimeError, match="already been started"):
        await listener.start()

    await listener.close()


@pytest.mark.asyncio
async def test_bind_failure_propagates(mock_client, mocker):
    loop = asyncio.get_running_loop()
    mocker.patch.object(
        loop,
        "create_datagram_endpoint",
        AsyncMock(side_effect=OSError("Address already in use")),
    )
    listener = UdpBroadcastListener(mock_client)

    with pytest.raises(OSError, match="Address already in use"):
        await listener.start()
    assert listener.local_address is None


@pytest.mark.asyncio
async def test_protocol_forwards_datagrams(mock_client, mock_endpoint):
    create, _ = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()

    protocol.datagram_received(b"payload", ("10.0.0.7", 40000))

    mock_client._on_datagram_received.assert_called_once_with(
        b"payload", "10.0.0.7"
    )
    await listener.close()


@pytest.mark.asyncio
async def test_error_received_keeps_listening(mock_client, mock_endpoint):
    create, transport = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()

    protocol.error_received(ConnectionRefusedError("port unreachable"))
    protocol.datagram_received(b"payload", ("10.0.0.7", 40000))

    mock_client._on_receive_failed.assert_not_called()
    mock_client._on_datagram_received.assert_called_once_with(
        b"payload", "10.0.0.7"
    )
    assert listener.local_address is not None
    transport.close.assert_not_called()
    await listener.close()


@pytest.mark.asyncio
async def test_connection_lost_with_error_reports_failure(
    mock_client, mock_endpoint
):
    create, _ = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()
    error = OSError("network is down")

    protocol.connection_lost(error)

    mock_client._on_receive_failed.assert_called_once_with(error)
    assert listener.local_address is None
    await listener.close()


@pytest.mark.asyncio
async def test_unexpected_close_reports_failure(mock_client, mock_endpoint):
    create, _ = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()

    protocol.connection_lost(None)

    mock_client._on_receive_failed.assert_called_once()
    (error,) = mock_client._on_receive_failed.call_args.args
    assert isinstance(error, ConnectionError)
    await listener.close()


@pytest.mark.asyncio
async def test_connection_lost_after_close_ignored(
    mock_client, mock_endpoint
):
    create, _ = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()

    await listener.close()
    protocol.connection_lost(None)
    protocol.connection_lost(OSError("closed"))

    mock_client._on_receive_failed.assert_not_called()


@pytest.mark.asyncio
async def test_events_after_close_ignored(mock_client, mock_endpoint):
    create, _ = mock_endpoint
    listener = UdpBroadcastListener(mock_client)
    await listener.start()
    protocol = create.call_args.args[0]()

    await listener.close()
    protocol.datagram_received(b"late", ("10.0.0.7", 40000))
    protocol.error_received(OSError("closed"))

    mock_client._on_datagram_received.assert_not_called()
    mock_client._on_receive_failed.assert_not_called()


@pytest.mark.asyncio
async def test_close_is_idempotent(mock_client):
    listener = UdpBroadcastListener(mock_client)

    await listener.close()
    await listener.close()

    assert listener.local_address is None


@pytest.mark.asyncio
async def test_receives_real_datagram_over_loopback(mock_client):
    received = asyncio.Event()
    mock_client._on_datagram_received.side_effect = (
        lambda data, address: received.set()
    )
    listener = UdpBroadcastListener(
        mock_client, port=0, bind_address="127.0.0.1"
    )
    await listener.start()
    port = listener.local_address[1]

    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sender.sendto(b"hello", ("127.0.0.1", port))
        await asyncio.wait_for(received.wait(), timeout=5.0)
    finally:
        sender.close()
        await listener.close()

    mock_client._on_datagram_received.assert_called_once_with(
        b"hello", "127.0.0.1"
    )
