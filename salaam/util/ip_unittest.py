import socket

import pytest

from salaam.util import ip as ip_util


# Helper to create a mock address object
def create_mock_address(mocker, family, address):
    mock_addr = mocker.MagicMock()
    mock_addr.family = family
    mock_addr.address = address
    return mock_addr


class TestIpUtils:

    # --- Tests for get_all_address_strings ---

    def test_get_all_address_strings_no_interfaces(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {}

        assert ip_util.get_all_address_strings() == []
        mock_net_if_addrs.assert_called_once()

    def test_get_all_address_strings_mixed_families(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "lo": [
                create_mock_address(mocker, socket.AF_INET, "127.0.0.1"),
                create_mock_address(mocker, socket.AF_INET6, "::1"),
            ],
            "eth0": [
                create_mock_address(mocker, socket.AF_INET, "192.168.1.10"),
                create_mock_address(
                    mocker, socket.AF_INET6, "fe80::1%eth0"
                ),
                create_mock_address(
                    mocker, getattr(socket, "AF_PACKET", -1), "00:11:22:33:44:55"
                ),
            ],
        }

        result = ip_util.get_all_address_strings()

        assert result == ["127.0.0.1", "::1", "192.168.1.10", "fe80::1"]

    # --- Tests for resolve_host_addresses / get_local_addresses ---

    def test_resolve_host_addresses(self, mocker):
        mocker.patch(
            "socket.getaddrinfo",
            return_value=[
                (socket.AF_INET, socket.SOCK_DGRAM, 17, "", ("10.0.0.2", 0)),
                (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.2", 0)),
                (
                    socket.AF_INET6,
                    socket.SOCK_DGRAM,
                    17,
                    "",
                    ("fe80::2%eth0", 0, 0, 2),
                ),
            ],
        )

        assert ip_util.resolve_host_addresses("myhost") == [
            "10.0.0.2",
            "10.0.0.2",
            "fe80::2",
        ]

    def test_resolve_host_addresses_failure_propagates(self, mocker):
        mocker.patch(
            "socket.getaddrinfo", side_effect=socket.gaierror("unknown host")
        )

        with pytest.raises(socket.gaierror):
            ip_util.resolve_host_addresses("nowhere")

    def test_get_local_addresses_combines_and_deduplicates(self, mocker):
        mocker.patch.object(
            ip_util,
            "resolve_host_addresses",
            return_value=["10.0.0.2", "127.0.1.1"],
        )
        mocker.patch.object(
            ip_util,
            "get_all_address_strings",
            return_value=["127.0.0.1", "10.0.0.2"],
        )

        assert ip_util.get_local_addresses("myhost") == [
            "10.0.0.2",
            "127.0.1.1",
            "127.0.0.1",
        ]

    def test_get_local_host_name(self, mocker):
        mocker.patch("socket.gethostname", return_value="myhost")

        assert ip_util.get_local_host_name() == "myhost"

    # --- Tests for address helpers ---

    @pytest.mark.parametrize(
        "address, expected",
        [
            ("127.0.0.1", True),
            ("127.5.6.7", True),
            ("::1", True),
            ("::ffff:127.0.0.1", True),
            ("10.0.0.1", False),
            ("::ffff:10.0.0.1", False),
            ("fe80::1%eth0", False),
            ("not-an-address", False),
            ("", False),
        ],
    )
    def test_is_loopback_address(self, address, expected):
        assert ip_util.is_loopback_address(address) is expected

    @pytest.mark.parametrize(
        "address, expected",
        [
            ("10.0.0.1", "10.0.0.1"),
            ("FE80::0001%eth0", "fe80::1"),
            ("0:0:0:0:0:0:0:1", "::1"),
            ("printer.local", "printer.local"),
        ],
    )
    def test_normalize_address(self, address, expected):
        assert ip_util.normalize_address(address) == expected
