import base64
import logging

import pytest

from salaam.protocol.message_decoder import (
    decode_announcement,
    has_consistent_length,
    unwrap_envelope,
)
from salaam.test.announcement_fixtures import (
    build_datagram,
    build_message_data,
    wrap_message_data,
)

SENDER = "192.168.1.20"


def test_decode_printer_announcement():
    datagram = wrap_message_data("32;host1;print;Printer1;9100;ready;")

    announcement = decode_announcement(datagram, SENDER)

    assert announcement is not None
    assert announcement.host_name == "host1"
    assert announcement.service_type == "print"
    assert announcement.name == "Printer1"
    assert announcement.port == 9100
    assert announcement.message == "ready"
    assert announcement.address == SENDER
    assert announcement.control_code == ""
    assert not announcement.has_control_code
    assert not announcement.is_end_of_service


def test_decode_end_of_service_code():
    datagram = build_datagram(message="bye", control_code="EOS")

    announcement = decode_announcement(datagram, SENDER)

    assert announcement is not None
    assert announcement.message == "bye"
    assert announcement.control_code == "EOS"
    assert announcement.has_control_code
    assert announcement.is_end_of_service


@pytest.mark.parametrize("code", ["ABC", "A1B2", "Z99"])
def test_decode_reserved_control_codes(code):
    announcement = decode_announcement(
        build_datagram(control_code=code), SENDER
    )

    assert announcement is not None
    assert announcement.control_code == code
    assert not announcement.is_end_of_service


@pytest.mark.parametrize("length_delta", [-1, 1, -5, 10])
def test_length_mismatch_rejected(length_delta):
    datagram = build_datagram(length_delta=length_delta)

    assert decode_announcement(datagram, SENDER) is None


def test_length_boundary_at_digit_count_change():
    # Body of exactly 10 characters: the length field grows to two digits.
    message_data = build_message_data("h", "t", "n", 1, "m")
    assert message_data.startswith("10;")
    assert decode_announcement(wrap_message_data(message_data), SENDER)

    too_short = "9;" + message_data[3:]
    assert decode_announcement(wrap_message_data(too_short), SENDER) is None


def test_message_may_contain_separators():
    datagram = build_datagram(message="paper;low;toner ok")

    announcement = decode_announcement(datagram, SENDER)

    assert announcement is not None
    assert announcement.name == "Printer1"
    assert announcement.message == "paper;low;toner ok"


def test_empty_fields_accepted():
    datagram = build_datagram(host_name="", name="", message="")

    announcement = decode_announcement(datagram, SENDER)

    assert announcement is not None
    assert announcement.host_name == ""
    assert announcement.name == ""
    assert announcement.message == ""


def test_non_ascii_fields_counted_in_characters():
    datagram = build_datagram(name="Imprimante-é", message="prête")

    announcement = decode_announcement(datagram, SENDER)

    assert announcement is not None
    assert announcement.name == "Imprimante-é"
    assert announcement.message == "prête"


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"hello world",
        b"Salaam:",
        b"salaam:" + base64.b64encode(b"32;host1;print;Printer1;9100;ready;"),
        b"Salaam:not base64!",
        b"Salaam:QUJD",  # Valid base64, but not an announcement.
        b"Salaam:QUI",  # Missing padding.
        b"\xff\xfe\xfd",
        build_datagram() + b"\n",
        b" " + build_datagram(),
    ],
)
def test_malformed_datagrams_rejected(data):
    assert decode_announcement(data, SENDER) is None


def test_inner_message_not_utf8_rejected():
    datagram = b"Salaam:" + base64.b64encode(b"\xff\xfe;;;;1;;")

    assert decode_announcement(datagram, SENDER) is None


@pytest.mark.parametrize(
    "message_data",
    [
        "27;host1;print;Printer1;port;ready;",
        "31;host1;print;Printer1;9100;ready",
        "36;host1;print;Printer1;9100;ready;<eos>",
        "38;host1;print;Printer1;9100;ready;<EOSXX>",
        "34;host1;print;Printer1;9100;ready;<E>",
        "37;host1;print;Printer1;9100;ready;<1EO>",
        "xx;host1;print;Printer1;9100;ready;",
        "33;host1;print;Printer1;9100;re\nady;",
    ],
)
def test_invalid_inner_message_rejected(message_data):
    datagram = wrap_message_data(message_data)

    assert decode_announcement(datagram, SENDER) is None


def test_unwrap_envelope_returns_inner_text():
    assert (
        unwrap_envelope(wrap_message_data("5;a;b;c;1;d;")) == "5;a;b;c;1;d;"
    )
    assert unwrap_envelope(b"Salaam:!!!!") is None


def test_has_consistent_length():
    assert has_consistent_length("3;abc", 3)
    assert not has_consistent_length("3;abcd", 3)
    assert not has_consistent_length("3;ab", 3)
    assert has_consistent_length("10;" + "x" * 10, 10)


@pytest.mark.parametrize(
    "data",
    [
        b"hello",
        wrap_message_data("xx;host1;print;Printer1;9100;ready;"),
        build_datagram(length_delta=1),
        # Too many digits for int() on current interpreters.
        wrap_message_data("1" * 5000 + ";host1;print;Printer1;9100;ready;"),
    ],
)
def test_rejections_logged_at_debug(caplog, data):
    caplog.set_level(logging.DEBUG, logger="salaam.protocol.message_decoder")

    assert decode_announcement(data, SENDER) is None

    records = [
        record
        for record in caplog.records
        if record.name == "salaam.protocol.message_decoder"
    ]
    assert len(records) == 1
    assert records[0].levelno == logging.DEBUG
    assert SENDER in records[0].getMessage()
