import pytest

from salaam.discovery.browser_config import (
    BrowserConfig,
    validate_disappearance_delay,
)
from salaam.protocol.constants import SALAAM_PORT


def test_defaults():
    config = BrowserConfig()

    assert config.port == SALAAM_PORT
    assert config.bind_address == "0.0.0.0"
    assert config.disappearance_delay_seconds == 4.0
    assert config.sweep_divisor == 5
    assert config.sweep_interval_seconds == pytest.approx(0.8)
    assert config.receive_from_local_machine is False


def test_custom_values():
    config = BrowserConfig(
        port=0,
        bind_address="127.0.0.1",
        disappearance_delay_seconds=10,
        sweep_divisor=2,
        receive_from_local_machine=True,
    )

    assert config.port == 0
    assert config.bind_address == "127.0.0.1"
    assert config.disappearance_delay_seconds == 10.0
    assert isinstance(config.disappearance_delay_seconds, float)
    assert config.sweep_interval_seconds == 5.0
    assert config.receive_from_local_machine is True


def test_clone_from_other_config():
    original = BrowserConfig(
        port=1234, disappearance_delay_seconds=2.5, sweep_divisor=4
    )

    clone = BrowserConfig(other_config=original)

    assert clone is not original
    assert clone.port == 1234
    assert clone.disappearance_delay_seconds == 2.5
    assert clone.sweep_divisor == 4
    assert clone.bind_address == original.bind_address
    assert (
        clone.receive_from_local_machine
        == original.receive_from_local_machine
    )


@pytest.mark.parametrize("port", [-1, 65536, "54183", True, 1.5])
def test_invalid_port(port):
    with pytest.raises(ValueError, match="Port"):
        BrowserConfig(port=port)


@pytest.mark.parametrize("bind_address", ["", None, 127])
def test_invalid_bind_address(bind_address):
    with pytest.raises(ValueError, match="Bind address"):
        BrowserConfig(bind_address=bind_address)


@pytest.mark.parametrize("delay", [0, -1, -0.5, "4", None, True])
def test_invalid_disappearance_delay(delay):
    with pytest.raises(ValueError, match="Disappearance delay"):
        BrowserConfig(disappearance_delay_seconds=delay)


@pytest.mark.parametrize("divisor", [0, -3, 2.5, False])
def test_invalid_sweep_divisor(divisor):
    with pytest.raises(ValueError, match="Sweep divisor"):
        BrowserConfig(sweep_divisor=divisor)


def test_validate_disappearance_delay_returns_float():
    assert validate_disappearance_delay(3) == 3.0
    assert isinstance(validate_disappearance_delay(3), float)


def test_repr_mentions_settings():
    text = repr(BrowserConfig(port=99))

    assert "port=99" in text
    assert "sweep_divisor=5" in text
