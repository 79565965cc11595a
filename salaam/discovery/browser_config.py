"""Configuration parameters for a SalaamBrowser.

This module defines `BrowserConfig`, which encapsulates where the browser
listens, how quickly silent services are considered gone, how often the
registry is swept for them, and whether announcements from the local
machine are processed.
"""

from typing import Optional, overload

from salaam.protocol.constants import SALAAM_PORT

DEFAULT_DISAPPEARANCE_DELAY_SECONDS = 4.0
DEFAULT_SWEEP_DIVISOR = 5
DEFAULT_BIND_ADDRESS = "0.0.0.0"


def validate_disappearance_delay(delay_seconds: float) -> float:
    """Validates a disappearance delay, returning it as a float.

    Raises:
        ValueError: If `delay_seconds` is not a positive number.
    """
    if isinstance(delay_seconds, bool) or not isinstance(
        delay_seconds, (int, float)
    ):
        raise ValueError(
            f"Disappearance delay must be a number, got {delay_seconds!r}."
        )
    if not delay_seconds > 0:
        raise ValueError(
            f"Disappearance delay must be positive, got {delay_seconds}."
        )
    return float(delay_seconds)


class BrowserConfig:
    """Holds configuration parameters for a `SalaamBrowser`.

    Instances can be created either by providing individual settings (all
    of which have defaults) or by cloning an existing `BrowserConfig`.
    """

    @overload
    def __init__(
        self,
        *,
        port: int = SALAAM_PORT,
        bind_address: str = DEFAULT_BIND_ADDRESS,
        disappearance_delay_seconds: float = DEFAULT_DISAPPEARANCE_DELAY_SECONDS,
        sweep_divisor: int = DEFAULT_SWEEP_DIVISOR,
        receive_from_local_machine: bool = False,
    ):
        ...

    @overload
    def __init__(self, *, other_config: "BrowserConfig"):
        ...

    def __init__(
        self,
        *,
        other_config: Optional["BrowserConfig"] = None,
        port: int = SALAAM_PORT,
        bind_address: str = DEFAULT_BIND_ADDRESS,
        disappearance_delay_seconds: float = DEFAULT_DISAPPEARANCE_DELAY_SECONDS,
        sweep_divisor: int = DEFAULT_SWEEP_DIVISOR,
        receive_from_local_machine: bool = False,
    ):
        """Initializes the BrowserConfig.

        Args:
            other_config: An existing `BrowserConfig` to clone. If provided,
                all other arguments are ignored.
            port: UDP port to listen on. Defaults to the protocol's
                well-known port.
            bind_address: Local address to bind the listening socket to.
                Defaults to all interfaces.
            disappearance_delay_seconds: How long an instance may stay
                silent before it is considered gone. Defaults to 4 seconds.
            sweep_divisor: The registry is swept every
                `disappearance_delay_seconds / sweep_divisor` seconds, so
                larger values detect disappearance sooner at the cost of
                more frequent sweeps. Defaults to 5.
            receive_from_local_machine: Whether announcements published on
                this machine are reported. Defaults to False.

        Raises:
            ValueError: If any setting is out of range.
        """
        if other_config is not None:
            BrowserConfig.__init__(
                self,
                port=other_config.port,
                bind_address=other_config.bind_address,
                disappearance_delay_seconds=other_config.disappearance_delay_seconds,
                sweep_divisor=other_config.sweep_divisor,
                receive_from_local_machine=other_config.receive_from_local_machine,
            )
            return

        if (
            isinstance(port, bool)
            or not isinstance(port, int)
            or not 0 <= port <= 65535
        ):
            raise ValueError(f"Port must be in [0, 65535], got {port!r}.")
        if not isinstance(bind_address, str) or not bind_address:
            raise ValueError(
                f"Bind address must be a non-empty string, got {bind_address!r}."
            )
        if (
            isinstance(sweep_divisor, bool)
            or not isinstance(sweep_divisor, int)
            or sweep_divisor < 1
        ):
            raise ValueError(
                f"Sweep divisor must be an integer >= 1, got {sweep_divisor!r}."
            )

        self.__port: int = port
        self.__bind_address: str = bind_address
        self.__disappearance_delay_seconds: float = (
            validate_disappearance_delay(disappearance_delay_seconds)
        )
        self.__sweep_divisor: int = sweep_divisor
        self.__receive_from_local_machine: bool = bool(
            receive_from_local_machine
        )

    @property
    def port(self) -> int:
        return self.__port

    @property
    def bind_address(self) -> str:
        return self.__bind_address

    @property
    def disappearance_delay_seconds(self) -> float:
        return self.__disappearance_delay_seconds

    @property
    def sweep_divisor(self) -> int:
        return self.__sweep_divisor

    @property
    def sweep_interval_seconds(self) -> float:
        """Seconds between two sweeps of the registry."""
        return self.__disappearance_delay_seconds / self.__sweep_divisor

    @property
    def receive_from_local_machine(self) -> bool:
        return self.__receive_from_local_machine

    def __repr__(self) -> str:
        return (
            f"BrowserConfig(port={self.__port}, "
            f"bind_address={self.__bind_address!r}, "
            f"disappearance_delay_seconds={self.__disappearance_delay_seconds}, "
            f"sweep_divisor={self.__sweep_divisor}, "
            f"receive_from_local_machine={self.__receive_from_local_machine})"
        )
