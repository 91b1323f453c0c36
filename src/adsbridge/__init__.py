"""ADS1115 sampling bridge: I2C sampling, per-output averaging, console and MQTT publishing."""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("ads1115-bridge")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = ["__version__"]
