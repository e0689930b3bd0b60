"""
Device fingerprint generation.

The fingerprint is a SHA-256 over host identity components joined with '|':

    hostname | machine id | python version | app version | app key

The machine id comes from the OS (machine-id file, IOPlatformUUID or the
SMBIOS UUID) and falls back to the primary MAC address. Empty components are
dropped rather than replaced with a placeholder, so the hash only depends on
what the host actually reports.
"""

import hashlib
import platform
import re
import socket
import subprocess
import uuid
from pathlib import Path

from licensing_client.common.config import LicensingSettings
from licensing_client.common.logging import get_logger

logger = get_logger("fingerprint")

UNKNOWN = "unknown"
COMPONENT_SEPARATOR = "|"
COMMAND_TIMEOUT = 5  # seconds for OS utilities

LINUX_MACHINE_ID_PATHS = (
    Path("/etc/machine-id"),
    Path("/var/lib/dbus/machine-id"),
)
IOREG_UUID_PATTERN = re.compile(r'"IOPlatformUUID" = "(.+?)"')


class FingerprintGenerator:
    """Derives a stable identifier for the current device."""

    def __init__(
        self,
        app_key: str = "",
        app_version: str = "",
        environment: str = "production",
        timezone: str = "UTC",
    ):
        self.app_key = app_key
        self.app_version = app_version
        self.environment = environment
        self.timezone = timezone

    @classmethod
    def from_settings(cls, settings: LicensingSettings) -> "FingerprintGenerator":
        return cls(
            app_key=settings.app_key,
            app_version=settings.app_version,
            environment=settings.environment,
            timezone=settings.timezone,
        )

    def generate(self) -> str:
        """Return the hex SHA-256 fingerprint of this device."""
        components = [
            self.hostname(),
            self.machine_id(),
            self.python_version(),
            self.app_version,
            self.app_key,
        ]
        material = COMPONENT_SEPARATOR.join(c for c in components if c)
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def metadata(self) -> dict[str, str]:
        """Diagnostic fields sent with activation and heartbeat (not hashed)."""
        return {
            "hostname": self.hostname(),
            "os": platform.system() or UNKNOWN,
            "python_version": self.python_version(),
            "app_version": self.app_version,
            "environment": self.environment,
            "timezone": self.timezone,
        }

    # ── Hardware sources ──

    def hostname(self) -> str:
        try:
            return socket.gethostname() or UNKNOWN
        except OSError:
            return UNKNOWN

    def python_version(self) -> str:
        return platform.python_version()

    def machine_id(self) -> str:
        """OS machine identifier, falling back to the MAC address."""
        system = platform.system()
        machine_id = ""
        if system == "Linux":
            machine_id = self._linux_machine_id()
        elif system == "Darwin":
            machine_id = self._darwin_machine_id()
        elif system == "Windows":
            machine_id = self._windows_machine_id()

        return machine_id or self.mac_address()

    def mac_address(self) -> str:
        """Primary interface MAC address, or 'unknown'.

        uuid.getnode() returns a random number with the multicast bit set
        when no hardware address can be found; that value is not stable
        across processes and is rejected.
        """
        try:
            node = uuid.getnode()
        except (OSError, ValueError):
            return UNKNOWN
        if (node >> 40) & 0x01:
            return UNKNOWN
        return ":".join(
            f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -1, -8)
        )

    def _linux_machine_id(self) -> str:
        for path in LINUX_MACHINE_ID_PATHS:
            try:
                value = path.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if value:
                return value
        return ""

    def _darwin_machine_id(self) -> str:
        output = _run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
        match = IOREG_UUID_PATTERN.search(output)
        return match.group(1) if match else ""

    def _windows_machine_id(self) -> str:
        output = _run(["wmic", "csproduct", "get", "UUID"])
        lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
        # First line is the column header
        if len(lines) > 1:
            return lines[1]
        return ""


def _run(command: list[str]) -> str:
    """Run an OS utility, returning stdout or '' on any failure."""
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Fingerprint command %s failed: %s", command[0], exc)
        return ""
    return result.stdout or ""
