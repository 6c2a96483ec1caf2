"""
NetworkManager helpers — Wi-Fi discovery/connection and DNS override.

Thin wrappers over ``nmcli`` in terse mode. Used by the network wait
action (DNS fallback) and the interactive ``cortado wifi`` command.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass

from cortado.adapters.shell.command import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

_TIMEOUT = 30

_LINK_TYPES = {"wifi", "ethernet", "802-11-wireless", "802-3-ethernet"}


@dataclass(frozen=True)
class WifiNetwork:
    ssid: str
    security: str
    signal: int

    @property
    def is_open(self) -> bool:
        return self.security in ("", "--")

    @property
    def key_mgmt(self) -> str:
        """The key management NetworkManager needs for this network."""
        return "sae" if "WPA3" in self.security and "WPA2" not in self.security else "wpa-psk"


def nmcli_available() -> bool:
    return shutil.which("nmcli") is not None


def split_terse(line: str) -> list[str]:
    """Split an ``nmcli -t`` line on unescaped colons."""
    fields, current, escaped = [], [], False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


def active_connection(runner: CommandRunner) -> str | None:
    """Name of the first active wifi/ethernet connection."""
    result = runner.run(["nmcli", "-t", "-f", "NAME,TYPE", "con", "show", "--active"], timeout=_TIMEOUT)
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        fields = split_terse(line)
        if len(fields) >= 2 and fields[1] in _LINK_TYPES:
            return fields[0]
    return None


def force_dns(runner: CommandRunner, servers: list[str]) -> bool:
    """Pin DNS servers on the active connection and bring it back up."""
    con = active_connection(runner)
    if con is None:
        logger.warning("No active NetworkManager connection to override DNS on")
        return False
    logger.warning("Forcing DNS on '%s' to: %s", con, " ".join(servers))
    for argv in (
        ["nmcli", "con", "mod", con, "ipv4.ignore-auto-dns", "yes"],
        ["nmcli", "con", "mod", con, "ipv4.dns", " ".join(servers)],
        ["nmcli", "con", "up", con],
    ):
        result = runner.run(argv, timeout=_TIMEOUT, privileged=True)
        if not result.ok:
            logger.error("DNS override failed: %s", result.stderr.strip() or result.error)
            return False
    return True


def wifi_device(runner: CommandRunner) -> str | None:
    result = runner.run(["nmcli", "-t", "-f", "DEVICE,TYPE", "dev", "status"], timeout=_TIMEOUT)
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        fields = split_terse(line)
        if len(fields) >= 2 and fields[1] == "wifi":
            return fields[0]
    return None


def enable_radio(runner: CommandRunner) -> bool:
    """Lift an rfkill soft block and switch the Wi-Fi radio on."""
    unblock = runner.run(["rfkill", "unblock", "wifi"], timeout=_TIMEOUT, privileged=True)
    if not unblock.ok:
        logger.debug("rfkill unblock failed: %s", unblock.stderr.strip() or unblock.error)
    return runner.run(["nmcli", "radio", "wifi", "on"], timeout=_TIMEOUT).ok


def scan_networks(runner: CommandRunner, device: str) -> list[WifiNetwork]:
    """Visible networks on ``device``, strongest first, one per SSID."""
    result = runner.run(
        ["nmcli", "-t", "-f", "SSID,SECURITY,SIGNAL", "dev", "wifi", "list", "ifname", device],
        timeout=_TIMEOUT,
    )
    if not result.ok:
        return []
    best: dict[str, WifiNetwork] = {}
    for line in result.stdout.splitlines():
        fields = split_terse(line)
        if len(fields) < 3 or not fields[0]:
            continue
        try:
            signal = int(fields[2])
        except ValueError:
            signal = 0
        network = WifiNetwork(ssid=fields[0], security=fields[1], signal=signal)
        if network.ssid not in best or best[network.ssid].signal < signal:
            best[network.ssid] = network
    return sorted(best.values(), key=lambda n: n.signal, reverse=True)


def connect_wifi(
    runner: CommandRunner,
    device: str,
    network: WifiNetwork,
    password: str = "",
) -> CommandResult:
    argv = ["nmcli", "dev", "wifi", "connect", network.ssid]
    if not network.is_open:
        argv += ["password", password]
    argv += ["ifname", device]
    if not network.is_open:
        argv += ["--", "802-11-wireless-security.key-mgmt", network.key_mgmt]
    return runner.run(argv, timeout=60)
