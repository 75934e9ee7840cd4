"""go-plugin compatible handshake between kubeswitch and a store plugin."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from kubeswitch.shared.errors import PluginError

CORE_PROTOCOL_VERSION = 1
APP_PROTOCOL_VERSION = 1
MAGIC_COOKIE_KEY = "KUBESWITCH_PLUGIN"
MAGIC_COOKIE_VALUE = "kubeswitch"
PROTOCOL_GRPC = "grpc"

DEFAULT_MIN_PORT = 10000
DEFAULT_MAX_PORT = 25000


@dataclass(frozen=True)
class Handshake:
    """Parsed handshake line a plugin prints on stdout once it is serving."""

    core_version: int
    app_version: int
    network: str
    address: str
    protocol: str
    server_cert: str = ""

    @property
    def target(self) -> str:
        """gRPC channel target for the advertised address."""
        if self.network == "unix":
            return f"unix:{self.address}"
        return self.address

    def to_line(self) -> str:
        parts = [
            str(self.core_version),
            str(self.app_version),
            self.network,
            self.address,
            self.protocol,
        ]
        if self.server_cert:
            parts.append(self.server_cert)
        return "|".join(parts)


def parse_handshake(line: str) -> Handshake:
    """Parse ``CORE|APP|NETWORK|ADDR|PROTOCOL[|CERT]`` and check versions."""

    parts = line.strip().split("|")
    if len(parts) < 4:
        raise PluginError(f"unrecognized plugin handshake line {line.strip()!r}")
    try:
        core, app = int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise PluginError(f"invalid protocol versions in plugin handshake {line.strip()!r}") from exc

    if core != CORE_PROTOCOL_VERSION:
        raise PluginError(
            f"incompatible core plugin protocol version {core}, expected {CORE_PROTOCOL_VERSION}"
        )
    if app != APP_PROTOCOL_VERSION:
        raise PluginError(
            f"incompatible plugin API version {app}, expected {APP_PROTOCOL_VERSION}"
        )

    network, address = parts[2], parts[3]
    if network not in ("unix", "tcp"):
        raise PluginError(f"unsupported plugin network type {network!r}")

    protocol = parts[4] if len(parts) > 4 and parts[4] else "netrpc"
    if protocol != PROTOCOL_GRPC:
        raise PluginError(f"plugin speaks {protocol!r}; only {PROTOCOL_GRPC!r} is supported")

    cert = parts[5] if len(parts) > 5 else ""
    if cert:
        raise PluginError("plugins with automatic mTLS are not supported")

    return Handshake(core, app, network, address, protocol, cert)


def plugin_environment(base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Environment for a plugin child: the parent's plus the handshake variables."""

    env = dict(os.environ if base is None else base)
    env[MAGIC_COOKIE_KEY] = MAGIC_COOKIE_VALUE
    env["PLUGIN_PROTOCOL_VERSIONS"] = str(APP_PROTOCOL_VERSION)
    env.setdefault("PLUGIN_MIN_PORT", str(DEFAULT_MIN_PORT))
    env.setdefault("PLUGIN_MAX_PORT", str(DEFAULT_MAX_PORT))
    return env


def check_magic_cookie(env: Optional[Mapping[str, str]] = None) -> None:
    """Fail when a plugin binary is started by something other than kubeswitch."""

    env = os.environ if env is None else env
    if env.get(MAGIC_COOKIE_KEY) != MAGIC_COOKIE_VALUE:
        raise PluginError(
            "This binary is a plugin. These are not meant to be executed directly. "
            "Please execute the program that consumes these plugins, which will load "
            "any plugins automatically"
        )
