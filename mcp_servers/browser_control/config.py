from __future__ import annotations

import argparse
import json
import os
import secrets
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

DEFAULT_PORTS: tuple[int, ...] = (8081, 8082)
DEFAULT_CONFIG_PATH = "~/.config/browser-control/config.json"
DEFAULT_PROFILE_PATH = "~/.config/google-chrome"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def parse_ports(raw: str | None) -> list[int]:
    ports: list[int] = []
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            port = int(chunk)
        except ValueError as exc:
            raise ConfigError(f"Invalid port: {chunk!r}") from exc
        if not 0 <= port <= 65535:
            raise ConfigError(f"Port out of range: {port}")
        if port not in ports:
            ports.append(port)
    return ports


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


def load_config_file(path: str) -> dict[str, object]:
    """Read the shared JSON config (``{"secret": ..., "ports": [...]}``); missing file -> {}."""
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Failed to load {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{p} must contain a JSON object")
    return data


@dataclass
class BridgeConfig:
    secret: str = field(default="", repr=False)
    host: str = "127.0.0.1"
    ports: list[int] = field(default_factory=lambda: list(DEFAULT_PORTS))
    retry_interval: float = 2.0
    request_timeout: float = 15.0
    connect_timeout: float = 4.0
    max_content_length: int = 50_000
    history_max_results: int = 200
    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    profile_path: str = field(default_factory=lambda: expand_path(DEFAULT_PROFILE_PATH))
    config_path: str = field(default_factory=lambda: expand_path(DEFAULT_CONFIG_PATH))

    @classmethod
    def from_env(cls) -> BridgeConfig:
        config_path = expand_path(os.environ.get("MCP_BRIDGE_CONFIG") or DEFAULT_CONFIG_PATH)
        file_cfg = load_config_file(config_path)

        secret = (os.environ.get("MCP_BRIDGE_SECRET") or "").strip()
        if not secret:
            raw_secret = file_cfg.get("secret")
            secret = raw_secret.strip() if isinstance(raw_secret, str) else ""

        ports = parse_ports(os.environ.get("MCP_BRIDGE_PORTS"))
        if not ports:
            raw_ports = file_cfg.get("ports")
            if isinstance(raw_ports, list):
                ports = parse_ports(",".join(str(p) for p in raw_ports))
        if not ports:
            ports = list(DEFAULT_PORTS)

        return cls(
            secret=secret,
            host=(os.environ.get("MCP_BRIDGE_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            ports=ports,
            retry_interval=max(0.05, _env_float("MCP_BRIDGE_RETRY_INTERVAL", 2.0)),
            request_timeout=max(0.1, _env_float("MCP_BRIDGE_REQUEST_TIMEOUT", 15.0)),
            connect_timeout=max(0.0, min(_env_float("MCP_BRIDGE_CONNECT_TIMEOUT", 4.0), 30.0)),
            max_content_length=max(1, _env_int("MCP_BRIDGE_MAX_CONTENT_LENGTH", 50_000)),
            history_max_results=max(1, _env_int("MCP_BRIDGE_HISTORY_MAX_RESULTS", 200)),
            cdp_host=(os.environ.get("MCP_CDP_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=_env_int("MCP_CDP_PORT", 9222),
            profile_path=expand_path(os.environ.get("MCP_BROWSER_PROFILE") or DEFAULT_PROFILE_PATH),
            config_path=config_path,
        )

    def require_secret(self) -> str:
        if not self.secret:
            raise ConfigError(
                "No shared secret configured. Set MCP_BRIDGE_SECRET or run browser-control-init "
                f"to create {self.config_path} (both peers must use the same secret)."
            )
        return self.secret


def generate_secret() -> str:
    return secrets.token_hex(32)


def write_config_file(path: str, *, secret: str, ports: list[int] | None = None) -> Path:
    p = Path(expand_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {"secret": secret, "ports": list(ports or DEFAULT_PORTS)}
    p.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    # Owner-only: the file authenticates every command sent to the browser.
    os.chmod(p, 0o600)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="browser-control-init",
        description="Create the shared-secret config used by the MCP server and the browser agent.",
    )
    parser.add_argument("--path", default=os.environ.get("MCP_BRIDGE_CONFIG") or DEFAULT_CONFIG_PATH)
    parser.add_argument("--ports", default=",".join(str(p) for p in DEFAULT_PORTS))
    parser.add_argument("--force", action="store_true", help="overwrite an existing config")
    args = parser.parse_args(argv)

    target = Path(expand_path(args.path))
    if target.exists() and not args.force:
        print(f"{target} already exists (use --force to rotate the secret)", file=sys.stderr)
        return 1
    try:
        ports = parse_ports(args.ports) or list(DEFAULT_PORTS)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    written = write_config_file(str(target), secret=generate_secret(), ports=ports)
    print(f"Wrote {written}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
