from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and ((value[0] == "'" and value[-1] == "'") or (value[0] == '"' and value[-1] == '"')):
        return value[1:-1]
    return value


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        env_key = key.strip()
        env_value = _strip_quotes(value.strip())
        if not env_key:
            continue

        # Shell/exported env vars win over file values.
        os.environ.setdefault(env_key, env_value)


def load_environment() -> None:
    package_root = Path(__file__).resolve().parents[1]
    project_root = package_root.parent

    _load_env_file(project_root / ".env")
    _load_env_file(package_root / ".env")


@dataclass(frozen=True)
class EngineSettings:
    gateway_url: str = "http://127.0.0.1:8545/gateway"
    gateway_timeout_seconds: float = 10.0
    event_poll_seconds: float = 2.0
    poll_interval_seconds: float = 5.0
    confirmation_timeout_seconds: float = 120.0
    stats_dir: str = ".ledgerplay/stats"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            gateway_url=os.getenv("LEDGER_GATEWAY_URL", cls.gateway_url).rstrip("/"),
            gateway_timeout_seconds=max(0.5, int(os.getenv("LEDGER_TIMEOUT_MS", "10000")) / 1000.0),
            event_poll_seconds=max(0.1, int(os.getenv("LEDGER_EVENT_POLL_MS", "2000")) / 1000.0),
            poll_interval_seconds=max(0.1, int(os.getenv("POLL_INTERVAL_MS", "5000")) / 1000.0),
            confirmation_timeout_seconds=max(1.0, int(os.getenv("CONFIRMATION_TIMEOUT_MS", "120000")) / 1000.0),
            stats_dir=os.getenv("STATS_DIR", cls.stats_dir),
        )
