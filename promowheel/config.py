"""
promowheel.config — YAML Configuration Loader
===============================================

Reads ``config.yaml`` for soft, non-secret settings (defaults applied to new
campaigns, calendar conventions for the rate-limit windows, log level).
Secrets and connection strings (``DATABASE_URL``, ``JWT_SECRET``) stay in the
environment and are never read from YAML.

Usage::

    from promowheel.config import load_config

    cfg = load_config()                    # reads ./config.yaml by default
    print(cfg.default_redemption_expiry_days)   # 7
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from pathlib import Path

import yaml

WEEKDAYS: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PromoWheelConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so the API can start without a config file in
    development; production deployments ship an explicit file.
    """

    app_name: str = "PromoWheel"
    api_port: int = 8000

    # Applied to campaigns that don't set their own redemption window
    default_redemption_expiry_days: int = 7

    # Calendar anchor for the weekly spin window
    week_starts_on: str = "sunday"

    # Characters of the campaign id used as the reference-number prefix
    reference_prefix_length: int = 8

    log_level: str = "INFO"

    # Peers (IPs or CIDR ranges) whose forwarded-for headers are believed
    trusted_proxies: tuple[str, ...] = ()

    @property
    def week_start_index(self) -> int:
        """``datetime.weekday()`` index of the first day of the week."""
        return WEEKDAYS.index(self.week_starts_on)


def _trusted_proxies(raw) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    proxies = tuple(str(entry).strip() for entry in raw if str(entry).strip())
    for entry in proxies:
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError:
            raise ValueError(
                f"trusted_proxies entry is not an IP or CIDR range: {entry!r}"
            ) from None
    return proxies


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PromoWheelConfig:
    """Read *path* and return a :class:`PromoWheelConfig` instance.

    Keys missing from the file keep their dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``week_starts_on`` is not a weekday name or a numeric setting is
        out of range, or a ``trusted_proxies`` entry is not an IP or CIDR range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = PromoWheelConfig()
    week_start = str(raw.get("week_starts_on", defaults.week_starts_on)).lower()
    if week_start not in WEEKDAYS:
        raise ValueError(
            f"week_starts_on must be one of {', '.join(WEEKDAYS)} (got {week_start!r})"
        )

    expiry_days = int(
        raw.get("default_redemption_expiry_days", defaults.default_redemption_expiry_days)
    )
    if expiry_days < 1:
        raise ValueError("default_redemption_expiry_days must be at least 1")

    return PromoWheelConfig(
        app_name=raw.get("app_name", defaults.app_name),
        api_port=int(raw.get("api_port", defaults.api_port)),
        default_redemption_expiry_days=expiry_days,
        week_starts_on=week_start,
        reference_prefix_length=int(
            raw.get("reference_prefix_length", defaults.reference_prefix_length)
        ),
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
        trusted_proxies=_trusted_proxies(raw.get("trusted_proxies")),
    )
