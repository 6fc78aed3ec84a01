"""
promowheel.engine.identity — Participant Identity envelope
============================================================

Every participant request re-supplies the full identity tuple; there is no
server-held session.  The tuple is normalised once here so every gate and
counter keys on the same strings.
"""

from __future__ import annotations

from dataclasses import dataclass

from promowheel.database.models import Dimension

__all__ = ["Identity"]


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class Identity:
    """Who is attempting to play.

    Any field may be missing; a missing field simply isn't rate-limited or
    counted.  ``email`` is the idempotency key for participant records.
    """

    email: str | None = None
    phone: str | None = None
    ip: str | None = None
    device_fingerprint: str | None = None

    @classmethod
    def build(
        cls,
        *,
        email: str | None = None,
        phone: str | None = None,
        ip: str | None = None,
        device_fingerprint: str | None = None,
    ) -> Identity:
        """Normalise raw request values (trim, lower-case email, drop blanks)."""
        email = _clean(email)
        ip = _clean(ip)
        return cls(
            email=email.lower() if email else None,
            phone=_clean(phone),
            ip=None if ip == "unknown" else ip,
            device_fingerprint=_clean(device_fingerprint),
        )

    def values(self) -> dict[Dimension, str]:
        """Map of every supplied dimension → value, in gate order."""
        pairs = {
            Dimension.EMAIL: self.email,
            Dimension.PHONE: self.phone,
            Dimension.IP: self.ip,
            Dimension.DEVICE: self.device_fingerprint,
        }
        return {dim: val for dim, val in pairs.items() if val}

    @property
    def is_empty(self) -> bool:
        return not self.values()
