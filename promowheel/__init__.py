"""
PromoWheel — Campaign Participation & Entitlement Engine
==========================================================
Runs promotional spin-the-wheel and scratch-card campaigns for business
operators: decides whether a participant may play, draws and records the
prize exactly once per eligible attempt, and meters the operator's prepaid
credits without double-charging.

Package layout::

    promowheel/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared enums, messages, UTC helpers
    ├── errors.py          # Engine exception hierarchy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session helper + async bridge
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── identity.py    # Identity envelope (email, phone, ip, device)
    │   ├── lifecycle.py   # Effective campaign status resolver
    │   ├── limits.py      # Composable rate-limit policies
    │   └── draw.py        # CSPRNG prize draw
    ├── services/
    │   ├── ledger.py               # Credit reservation + grants
    │   ├── participation_service.py # Attempt history queries + gate
    │   ├── play_service.py         # check-spin / spin / claim-prize / leads
    │   ├── campaign_service.py     # Operator campaign management
    │   └── notifications.py        # Fire-and-forget notification hooks
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency injection, JWT validation
        └── routes/        # Public, operator and admin endpoints
"""

__version__ = "0.1.0"
