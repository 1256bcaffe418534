"""Per-business settings read from the ``settings`` table."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .db import setting_get
from .money import to_percent


@dataclass(slots=True, frozen=True)
class BusinessConfig:
    company_name: str
    currency: str
    tip_pct: Decimal
    tax_pct: Decimal

    @classmethod
    def load(cls) -> "BusinessConfig":
        return cls(
            company_name=setting_get("company_name", "Mesa POS") or "Mesa POS",
            currency=(setting_get("currency", "HNL") or "HNL").strip().upper(),
            tip_pct=to_percent(setting_get("tip_pct", "0")),
            tax_pct=to_percent(setting_get("tax_pct", "0")),
        )
