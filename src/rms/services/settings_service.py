from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
import re
from typing import Any, Optional

from rms.domain.errors import ValidationError
from rms.domain.models import Settings
from rms.domain.money import to_decimal

log = logging.getLogger(__name__)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class SettingsService:
    def __init__(self, repo):
        self.repo = repo

    def get_settings(self) -> Settings:
        return self.repo.get_settings()

    def save_settings(self, settings: Settings) -> Settings:
        clean = validate_settings(settings)
        self.repo.save_settings(clean)
        log.info("settings_saved currency=%s logo=%s", clean.currency, bool(clean.logo))
        return clean


def validate_settings(settings: Settings) -> Settings:
    """Normalised copy of `settings`; raises ValidationError on bad fields."""
    name = (settings.restaurant_name or "").strip()
    if not name:
        raise ValidationError("Restaurant name is required.")

    currency = (settings.currency or "").strip().upper()
    if not _CURRENCY_RE.match(currency):
        raise ValidationError(f"Currency must be a 3-letter code. Received: {settings.currency!r}")

    opening = _clean_time(settings.opening_time, "Opening time")
    closing = _clean_time(settings.closing_time, "Closing time")
    if opening and closing and opening >= closing:
        raise ValidationError("Opening time must be before closing time.")

    tax_rate = settings.tax_rate
    if tax_rate is not None and str(tax_rate).strip() != "":
        try:
            tax_rate = to_decimal(tax_rate)
        except ValueError as e:
            raise ValidationError("Tax rate must be a number.") from e
        if not (0 <= tax_rate <= 100):
            raise ValidationError("Tax rate must be between 0 and 100.")
    else:
        tax_rate = None

    email = (settings.email or "").strip()
    if email and email.count("@") != 1:
        raise ValidationError("Email address is not valid.")

    return dataclasses.replace(
        settings,
        restaurant_name=name,
        address=(settings.address or "").strip(),
        phone=(settings.phone or "").strip(),
        email=email,
        tax_rate=tax_rate,
        currency=currency,
        opening_time=opening,
        closing_time=closing,
        receipt_footer=settings.receipt_footer or "",
        logo=settings.logo or None,
    )


def _clean_time(value: Optional[str], label: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    if not _TIME_RE.match(value):
        raise ValidationError(f"{label} must use HH:MM. Received: {value!r}")
    return value


def settings_to_payload(settings: Settings) -> dict[str, Any]:
    payload = dataclasses.asdict(settings)
    payload["tax_rate"] = str(settings.tax_rate) if settings.tax_rate is not None else None
    payload["logo"] = base64.b64encode(settings.logo).decode("ascii") if settings.logo else None
    return payload


def settings_from_payload(payload: dict[str, Any]) -> Settings:
    """Build Settings from UI payload; the logo arrives as base64 text."""
    known = {f.name for f in dataclasses.fields(Settings)}
    data = {k: v for k, v in payload.items() if k in known and v is not None}

    logo = data.get("logo")
    if isinstance(logo, str):
        text = logo.strip()
        if text.startswith("data:") and "," in text:
            text = text.split(",", 1)[1]
        try:
            data["logo"] = base64.b64decode(text, validate=True) if text else None
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Logo is not valid base64 data.") from e
    return Settings(**data)
