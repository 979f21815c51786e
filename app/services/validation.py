"""Boundary checks run before any domain operation touches state."""
from app.exceptions import ValidationError
from app.models.enums import PaymentMethod, VehicleTier


def validate_coordinates(lat: float | None, lng: float | None, field: str = "location") -> None:
    if lat is None or lng is None:
        raise ValidationError(f"{field} latitude and longitude are required")
    if not -90 <= lat <= 90:
        raise ValidationError(f"{field} latitude must be between -90 and 90, got {lat}")
    if not -180 <= lng <= 180:
        raise ValidationError(f"{field} longitude must be between -180 and 180, got {lng}")


def validate_tier(tier: str) -> str:
    try:
        return VehicleTier(tier).value
    except ValueError:
        raise ValidationError(f"Unsupported vehicle tier: {tier}") from None


def validate_payment_method(method: str) -> str:
    try:
        return PaymentMethod(method).value
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {method}") from None


def require(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return value
