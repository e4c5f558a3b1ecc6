"""Business settings for the payments domain.

Values come from the ``[custom]`` table of ``domain.toml`` and can be
overridden per key with ``PAYMENTS_<NAME>`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from payments.domain import payments


class PaymentSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PAYMENTS_", frozen=True, extra="ignore")

    # Payment limits
    min_payment_amount: float = Field(default=0.50, gt=0)
    max_payment_amount: float = Field(default=10000.00, gt=0)
    daily_payment_limit: float = Field(default=50000.00, gt=0)

    # Gateway simulation
    card_fee_rate: float = Field(default=0.029, ge=0)
    card_fixed_fee: float = Field(default=0.30, ge=0)
    payment_success_rate: float = Field(default=0.90, ge=0, le=1)
    refund_success_rate: float = Field(default=0.95, ge=0, le=1)

    # Lifecycle
    payment_expiry_minutes: int = Field(default=15, ge=0)
    refund_auto_settle: bool = True

    # Order service collaborator
    order_service_url: str = ""
    order_service_timeout: float = Field(default=5.0, gt=0)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment variables win over domain.toml values
        return (env_settings, init_settings)


_current_settings: PaymentSettings | None = None


def _domain_values() -> dict:
    custom = payments.config.get("custom") or {}
    known = PaymentSettings.model_fields
    return {key.lower(): value for key, value in custom.items() if key.lower() in known}


def get_settings() -> PaymentSettings:
    """Return the active settings, loading them on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = PaymentSettings(**_domain_values())
    return _current_settings


def configure_settings(**overrides) -> PaymentSettings:
    """Replace individual settings at runtime (useful for tests)."""
    global _current_settings
    _current_settings = get_settings().model_copy(update=overrides)
    return _current_settings


def reset_settings() -> None:
    """Drop runtime overrides; the next access reloads from configuration."""
    global _current_settings
    _current_settings = None
