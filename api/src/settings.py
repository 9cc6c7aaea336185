from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='pix_api_')

    min_amount: Decimal = Field(default=Decimal('0.01'))
    max_amount: Decimal = Field(default=Decimal('999999.99'))

    payment_ttl_sec: float = Field(default=30 * 60)
    retention_sec: float = Field(default=24 * 60 * 60)

    sweep_loop_sleep_duration: float = Field(default=60.0)
    reconciliation_loop_sleep_duration: float = Field(default=5.0)

    # Только для тестов и демо: мок-процессор сообщает `approved` спустя N секунд
    simulate_approval_after_sec: float | None = Field(default=None)

    debug: bool = Field(default=False)
    log_level: str = Field(default='INFO')


class MerchantSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='pix_merchant_')

    key: str = Field(default='pix@example.com')
    name: str = Field(default='PIX PAYMENT')
    city: str = Field(default='BRASILIA')


class MercadoPagoSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='allow', env_prefix='pix_mercadopago_')

    access_token: str | None = Field(default=None)
    base_url: str = Field(default='https://api.mercadopago.com')
    connection_timeout_sec: float = 30.0
    notification_url: str | None = Field(default=None)
    default_payer_email: str = Field(default='pagador@pix.com')


settings = Settings()
merchant_settings = MerchantSettings()
mercadopago_settings = MercadoPagoSettings()
