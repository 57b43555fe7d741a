from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = Field(default="5ELM Store", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    database_url: str = Field(default="sqlite:///./storefront.db", alias="DATABASE_URL")
    currency: str = Field(default="INR", alias="CURRENCY")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Precios
    tax_rate: Decimal = Field(default=Decimal("0.18"), alias="TAX_RATE")
    free_shipping_threshold: Decimal = Field(
        default=Decimal("2000"), alias="FREE_SHIPPING_THRESHOLD"
    )
    shipping_standard: Decimal = Field(default=Decimal("100"), alias="SHIPPING_STANDARD")
    shipping_express: Decimal = Field(default=Decimal("200"), alias="SHIPPING_EXPRESS")
    shipping_overnight: Decimal = Field(default=Decimal("500"), alias="SHIPPING_OVERNIGHT")
    # Carrito / checkout
    cart_ttl_days: int = Field(default=30, alias="CART_TTL_DAYS")
    available_coupons_limit: int = Field(default=10, alias="AVAILABLE_COUPONS_LIMIT")
    idempotency_ttl: int = Field(default=3600, alias="IDEMPOTENCY_TTL")

    class Config:
        env_file = ".env"

    @property
    def shipping_fees(self) -> dict[str, Decimal]:
        return {
            "standard": self.shipping_standard,
            "express": self.shipping_express,
            "overnight": self.shipping_overnight,
        }


settings = Settings()
