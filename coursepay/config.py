from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    env: str = "development"
    log_level: str = "INFO"

    database_url: str

    fondy_merchant_id: str
    fondy_merchant_password: str
    fondy_checkout_url: str = "https://pay.fondy.eu/api/checkout/url/"
    fondy_timeout: float = 30.0
    fondy_language: str = "ru"

    # where Fondy posts server callbacks and where the buyer lands afterwards
    server_callback_url: str = "https://your-backend.com/callback/fondy"
    frontend_return_url: str = "https://your-frontend.com/pay-return"

    service_api_key: str
    school_id: str = "default"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
