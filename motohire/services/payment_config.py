"""Payment configuration for M-Pesa (Safaricom Daraja)."""

from motohire.config.settings import Settings

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"


class MpesaConfig:
    """M-Pesa STK push configuration."""

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        passkey: str,
        shortcode: str = "174379",
        callback_url: str = "",
        environment: str = "sandbox",
        timeout_seconds: float = 30.0,
        simulation_enabled: bool = False,
        simulation_delay_seconds: float = 3.0,
    ):
        """Initialize payment config."""
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.passkey = passkey
        self.shortcode = shortcode
        self.callback_url = callback_url
        self.environment = environment
        self.timeout_seconds = timeout_seconds
        self.simulation_enabled = simulation_enabled
        self.simulation_delay_seconds = simulation_delay_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "MpesaConfig":
        """Build config from application settings."""
        return cls(
            consumer_key=settings.mpesa_consumer_key,
            consumer_secret=settings.mpesa_consumer_secret,
            passkey=settings.mpesa_passkey,
            shortcode=settings.mpesa_shortcode,
            callback_url=settings.mpesa_callback_url,
            environment=settings.mpesa_environment,
            timeout_seconds=settings.mpesa_timeout_seconds,
            simulation_enabled=settings.mpesa_simulation_enabled,
            simulation_delay_seconds=settings.mpesa_simulation_delay_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether the credentials needed for a live request are set."""
        return bool(
            self.consumer_key and self.consumer_secret and self.passkey and self.callback_url
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def base_url(self) -> str:
        """Daraja API root for the configured environment."""
        return PRODUCTION_BASE_URL if self.is_production else SANDBOX_BASE_URL
