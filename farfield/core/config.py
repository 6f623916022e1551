from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load the .env file from the directory the service is started from
load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True)

    # MongoDB
    MONGO_URL: str
    DB_NAME: str

    # Privy access tokens (ES256, issued by privy.io)
    PRIVY_APP_ID: str = ""
    PRIVY_VERIFICATION_KEY: str = ""
    PRIVY_ISSUER: str = "privy.io"

    # Blockchain
    BASE_RPC_URL: str = "https://sepolia.base.org"
    NETWORK_NAME: str = "Base Sepolia"
    FARFIELD_CONTRACT_ADDRESS: str = "0xAe8b2B4285776DbfD9972E1586F423701C6761B9"

    # Purchases
    PURCHASE_EXPIRY_MINUTES: int = 15
    PURCHASE_GAS_LIMIT: str = "200000"
    AMOUNT_TOLERANCE: float = 0.01  # dollars

    # Rate limiting
    RATE_LIMIT_BACKEND: str = "memory"  # memory, mongo
    RATE_LIMIT_MAX_REQUESTS: int = 20
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    # Peers allowed to set x-forwarded-for / x-real-ip, e.g. the load balancer
    TRUSTED_PROXIES: List[str] = []

    # Notifications kept per user
    NOTIFICATION_LIMIT: int = 100

    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

settings = Settings()
