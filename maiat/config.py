"""
Maiat — Configuration

All settings load from environment variables with safe defaults for development.
In production, set MAIAT_ENV=production to enforce required values.
"""
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("MAIAT_ENV", "development")

        # === x402 payments ===
        self.X402_RECEIVER_ADDRESS = os.getenv("X402_RECEIVER_ADDRESS", "")
        if not self.X402_RECEIVER_ADDRESS:
            if self.ENVIRONMENT == "production":
                raise RuntimeError("X402_RECEIVER_ADDRESS must be set in production. Add it to .env")
            self.X402_RECEIVER_ADDRESS = ZERO_ADDRESS
        # Prices are smallest-unit integers (wei) kept as decimal strings
        self.X402_PRICE_QUERY = os.getenv("X402_PRICE_QUERY", "1000000000000000")
        self.X402_PRICE_VERIFY = os.getenv("X402_PRICE_VERIFY", "5000000000000000")
        self.X402_NETWORK = os.getenv("X402_NETWORK", "kite-testnet")
        self.X402_CHAIN_ID = int(os.getenv("X402_CHAIN_ID", "2368"))
        self.X402_CURRENCY = os.getenv("X402_CURRENCY", "KITE")
        self.X402_DEADLINE_SECONDS = int(os.getenv("X402_DEADLINE_SECONDS", "300"))
        self.X402_DEMO_MODE = _flag("X402_DEMO_MODE")
        self.PAYMENT_LOG_SIZE = int(os.getenv("PAYMENT_LOG_SIZE", "100"))

        # === Settlement chain ===
        self.SETTLEMENT_RPC_URL = os.getenv("SETTLEMENT_RPC_URL", "https://rpc-testnet.gokite.ai/")
        self.SETTLEMENT_PRIVATE_KEY = os.getenv("SETTLEMENT_PRIVATE_KEY", "")
        self.SETTLEMENT_EXPLORER_URL = os.getenv("SETTLEMENT_EXPLORER_URL", "https://testnet.kitescan.ai/tx/")
        self.SETTLEMENT_TIMEOUT_SECONDS = float(os.getenv("SETTLEMENT_TIMEOUT_SECONDS", "10"))

        # === Block explorers (usage probe) ===
        self.ETHERSCAN_API_URL = os.getenv("ETHERSCAN_API_URL", "https://api.etherscan.io/api")
        self.ETHERSCAN_API_KEY = os.getenv("ETHERSCAN_API_KEY", "")
        self.BASESCAN_API_URL = os.getenv("BASESCAN_API_URL", "https://api.basescan.org/api")
        self.BASESCAN_API_KEY = os.getenv("BASESCAN_API_KEY", "")
        self.BSCSCAN_API_URL = os.getenv("BSCSCAN_API_URL", "https://api.bscscan.com/api")
        self.BSCSCAN_API_KEY = os.getenv("BSCSCAN_API_KEY", "")
        self.PROBE_TIMEOUT_SECONDS = float(os.getenv("PROBE_TIMEOUT_SECONDS", "10"))
        self.REQUIRE_USAGE_PROOF = _flag("REQUIRE_USAGE_PROOF")

        # === Attestation log ===
        self.ATTESTATION_TOPIC_ID = os.getenv("ATTESTATION_TOPIC_ID", "")

        # === AI backends ===
        self.AI_API_KEY = os.getenv("AI_API_KEY", "")
        self.AI_BASE_URL = os.getenv("AI_BASE_URL", "https://api.openai.com/v1")
        self.AI_MODEL = os.getenv("AI_MODEL", "gpt-4o-mini")
        self.AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "10"))
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")

        # === Storage ===
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
        self.SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "true" if self.ENVIRONMENT != "production" else "false")
        self.NEO4J_URI = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        self.NEO4J_USER = os.getenv("NEO4J_USER", "neo4j")
        self.NEO4J_PASSWORD = os.getenv("NEO4J_PASSWORD", "maiat_dev_password")
        self.REDIS_URL = os.getenv("REDIS_URL", "")

        # === Reviews ===
        self.VERIFY_WAIT_SECONDS = float(os.getenv("VERIFY_WAIT_SECONDS", "15"))
        self.RATE_LIMIT_REVIEWS_PER_HOUR = int(os.getenv("RATE_LIMIT_REVIEWS_PER_HOUR", "5"))
        self.RATE_LIMIT_VERIFY_PER_HOUR = int(os.getenv("RATE_LIMIT_VERIFY_PER_HOUR", "3"))

        # === Application ===
        self.MAIAT_HOST = os.getenv("MAIAT_HOST", "0.0.0.0")
        self.MAIAT_PORT = int(os.getenv("MAIAT_PORT", "8000"))
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if o.strip()
        ]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def settlement_enabled(self) -> bool:
        return bool(self.SETTLEMENT_RPC_URL and self.SETTLEMENT_PRIVATE_KEY)

    @property
    def attestation_enabled(self) -> bool:
        return bool(self.ATTESTATION_TOPIC_ID)

    def explorer_endpoints(self) -> dict:
        """Chain name -> (api url, api key)."""
        return {
            "ethereum": (self.ETHERSCAN_API_URL, self.ETHERSCAN_API_KEY),
            "base": (self.BASESCAN_API_URL, self.BASESCAN_API_KEY),
            "bsc": (self.BSCSCAN_API_URL, self.BSCSCAN_API_KEY),
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings()
