import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # AI
    AI_PROVIDER: str = os.getenv("AI_PROVIDER", "gemini")
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")

    # Local storage
    DB_PATH: str = os.getenv(
        "DB_PATH",
        os.path.join(os.path.dirname(__file__), "..", "data", "swingjournal.db"),
    )

    # API
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Refresh timers
    PRICE_POLL_SECONDS: float = float(os.getenv("PRICE_POLL_SECONDS", "60"))
    TICKER_DEBOUNCE_MS: int = int(os.getenv("TICKER_DEBOUNCE_MS", "300"))

    # Google Sheets (OAuth handled outside the app; paste a valid access token)
    GOOGLE_SHEETS_ACCESS_TOKEN: str = os.getenv("GOOGLE_SHEETS_ACCESS_TOKEN", "")

    # Broker
    BROKER_PROVIDER: str = os.getenv("BROKER_PROVIDER", "demo")

    def validate(self):
        errors = []
        key_for_provider = {
            "gemini": self.GOOGLE_API_KEY,
            "groq": self.GROQ_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
            "openai": self.OPENAI_API_KEY,
        }
        if self.AI_PROVIDER not in key_for_provider:
            errors.append(f"Unknown AI_PROVIDER: {self.AI_PROVIDER}")
        elif not key_for_provider[self.AI_PROVIDER]:
            errors.append(f"An API key for AI_PROVIDER={self.AI_PROVIDER} is required")
        if self.PRICE_POLL_SECONDS <= 0:
            errors.append("PRICE_POLL_SECONDS must be positive")
        return errors


settings = Settings()
