# secretchat/core/config.py
import os
from dotenv import load_dotenv

# Load environment variables from the .env file
load_dotenv()


class Settings:
    """
    Setup environment variables.
        - DEFAULT_ROOM_NAME label used when a room is created without a name
        - BACKLOG_SIZE number of messages replayed to a joining participant
        - MESSAGE_HISTORY_LIMIT max messages kept in memory per room
        - *_DELAY_SECONDS timers for the initial message, status updates and reaping
        - PUBLIC_BASE_URL origin used to build shareable room links
          (falls back to the request's base URL when empty)

    Any value can be overridden with keyword arguments:
        Settings(ROOM_REAP_DELAY_SECONDS=0.1)
    """

    def __init__(self, **overrides) -> None:
        self.DEFAULT_ROOM_NAME: str = os.getenv("DEFAULT_ROOM_NAME", "Chat Rahasia")

        self.BACKLOG_SIZE: int = int(os.getenv("BACKLOG_SIZE", "50"))
        self.MESSAGE_HISTORY_LIMIT: int = int(os.getenv("MESSAGE_HISTORY_LIMIT", "1000"))

        self.INITIAL_MESSAGE_DELAY_SECONDS: float = float(os.getenv("INITIAL_MESSAGE_DELAY_SECONDS", "1.0"))
        self.DELIVERED_DELAY_SECONDS: float = float(os.getenv("DELIVERED_DELAY_SECONDS", "0.5"))
        self.READ_DELAY_SECONDS: float = float(os.getenv("READ_DELAY_SECONDS", "2.0"))
        self.ROOM_REAP_DELAY_SECONDS: float = float(os.getenv("ROOM_REAP_DELAY_SECONDS", "300"))

        self.STREAM_QUEUE_SIZE: int = int(os.getenv("STREAM_QUEUE_SIZE", "100"))
        self.STREAM_KEEPALIVE_SECONDS: float = float(os.getenv("STREAM_KEEPALIVE_SECONDS", "15"))

        self.PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "")
        self.CORS_ORIGINS: list[str] = [
            origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
        ]

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = int(os.getenv("PORT", "3000"))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


settings = Settings()
