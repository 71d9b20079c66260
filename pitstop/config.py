from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pitstop.db"
    DATABASE_ECHO: bool = False

    # Security
    SECRET_KEY: str = "your-secret-key-here"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 240  # 4 hours
    HOOK_SECRET: str = "your-hook-secret-here"

    # Local time used for quiet hours and reminder day counting
    TIMEZONE: str = "Europe/Prague"

    # Presence & beacons
    BEACON_VISIBILITY_RADIUS_KM: float = 50.0
    DEFAULT_PROXIMITY_RADIUS_KM: float = 20.0
    DEFAULT_PRIVACY_RADIUS_M: float = 500.0

    # Notification pipeline
    REMINDER_SWEEP_HOUR: int = 9
    FRIEND_NOTIFICATION_COOLDOWN_HOURS: int = 24
    SERVICE_OVERDUE_COOLOFF_DAYS: int = 7
    COMMENT_PREVIEW_LENGTH: int = 100

    # Push delivery (FCM HTTP v1)
    FCM_PROJECT_ID: str = ""
    FCM_ACCESS_TOKEN: str = ""
    FCM_API_URL: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
    FCM_TIMEOUT_SECONDS: float = 10.0

    # WebSocket
    WEBSOCKET_PING_INTERVAL: int = 30
    WEBSOCKET_PING_TIMEOUT: int = 10

    class Config:
        env_file = ".env"

settings = Settings()
