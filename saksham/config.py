"""
Configuration centrale de l'application via variables d'environnement.
Charger depuis un fichier .env en développement.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Base locale de l'appareil (SQLite asynchrone)
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./saksham-field.db"

    # Base de l'API de réception (serveur)
    DATABASE_URL: str = "sqlite:///./saksham-server.db"

    # API distante des rapports (cible de la file de synchronisation)
    REPORT_API_URL: str = "http://localhost:8000/api"

    # Géorepérage
    GEOFENCE_RADIUS_M: float = 200.0
    GPS_TIMEOUT_S: float = 10.0

    # File de synchronisation
    SYNC_MAX_RETRIES: int = 5
    SYNC_BACKOFF_BASE_S: float = 2.0
    SYNC_BACKOFF_MAX_S: float = 300.0
    SYNC_ITEM_TIMEOUT_S: float = 15.0
    SYNC_INTERVAL_MINUTES: int = 5
    CONNECTIVITY_DEBOUNCE_S: float = 1.0

    # Médias
    THUMBNAIL_MAX_EDGE: int = 200

    # Environnement
    ENV: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
