# backend configuration
# loads env vars for mongodb, jwt, connection codes and qr handling

import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# load .env from project root
load_dotenv(Path(__file__).parent.parent.parent / ".env")


class Settings(BaseSettings):
    # mongodb
    MONGODB_URI: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "vaxlink_db")

    # jwt auth (tokens are issued by the identity provider, verified here)
    JWT_SECRET: str = os.getenv("JWT_SECRET", "vaxlink-dev-secret-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # cors
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # origin embedded in connection uris and qr codes
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:5173")

    # connection codes
    CONNECTION_CODE_PREFIX: str = "DOC"
    CONNECTION_CODE_TTL_HOURS: int = 24

    # "mongo" for the shared database, "memory" for local runs without mongodb
    CODE_STORE_BACKEND: str = os.getenv("CODE_STORE_BACKEND", "mongo")

    # qr uploads
    QR_MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    # checked from the image header before decoding, a small png can declare a huge canvas
    QR_MAX_IMAGE_PIXELS: int = 40_000_000

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
