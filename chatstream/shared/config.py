"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings, shared by the server
and the client.

WHAT IS HAPPENING HERE:
Every stream timing and transport knob lives here. The client timeout, the
priming pad size and the CSRF header name must agree on both sides of the
wire, so they are declared once and read everywhere through `settings`.
"""
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    API_PREFIX: str = "/api"
    BASE_URL: str = "http://127.0.0.1:8000"

    # Streaming
    STREAM_TIMEOUT_S: float = 30.0
    PADDING_BYTES: int = 2048
    DEMO_TOKEN_DELAY_S: float = 0.05

    # Side channel
    MEMORY_PROPOSAL_TTL_S: float = 30.0
    MEMORY_FEEDBACK_S: float = 2.5

    # Security
    CSRF_ENABLED: bool = True
    CSRF_HEADER_NAME: str = "X-CSRF-Token"

    # REST
    CONVERSATION_LIST_LIMIT: int = 50

    class Config:
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
