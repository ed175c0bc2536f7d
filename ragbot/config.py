
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ALLOWED_ORIGINS: str = "*"

    # Full SQLAlchemy URL wins over the DB_* parts when set
    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ragbot"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    AUTO_CREATE_TABLES: bool = False

    # LLM provider selection: "perplexity" or "openai"
    LLM_PROVIDER: str = "perplexity"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 1000
    LLM_TIMEOUT: float = 60.0

    # Perplexity (chat) settings
    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_MODEL: str = "sonar"

    # OpenAI (embeddings, and chat if selected)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = 1536
    EMBED_CONCURRENCY: int = 1
    EMBED_TIMEOUT: float = 30.0

    # Ingestion
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    FETCH_TIMEOUT: float = 15.0

    # Retrieval
    MATCH_THRESHOLD: float = 0.5
    MATCH_COUNT: int = 5

    # Widget endpoint
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    WIDGET_CACHE_SECONDS: int = 300

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

settings = Settings()
