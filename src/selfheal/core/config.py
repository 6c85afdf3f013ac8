from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # LLM Configuration
    MODEL_PROVIDER: str = "online"  # "online" for litellm-routed models, "local" for Ollama
    AI_API_KEY: str | None = None
    ONLINE_MODEL: str = "gemini/gemini-2.5-flash"
    LOCAL_MODEL: str = "llama3"
    AI_TEMPERATURE: float = Field(default=0.3, description="Sampling temperature for strategy generation")
    AI_MAX_TOKENS: int = Field(default=1000, description="Maximum tokens per model response")

    # Healing Configuration
    ENABLE_HEALING: bool = Field(default=True, description="Enable/disable self-healing of failed tests")
    ENABLE_AI: bool = Field(default=True, description="Ask the language model for candidate strategies")
    HEALING_MODE: str = Field(default="aggressive", description="Strategy selection mode: 'conservative', 'aggressive' or 'learning'")
    MAX_HEALING_ATTEMPTS: int = Field(default=3, description="Full analyze+apply cycles per failed test")
    MAX_ATTEMPTS: int = Field(default=3, description="Strategies tried per cycle in conservative mode")
    HEALING_TIMEOUT_MS: int = Field(default=30000, description="Overall budget for one healing cycle (ms)")
    ENABLE_LEARNING: bool = Field(default=True, description="Update learned patterns from healing outcomes")
    RERUN_AFTER_HEALING: bool = Field(default=False, description="Re-run the test with healed data to confirm a fix")

    # Pattern Store Configuration
    PATTERN_STORE_BACKEND: str = Field(default="json", description="Pattern store backend: 'json' or 'sqlite'")
    PATTERN_STORE_PATH: str = Field(default="data/patterns.json", description="Location of the learned pattern store")
    SELF_HEALING_CONFIG_PATH: str = Field(default="config/self_healing.yaml", description="YAML file with healing overrides")

    # Executor Configuration
    UI_MAX_WAIT_TIME_MS: int = Field(default=10000, description="Upper bound for UI wait strategies (ms)")
    UI_RETRY_DELAY_MS: int = Field(default=1000, description="Delay between UI polling attempts (ms)")
    ENABLE_AI_LOCATOR_GENERATION: bool = Field(default=True, description="Ask the model for alternative locators")
    ENABLE_SMART_WAITS: bool = Field(default=True, description="Enable smart and conditional wait techniques")
    API_TIMEOUT_MS: int = Field(default=10000, description="Timeout for API healing probes (ms)")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")

    @validator('MODEL_PROVIDER')
    def validate_model_provider(cls, v):
        """Validate that MODEL_PROVIDER is either 'online' or 'local'."""
        if v.lower() not in ['online', 'local']:
            raise ValueError(f"MODEL_PROVIDER must be 'online' or 'local', got '{v}'")
        return v.lower()

    @validator('HEALING_MODE')
    def validate_healing_mode(cls, v):
        """Validate that HEALING_MODE is a known mode."""
        if v.lower() not in ['conservative', 'aggressive', 'learning']:
            raise ValueError(f"HEALING_MODE must be 'conservative', 'aggressive' or 'learning', got '{v}'")
        return v.lower()

    @validator('MAX_HEALING_ATTEMPTS')
    def validate_max_healing_attempts(cls, v):
        """Validate that MAX_HEALING_ATTEMPTS is between 1 and 10."""
        if v < 1 or v > 10:
            raise ValueError(f"MAX_HEALING_ATTEMPTS must be between 1 and 10, got {v}")
        return v

    @validator('HEALING_TIMEOUT_MS')
    def validate_healing_timeout(cls, v):
        """Validate that HEALING_TIMEOUT_MS is between 1 second and 5 minutes."""
        if v < 1000 or v > 300000:
            raise ValueError(f"HEALING_TIMEOUT_MS must be between 1000 and 300000, got {v}")
        return v

    @validator('PATTERN_STORE_BACKEND')
    def validate_store_backend(cls, v):
        """Validate that PATTERN_STORE_BACKEND is 'json' or 'sqlite'."""
        if v.lower() not in ['json', 'sqlite']:
            raise ValueError(f"PATTERN_STORE_BACKEND must be 'json' or 'sqlite', got '{v}'")
        return v.lower()

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'allow'  # Allow extra fields from .env file

settings = Settings()
