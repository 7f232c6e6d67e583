"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI vision model
    openai_api_key: str = ""
    vision_model: str = "gpt-4o"
    vision_fallback_model: str = "gpt-4o-mini"
    vision_timeout_seconds: float = 30.0
    vision_max_tokens: int = 2000
    vision_temperature: float = 0.2

    # Path selection
    use_vision_model: bool = True  # Try the vision model before OCR
    force_vision_model: bool = True  # Fail closed instead of falling back

    # OCR
    ocr_confidence_threshold: float = 0.7
    ocr_min_text_length: int = 10
    tesseract_cmd: str = ""

    # Nutritionix
    nutritionix_app_id: str = ""
    nutritionix_api_key: str = ""
    nutritionix_base_url: str = "https://trackapi.nutritionix.com/v2"
    nutritionix_timeout_seconds: float = 10.0

    # Input limits
    max_image_bytes: int = 20 * 1024 * 1024
    max_extraction_chars: int = 200_000

    @property
    def is_vision_configured(self) -> bool:
        """Check if the vision model has credentials."""
        return bool(self.openai_api_key)

    @property
    def is_nutritionix_configured(self) -> bool:
        """Check if Nutritionix lookup has credentials."""
        return bool(self.nutritionix_app_id and self.nutritionix_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
