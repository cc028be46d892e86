# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
import base64
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    # Storage settings
    # Default to the JSON file store; override via .env (STORAGE_BACKEND=sqlite|sheets)
    storage_backend: str = "json"
    data_dir: str = "data"
    db_url: str = "sqlite:///data/documents.db"
    google_sa_json: str = ""
    google_sa_json_base64: str = ""
    sheets_spreadsheet_id: str = ""

    # Number of attempts for a read-modify-write that lost an optimistic
    # concurrency race (JSON / SQLite backends only)
    write_retry_attempts: int = Field(default=3, ge=1)

    # Blob storage for uploaded files: "local" (filesystem) or "drive"
    blob_backend: str = "local"
    blob_dir: str = "data/blobs"
    # Public URL prefix for locally stored blobs; reference = <prefix>/<name>
    blob_public_base_url: str = "http://localhost:8000/files"

    # Google Drive settings (blob_backend=drive)
    gdrive_root_folder_name: str = "Document_Moderation"
    # Optional: if you create the root folder manually & share it, put its ID here
    gdrive_root_folder_id: str = ""

    # ---- AI classification (Groq, OpenAI-compatible chat API) ----
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_timeout_s: float = 30.0

    # CORS settings
    allowed_origins: str = "http://localhost:5173,http://localhost:3000,http://localhost:8000"

    log_level: str = "INFO"

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )


    def resolved_google_sa_json(self) -> str:
        """
        Return the path to the service account JSON.
        If GOOGLE_SA_JSON_BASE64 is set, decode it to a temp file.
        Otherwise return GOOGLE_SA_JSON path.
        """
        if self.google_sa_json_base64:
            import tempfile

            decoded = base64.b64decode(self.google_sa_json_base64)
            temp_file = tempfile.NamedTemporaryFile(mode='w', delete=False, suffix='.json')
            temp_file.write(decoded.decode('utf-8'))
            temp_file.close()
            return temp_file.name

        return self.google_sa_json

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance: Optional[Settings] = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
