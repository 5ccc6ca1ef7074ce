"""
Configuration management for the Handgrade service.
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Configuration
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")

# Backend defaults
DEFAULT_BACKEND = os.getenv("HANDGRADE_BACKEND", "gemini")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_THINKING_BUDGET = int(os.getenv("GEMINI_THINKING_BUDGET", "2048"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "8192"))
CHAT_API_BASE_URL = os.getenv("CHAT_API_BASE_URL", "https://api.openai.com/v1").rstrip("/")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "120"))

# Server configuration
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
DEBUG = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Document normalization
MB = 1024 * 1024
MAX_UPLOAD_BYTES = 20 * MB             # hard ceiling, checked before any processing
PDF_RASTERIZE_THRESHOLD_BYTES = 3 * MB
SMALL_IMAGE_THRESHOLD_BYTES = 2 * MB
MAX_PDF_PAGES = 5
PDF_RENDER_SCALE = 1.5
JPEG_QUALITY = 70                      # Pillow scale, 0.7 of max
MAX_IMAGE_DIMENSION = 1536

RASTER_IMAGE_TYPES = ['image/jpeg', 'image/png', 'image/webp']
PDF_MIME_TYPE = 'application/pdf'
HEIC_MIME_TYPE = 'image/heic'
GENERIC_MIME_TYPES = ['', 'application/octet-stream', 'binary/octet-stream']


class Config:
    """Application configuration class."""

    def __init__(self):
        self.default_backend = DEFAULT_BACKEND
        self.gemini_api_key = GEMINI_API_KEY
        self.gemini_model = GEMINI_MODEL
        self.chat_api_base_url = CHAT_API_BASE_URL
        self.chat_model = CHAT_MODEL
        self.http_timeout = HTTP_TIMEOUT_SECONDS
        self.max_upload_bytes = MAX_UPLOAD_BYTES

    def to_dict(self):
        return {
            "default_backend": self.default_backend,
            "gemini_model": self.gemini_model,
            "chat_api_base_url": self.chat_api_base_url,
            "chat_model": self.chat_model,
            "http_timeout": self.http_timeout,
            "max_upload_bytes": self.max_upload_bytes,
        }

    def update(self, data: dict):
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)


# Global config instance
config = Config()
