"""
Configuration Management for the SelfieScan Backend
Loads environment variables and provides configuration settings
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _det_size(value):
    w, _, h = value.partition('x')
    return (int(w), int(h or w))


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', 10 * 1024 * 1024))  # 10 MB uploads

    # Auth - access tokens issued by the hosted auth provider
    JWT_SECRET_KEY = os.getenv('SUPABASE_JWT_SECRET', 'jwt-secret-key-change-in-production')
    JWT_ALGORITHM = 'HS256'
    JWT_DECODE_AUDIENCE = 'authenticated'
    JWT_ENCODE_AUDIENCE = 'authenticated'
    JWT_IDENTITY_CLAIM = 'sub'
    JWT_TOKEN_LOCATION = ['headers']

    # Server
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', 5000))

    # Hosted storage
    SUPABASE_URL = os.getenv('SUPABASE_URL', 'http://localhost:54321')
    SUPABASE_ANON_KEY = os.getenv('SUPABASE_ANON_KEY', '')
    REFERENCE_BUCKET = os.getenv('REFERENCE_BUCKET', 'selfie-images')
    DOCUMENT_BUCKET = os.getenv('DOCUMENT_BUCKET', 'documents')
    STORAGE_TIMEOUT = float(os.getenv('STORAGE_TIMEOUT', 10))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/app.log')

    # Face Recognition
    FACE_MODEL_NAME = os.getenv('FACE_MODEL_NAME', 'buffalo_l')
    FACE_GPU_ID = int(os.getenv('FACE_GPU_ID', 0))
    FACE_DET_SIZE = _det_size(os.getenv('FACE_DET_SIZE', '640x640'))
    # buffalo_l embeddings are unit vectors, so distance = sqrt(2 - 2*cos).
    # Same-person pairs land around 0.8-1.1; 0.9 accepts cosine >= ~0.6.
    # Keep below 1.0, where confidence (1 - distance) bottoms out at 0.
    FACE_MATCH_TOLERANCE = float(os.getenv('FACE_MATCH_TOLERANCE', 0.9))
    MATCH_MAX_WORKERS = int(os.getenv('MATCH_MAX_WORKERS', 4))
    IMAGE_FETCH_TIMEOUT = float(os.getenv('IMAGE_FETCH_TIMEOUT', 10))
    MAX_IMAGE_BYTES = int(os.getenv('MAX_IMAGE_BYTES', 10 * 1024 * 1024))  # per fetched image

    # Document classification (OpenAI-compatible vision endpoint)
    VISION_API_URL = os.getenv('VISION_API_URL', 'https://api.openai.com/v1/chat/completions')
    VISION_API_KEY = os.getenv('OPENAI_API_KEY', '')
    VISION_MODEL = os.getenv('VISION_MODEL', 'gpt-4o-mini')
    VISION_TIMEOUT = float(os.getenv('VISION_TIMEOUT', 30))


class TestingConfig(Config):
    """Configuration for the test suite"""
    TESTING = True
    JWT_SECRET_KEY = 'test-jwt-secret-key-for-the-test-suite-only'
    SUPABASE_URL = 'http://storage.test'
    SUPABASE_ANON_KEY = 'test-anon-key'
    LOG_FILE = None
    MATCH_MAX_WORKERS = 1
