"""
Firebase and environment configuration for the school admin backend.

Uses Firebase Admin SDK for server-side operations with Firestore.
"""

import os
from pathlib import Path

import firebase_admin
from firebase_admin import credentials, firestore
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

# Firebase configuration from environment variables
FIREBASE_CONFIG = {
    "apiKey": os.getenv("FIREBASE_API_KEY"),
    "authDomain": os.getenv("FIREBASE_AUTH_DOMAIN"),
    "projectId": os.getenv("FIREBASE_PROJECT_ID"),
    "storageBucket": os.getenv("FIREBASE_STORAGE_BUCKET"),
}

# Service account key path
SERVICE_ACCOUNT_PATH = os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH", "serviceAccountKey.json")

ENVIRONMENT = os.getenv("ENVIRONMENT", "production")
SCHOOL_TIMEZONE = os.getenv("SCHOOL_TIMEZONE", "Asia/Bangkok")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Shared secret for the cron endpoints (Authorization: Bearer <secret>)
CRON_SECRET = os.getenv("CRON_SECRET", "")

# LINE platform
LINE_API_BASE = os.getenv("LINE_API_BASE", "https://api.line.me/v2/bot")
LINE_LOGIN_VERIFY_URL = os.getenv("LINE_LOGIN_VERIFY_URL", "https://api.line.me/oauth2/v2.1/verify")
LIFF_CHANNEL_ID = os.getenv("LIFF_CHANNEL_ID", "")
LINE_CHANNEL_ACCESS_TOKEN = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")
LINE_CHANNEL_SECRET = os.getenv("LINE_CHANNEL_SECRET", "")

# Global Firestore client
_db = None


def is_development() -> bool:
    return ENVIRONMENT.lower() == "development"


def initialize_firebase():
    """
    Initialize Firebase Admin SDK.

    Looks for a service account key next to the backend first and falls
    back to application default credentials (Cloud Run, emulator, CI).
    """
    global _db

    if _db is not None:
        return _db

    if not firebase_admin._apps:
        backend_dir = Path(__file__).parent.parent
        possible_paths = [
            backend_dir / SERVICE_ACCOUNT_PATH,
            Path("backend") / SERVICE_ACCOUNT_PATH,
            Path(SERVICE_ACCOUNT_PATH)
        ]

        for path in possible_paths:
            if path.exists():
                cred = credentials.Certificate(str(path))
                firebase_admin.initialize_app(cred)
                break
        else:
            firebase_admin.initialize_app(options={
                'projectId': FIREBASE_CONFIG['projectId']
            })

    _db = firestore.client()
    return _db


def get_firestore_client():
    """Get the Firestore client instance."""
    global _db
    if _db is None:
        _db = initialize_firebase()
    return _db


def run_transaction(callback, *args, **kwargs):
    """
    Run callback(transaction, *args, **kwargs) inside a Firestore transaction.

    Firestore retries the callback on write contention, so it must only
    touch the database through the transaction it receives.
    """
    db = get_firestore_client()
    transactional = firestore.transactional(callback)
    return transactional(db.transaction(), *args, **kwargs)
