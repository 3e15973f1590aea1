import os

# Default to non-debug unless explicitly set in the environment
os.environ.setdefault("DEBUG", "False")

# Only set SECRET_KEY if it's not already provided (prevents overwriting)
os.environ.setdefault(
    'SECRET_KEY',
    'django-insecure-local-development-key-change-me',
)

# Local development uses SQLite unless DATABASE_URL points elsewhere.
os.environ.setdefault('DATABASE_URL', 'sqlite:///db.sqlite3')

# Midtrans sandbox credentials go here for local development; never commit
# production keys.
os.environ.setdefault('MIDTRANS_SERVER_KEY', '')
os.environ.setdefault('MIDTRANS_CLIENT_KEY', '')
