import os
from datetime import timedelta

# Do NOT call load_dotenv here. It should be in app.py

def _csv(value, default):
    """Split a comma-separated env value into an upper-cased list"""
    raw = value if value else default
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


class Config:
    # Environment Detection
    DEBUG = os.getenv("FLASK_DEBUG", "False").lower() in ("true", "1")
    TESTING = os.getenv("TESTING", "False").lower() in ("true", "1")
    # Let JWT errors reach flask-jwt-extended handlers instead of Flask-RESTful 500s
    PROPAGATE_EXCEPTIONS = True

    # Security Configuration
    SECRET_KEY = os.getenv("SECRET_KEY", "fallback-secret-key")

    # Identity provider (OpenID Connect)
    BASE_URL = os.getenv("BASE_URL", "http://localhost:5000")
    IDP_CLIENT_ID = os.getenv("IDP_CLIENT_ID", "default-client-id")
    IDP_CLIENT_SECRET = os.getenv("IDP_CLIENT_SECRET", "default-client-secret")
    IDP_DISCOVERY_URL = os.getenv(
        "IDP_DISCOVERY_URL", "https://auth.civic.com/oauth/.well-known/openid-configuration"
    )
    IDP_REDIRECT_URI = os.getenv("IDP_REDIRECT_URI", f"{BASE_URL}/auth/callback")

    # Database Configuration
    # Priority: DATABASE_URL > EXTERNAL_DATABASE_URL > fallback
    _database_url = os.getenv("DATABASE_URL") or os.getenv("EXTERNAL_DATABASE_URL")
    if _database_url:
        # Render/Heroku often provide postgres:// but SQLAlchemy needs postgresql://
        if _database_url.startswith("postgres://"):
            _database_url = _database_url.replace("postgres://", "postgresql://", 1)
        SQLALCHEMY_DATABASE_URI = _database_url
    else:
        # Fallback for local development
        SQLALCHEMY_DATABASE_URI = os.getenv("SQLALCHEMY_DATABASE_URI", "sqlite:///eventkey.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = DEBUG and os.getenv("SQL_ECHO", "False").lower() in ("true", "1")

    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))
    DATABASE_PING_TIMEOUT = int(os.getenv("DATABASE_PING_TIMEOUT", "10"))

    # JWT Configuration
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "fallback-jwt-secret")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.getenv("JWT_ACCESS_TOKEN_HOURS", "24")))
    JWT_COOKIE_SECURE = not DEBUG
    JWT_COOKIE_SAMESITE = "None" if not DEBUG else "Lax"
    JWT_COOKIE_CSRF_PROTECT = False
    JWT_TOKEN_LOCATION = ["cookies", "headers"]
    JWT_ACCESS_COOKIE_NAME = "access_token"
    JWT_HEADER_NAME = "Authorization"
    JWT_HEADER_TYPE = "Bearer"

    # Roles
    # New logins get this role. SCANNER keeps the historical behaviour where any
    # signed-in user may create events and scan; set ATTENDEE to lock it down.
    DEFAULT_USER_ROLE = os.getenv("DEFAULT_USER_ROLE", "SCANNER").upper()
    EVENT_CREATOR_ROLES = _csv(os.getenv("EVENT_CREATOR_ROLES"), "ORGANIZER,SCANNER")
    SCANNER_ROLES = _csv(os.getenv("SCANNER_ROLES"), "ORGANIZER,SCANNER")

    # Email Configuration
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587").strip() or 587)
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "True").lower() in ("true", "1", "yes")
    MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "False").lower() in ("true", "1", "yes")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER") or MAIL_USERNAME or "no-reply@eventkey.app"
    SEND_TICKET_EMAILS = os.getenv(
        "SEND_TICKET_EMAILS", "True" if MAIL_USERNAME else "False"
    ).lower() in ("true", "1", "yes")

    # Frontend / CORS
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://localhost:5173",
        FRONTEND_URL,
    ]

    # Rate limiting (scanner endpoint)
    REDIS_URL = os.getenv("REDIS_URL")
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = REDIS_URL or "memory://"
    RATELIMIT_STRATEGY = "fixed-window"
    SCAN_RATE_LIMIT = os.getenv("SCAN_RATE_LIMIT", "60 per minute")

    # QR codes and scanning
    QR_BOX_SIZE = int(os.getenv("QR_BOX_SIZE", "10"))
    QR_BORDER = int(os.getenv("QR_BORDER", "4"))
    SCAN_HISTORY_LIMIT = int(os.getenv("SCAN_HISTORY_LIMIT", "10"))
    # Attendee polling cursor trails server time so writes still in flight are re-sent
    ATTENDEE_POLL_OVERLAP_SECONDS = int(os.getenv("ATTENDEE_POLL_OVERLAP_SECONDS", "30"))

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    @classmethod
    def validate_config(cls):
        """Validate critical configuration values"""
        required_vars = [
            'SECRET_KEY',
            'JWT_SECRET_KEY',
        ]

        missing_vars = []
        for var in required_vars:
            if not getattr(cls, var) or getattr(cls, var).startswith('fallback-'):
                missing_vars.append(var)

        if missing_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        if cls.MAIL_USERNAME and not cls.MAIL_PASSWORD:
            raise ValueError("MAIL_PASSWORD is required when MAIL_USERNAME is set")

        if cls.DEFAULT_USER_ROLE not in ("ATTENDEE", "ORGANIZER", "SCANNER"):
            raise ValueError(f"Unknown DEFAULT_USER_ROLE: {cls.DEFAULT_USER_ROLE}")

        return True

    @classmethod
    def get_database_engine_options(cls):
        """Get database engine options based on configuration"""
        if cls.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            return {'echo': cls.SQLALCHEMY_ECHO}

        options = {
            'pool_size': cls.DB_POOL_SIZE,
            'max_overflow': cls.DB_MAX_OVERFLOW,
            'pool_timeout': cls.DB_POOL_TIMEOUT,
            'pool_recycle': cls.DB_POOL_RECYCLE,
            'pool_pre_ping': True,
            'echo': cls.SQLALCHEMY_ECHO
        }

        if 'postgresql' in cls.SQLALCHEMY_DATABASE_URI:
            options['connect_args'] = {
                'connect_timeout': cls.DATABASE_PING_TIMEOUT,
                'application_name': 'eventkey',
                'options': '-c statement_timeout=30000'
            }

        return options


class DevelopmentConfig(Config):
    """Development-specific configuration"""
    DEBUG = True
    TESTING = False

    JWT_COOKIE_SECURE = False
    JWT_COOKIE_SAMESITE = "Lax"

    SQLALCHEMY_ECHO = True
    LOG_LEVEL = "DEBUG"


class ProductionConfig(Config):
    """Production-specific configuration"""
    DEBUG = False
    TESTING = False

    JWT_COOKIE_SECURE = True
    JWT_COOKIE_SAMESITE = "None"

    SQLALCHEMY_ECHO = False
    LOG_LEVEL = "WARNING"


class TestingConfig(Config):
    """Testing-specific configuration"""
    TESTING = True
    DEBUG = True

    SECRET_KEY = "testing-secret-key"
    JWT_SECRET_KEY = "testing-jwt-secret-key-with-enough-length"
    JWT_COOKIE_SECURE = False

    # Use in-memory database for testing
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False

    # Mail is recorded, never delivered
    MAIL_SUPPRESS_SEND = True
    SEND_TICKET_EMAILS = True

    RATELIMIT_ENABLED = False
    DEFAULT_USER_ROLE = "SCANNER"

    @classmethod
    def get_database_engine_options(cls):
        return {}


# Configuration dictionary for easy switching
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': Config
}
