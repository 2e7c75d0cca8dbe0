import os


def _flag(name, default='false'):
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///salesflow.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = False

    # Blob storage; an empty STORAGE_DIR resolves to <instance>/storage
    STORAGE_DIR = os.getenv('STORAGE_DIR', '')
    PUBLIC_BASE_URL = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000/files')
    MAX_UPLOAD_BYTES = int(os.getenv('MAX_UPLOAD_BYTES', str(10 * 1024 * 1024)))
    MAX_CONTENT_LENGTH = MAX_UPLOAD_BYTES + 1024 * 1024

    # Image generation
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY', '')
    IMAGE_MODEL = os.getenv('IMAGE_MODEL', 'dall-e-3')
    IMAGE_SIZE = os.getenv('IMAGE_SIZE', '1024x1024')
    IMAGE_QUALITY = os.getenv('IMAGE_QUALITY', 'hd')

    # Email
    RESEND_API_KEY = os.getenv('RESEND_API_KEY', '')
    RESEND_API_URL = os.getenv('RESEND_API_URL', 'https://api.resend.com')
    EMAIL_FROM = os.getenv('EMAIL_FROM', 'Gardens of Babylon <noreply@gardensofbabylon.com>')
    TEAM_EMAIL = os.getenv('TEAM_EMAIL', 'team@gardensofbabylon.com')
    NOTIFY_ASYNC = _flag('NOTIFY_ASYNC', 'true')

    # Pricing spreadsheet (optional)
    GOOGLE_SHEETS_SPREADSHEET_ID = os.getenv('GOOGLE_SHEETS_SPREADSHEET_ID', '')
    GOOGLE_SHEETS_API_KEY = os.getenv('GOOGLE_SHEETS_API_KEY', '')
    PRICING_SHEET_RANGE = os.getenv('PRICING_SHEET_RANGE', 'Pricing!A:F')

    DEV_LOGIN_ENABLED = _flag('DEV_LOGIN_ENABLED')
    COMPANY_NAME = os.getenv('COMPANY_NAME', 'Gardens of Babylon')


class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'
    DEV_LOGIN_ENABLED = True


class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'
    SESSION_COOKIE_SECURE = True


class TestConfig(BaseConfig):
    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    NOTIFY_ASYNC = False
    DEV_LOGIN_ENABLED = True
    PUBLIC_BASE_URL = 'http://files.test'
    GOOGLE_SHEETS_SPREADSHEET_ID = ''
    GOOGLE_SHEETS_API_KEY = ''


CONFIGS = {
    'development': DevConfig,
    'production': ProdConfig,
    'testing': TestConfig,
}
