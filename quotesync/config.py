import os


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    QUOTES_API_URL = os.getenv('QUOTES_API_URL', 'http://127.0.0.1:8090/api')
    OFFLINE_DB_FILENAME = os.getenv('OFFLINE_DB_FILENAME', 'offline.db')
    REMOTE_CONNECT_TIMEOUT = float(os.getenv('REMOTE_CONNECT_TIMEOUT', '3.05'))
    REMOTE_READ_TIMEOUT = float(os.getenv('REMOTE_READ_TIMEOUT', '10'))
    REMOTE_MAX_RETRIES = int(os.getenv('REMOTE_MAX_RETRIES', '2'))
    QUOTES_PER_PAGE = int(os.getenv('QUOTES_PER_PAGE', '30'))
    # 'drop' or 'retain'
    SYNC_FAILURE_POLICY = os.getenv('SYNC_FAILURE_POLICY', 'drop')
    SYNC_MAX_ATTEMPTS = int(os.getenv('SYNC_MAX_ATTEMPTS', '5'))
    SYNC_ON_STARTUP = os.getenv('SYNC_ON_STARTUP', 'true').lower() == 'true'
    # drain on a worker thread instead of the connectivity dispatcher
    SYNC_BACKGROUND = True

class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'

class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'

class TestConfig(BaseConfig):
    DEBUG = True
    TESTING = True
    ENV = 'testing'
    REMOTE_MAX_RETRIES = 0
    SYNC_ON_STARTUP = False
    SYNC_BACKGROUND = False
