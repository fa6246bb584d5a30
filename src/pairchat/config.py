from dataclasses import dataclass, field
from environs import Env

@dataclass
class JWTConfig:
    secret_key: str
    algorithm: str = "HS256"

@dataclass
class DBConfig:
    """ PostgreSQL """
    host: str | None = None
    port: int | None = None
    name: str | None = None
    user: str | None = None
    password: str | None = None

    """ SQLite """
    path: str | None = None

    timeout: float = 10.0

    @property
    def url(self) -> str:
        if self.host:
            return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"
        return f"sqlite+aiosqlite:///{self.path}"

    @property
    def is_sqlite(self) -> bool:
        return not self.host

@dataclass
class RedisConfig:
    host: str | None = 'localhost'
    port: int | None = 6379

@dataclass
class UploadConfig:
    path: str = 'data/uploads'
    max_bytes: int = 10 * 1024 * 1024

@dataclass
class ChatConfig:
    typing_timeout: int = 3  # seconds

@dataclass
class Config:
    """ Config """
    jwt: JWTConfig
    db: DBConfig
    redis: RedisConfig
    upload: UploadConfig = field(default_factory=UploadConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    log_level: str = 'INFO'

def load_config(path: str | None) -> Config:
    env = Env()
    env.read_env(path)

    return Config(
        jwt=JWTConfig(
            secret_key=env('SECRET_KEY'),
        ),
        db=DBConfig(
            host=env('DB_HOST', None),
            port=env.int('DB_PORT', None),
            name=env('DB_NAME', None),
            user=env('DB_USER', None),
            password=env('DB_PASSWORD', None),
            path=env('DB_PATH', 'data/chat.db'),
            timeout=env.float('DB_TIMEOUT', 10.0)
        ),
        redis=RedisConfig(
            host=env('REDIS_HOST', 'localhost'),
            port=env.int('REDIS_PORT', 6379)
        ),
        upload=UploadConfig(
            path=env('UPLOAD_PATH', 'data/uploads'),
            max_bytes=env.int('UPLOAD_MAX_BYTES', 10 * 1024 * 1024)
        ),
        chat=ChatConfig(
            typing_timeout=env.int('TYPING_TIMEOUT', 3)
        ),
        log_level=env('LOG_LEVEL', 'INFO').upper()
    )
