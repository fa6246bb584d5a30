from .dishka_app import (
    ConfigProvider,
    RedisProvider,
    AdaptersProvider,
    GatewaysProvider,
    ServicesProvider,
)
