"""
CNC Fleet Configuration
"""

import os
from datetime import datetime


class Config:
    """Base configuration."""

    # Logging
    LOG_LEVEL = os.environ.get("CNC_LOG_LEVEL", "INFO")
    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Server endpoint (opc.tcp://HOST:PORT/RESOURCE_PATH)
    OPCUA_HOST = os.environ.get("CNC_OPCUA_HOST", "0.0.0.0")
    OPCUA_PORT = int(os.environ.get("CNC_OPCUA_PORT", 4334))
    OPCUA_RESOURCE_PATH = os.environ.get("CNC_OPCUA_RESOURCE_PATH", "/UA/CNC")
    NAMESPACE_URI = os.environ.get(
        "CNC_OPCUA_NAMESPACE_URI", "urn:cncfleet:opcua:machines"
    )

    # Build info advertised by the server
    PRODUCT_NAME = os.environ.get("CNC_OPCUA_PRODUCT_NAME", "CNC")
    PRODUCT_URI = "urn:cncfleet:opcua:server"
    MANUFACTURER_NAME = "CNC Fleet"
    BUILD_NUMBER = os.environ.get("CNC_OPCUA_BUILD_NUMBER", "7658")
    BUILD_DATE = datetime(2025, 6, 30)

    # Instances created at startup; kind follows the naming convention
    FLEET_MACHINES = os.environ.get("CNC_FLEET_MACHINES", "CNC1,CNC2,CNC3,CNCPro1")

    # Client
    OPCUA_ENDPOINT = os.environ.get(
        "CNC_OPCUA_ENDPOINT", "opc.tcp://localhost:4334/UA/CNC"
    )
    PUBLISHING_INTERVAL_MS = int(os.environ.get("CNC_PUBLISHING_INTERVAL_MS", 1000))
    SAMPLING_INTERVAL_MS = int(os.environ.get("CNC_SAMPLING_INTERVAL_MS", 1000))
    QUEUE_SIZE = int(os.environ.get("CNC_QUEUE_SIZE", 10))

    # Reconnection (exponential backoff)
    RECONNECT_INITIAL_DELAY_MS = int(
        os.environ.get("CNC_RECONNECT_INITIAL_DELAY_MS", 1000)
    )
    RECONNECT_MAX_DELAY_MS = int(os.environ.get("CNC_RECONNECT_MAX_DELAY_MS", 20000))
    RECONNECT_BACKOFF_FACTOR = float(
        os.environ.get("CNC_RECONNECT_BACKOFF_FACTOR", 2.0)
    )
    RECONNECT_MAX_RETRIES = int(os.environ.get("CNC_RECONNECT_MAX_RETRIES", 0))  # 0 = unlimited
    WATCHDOG_INTERVAL_S = float(os.environ.get("CNC_WATCHDOG_INTERVAL_S", 5))

    @classmethod
    def fleet(cls):
        """Instance ids of the configured fleet, in declaration order."""
        return [name.strip() for name in cls.FLEET_MACHINES.split(",") if name.strip()]

    @classmethod
    def listen_endpoint(cls) -> str:
        """Endpoint URL the server binds to."""
        return f"opc.tcp://{cls.OPCUA_HOST}:{cls.OPCUA_PORT}{cls.OPCUA_RESOURCE_PATH}"


class DevelopmentConfig(Config):
    """Development configuration."""


class ProductionConfig(Config):
    """Production configuration."""


class TestingConfig(Config):
    """Testing configuration."""

    # Short delays so supervisor tests do not sleep for real seconds
    RECONNECT_INITIAL_DELAY_MS = 10
    RECONNECT_MAX_DELAY_MS = 40
    WATCHDOG_INTERVAL_S = 0.01


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get("CNC_FLEET_ENV", "development")
    return config.get(env, config["default"])
