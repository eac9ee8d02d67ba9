"""Core package containing the managers and the invocation environment."""

from ijrelease.core.base import ReleaseManager
from ijrelease.core.config_manager import ConfigManager
from ijrelease.core.environment import PublishCredential, ReleaseEnvironment, SigningMaterial
from ijrelease.core.logging_manager import LoggingManager
