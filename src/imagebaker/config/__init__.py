"""Configuration package exports."""
from .models import (
    AccessSettings,
    BuildConfig,
    CommunicatorSettings,
    DataDiskSettings,
    ImageSettings,
    PollingSettings,
    ProvisionSettings,
    RunSettings,
)

__all__ = [
    "AccessSettings",
    "BuildConfig",
    "CommunicatorSettings",
    "DataDiskSettings",
    "ImageSettings",
    "PollingSettings",
    "ProvisionSettings",
    "RunSettings",
]
