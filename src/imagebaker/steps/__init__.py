"""Concrete build steps, in the order the builder runs them."""
from .image import CopyImageStep, CreateImageStep, ShareImageStep
from .instance import RunInstanceStep
from .keypair import ConfigKeyPairStep, DetachTempKeyPairStep
from .network import AcquireOrCreateStep, ConfigSecurityGroupStep, ConfigSubnetStep, ConfigVpcStep
from .preflight import CheckSourceImageStep, PreValidateStep
from .provision import CleanupTempKeysStep, ConnectStep, ProvisionStep

__all__ = [
    "AcquireOrCreateStep",
    "CheckSourceImageStep",
    "CleanupTempKeysStep",
    "ConfigKeyPairStep",
    "ConfigSecurityGroupStep",
    "ConfigSubnetStep",
    "ConfigVpcStep",
    "ConnectStep",
    "CopyImageStep",
    "CreateImageStep",
    "DetachTempKeyPairStep",
    "PreValidateStep",
    "ProvisionStep",
    "RunInstanceStep",
    "ShareImageStep",
]
