"""Well-known state keys and the types stored under them."""
from __future__ import annotations

from ..config.models import BuildConfig
from ..services.control_plane import ImageInfo, InstanceInfo, KeyPairInfo
from .state import StateKey

CONFIG: StateKey[BuildConfig] = StateKey("config", BuildConfig)
# Any ControlPlaneClient implementation; the protocol is not a concrete type.
CLIENT: StateKey[object] = StateKey("client", object)
GENERATED_DATA: StateKey[dict] = StateKey("generated_data", dict)

ERROR: StateKey[Exception] = StateKey("error", Exception)
HALTED: StateKey[bool] = StateKey("halted", bool)
CANCELLED: StateKey[bool] = StateKey("cancelled", bool)

SOURCE_IMAGE: StateKey[ImageInfo] = StateKey("source_image", ImageInfo)
KEY_PAIR: StateKey[KeyPairInfo] = StateKey("key_pair", KeyPairInfo)
PRIVATE_KEY_PATH: StateKey[str] = StateKey("private_key_path", str)
VPC_ID: StateKey[str] = StateKey("vpc_id", str)
SUBNET_ID: StateKey[str] = StateKey("subnet_id", str)
SECURITY_GROUP_ID: StateKey[str] = StateKey("security_group_id", str)
INSTANCE: StateKey[InstanceInfo] = StateKey("instance", InstanceInfo)
INSTANCE_HOST: StateKey[str] = StateKey("instance_host", str)

IMAGE: StateKey[ImageInfo] = StateKey("image", ImageInfo)
IMAGES: StateKey[dict] = StateKey("images", dict)
PROPAGATION_ERROR: StateKey[Exception] = StateKey("propagation_error", Exception)


def was_interrupted(state) -> bool:
    """True when the build halted or was cancelled before completing."""
    return bool(state.get(HALTED)) or bool(state.get(CANCELLED))
