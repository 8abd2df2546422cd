"""The build result and its assembly from final pipeline state."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import ArtifactDestroyError
from .pipeline import keys
from .pipeline.state import StateBag
from .services.control_plane import ControlPlaneClient

BUILDER_ID = "imagebaker.cvm"

logger = logging.getLogger("imagebaker.artifact")


@dataclass(slots=True)
class Artifact:
    """Images produced by a build, keyed by region."""

    images: dict[str, str]
    client: ControlPlaneClient = field(repr=False)
    builder_id: str = BUILDER_ID
    state_data: dict[str, Any] = field(default_factory=dict)

    def id(self) -> str:
        return ",".join(f"{region}:{image_id}" for region, image_id in sorted(self.images.items()))

    def regions(self) -> list[str]:
        return sorted(self.images)

    def __str__(self) -> str:
        listing = ", ".join(f"{region}: {image_id}" for region, image_id in sorted(self.images.items()))
        return f"Images were created: {listing}"

    def destroy(self) -> None:
        """Delete the image in every region, attempting all before reporting failures."""
        failures: dict[str, Exception] = {}
        for region, image_id in sorted(self.images.items()):
            logger.info("Deleting image %s in %s", image_id, region)
            try:
                self.client.delete_image(image_id, region=region)
            except Exception as exc:  # noqa: BLE001
                failures[region] = exc
        if failures:
            raise ArtifactDestroyError(failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id(),
            "builder_id": self.builder_id,
            "images": dict(self.images),
            "state_data": self.state_data,
        }


def assemble_artifact(state: StateBag, client: ControlPlaneClient) -> tuple[Artifact | None, Exception | None]:
    """Turn final state into ``(artifact, error)``.

    A terminal error wins and yields no artifact. No recorded image means the
    build intentionally produced nothing. Otherwise the artifact is returned
    together with any partial-propagation error.
    """
    error, failed = state.get_ok(keys.ERROR)
    if failed and error is not None:
        return None, error

    if keys.IMAGE not in state:
        return None, None

    image = state.require(keys.IMAGE)
    images = dict(state.get(keys.IMAGES) or {image.region: image.image_id})
    artifact = Artifact(
        images=images,
        client=client,
        state_data={"generated_data": dict(state.get(keys.GENERATED_DATA) or {})},
    )
    return artifact, state.get(keys.PROPAGATION_ERROR)
