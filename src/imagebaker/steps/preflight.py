"""Read-only checks that run before any remote resource is created."""
from __future__ import annotations

from ..errors import ImageBakerError, PreconditionError
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.state import StateBag
from ..pipeline.step import BuildStep, StepAction
from ..services.control_plane import ControlPlaneClient, ImageState


class PreValidateStep(BuildStep):
    """Fail fast when an image with the target name already exists."""

    name = "PreValidate"

    def __init__(self, image_name: str | None, skip_create_image: bool = False) -> None:
        self.image_name = image_name
        self.skip_create_image = skip_create_image

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        # No need to validate the image name if no image will be created.
        if self.skip_create_image or not self.image_name:
            return StepAction.CONTINUE

        client: ControlPlaneClient = state.require(keys.CLIENT)
        self.logger.info("Checking that image name %s is available", self.image_name)
        try:
            ctx.check()
            images = client.describe_images(image_name=self.image_name)
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to look up existing images")

        if any(image.name == self.image_name for image in images):
            return self.halt(state, PreconditionError(f"Image name {self.image_name} already exists"))

        self.logger.info("Image name %s is available", self.image_name)
        return StepAction.CONTINUE


class CheckSourceImageStep(BuildStep):
    """Make sure the source image exists and is usable before launching from it."""

    name = "CheckSourceImage"

    def __init__(self, source_image_id: str) -> None:
        self.source_image_id = source_image_id

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        client: ControlPlaneClient = state.require(keys.CLIENT)
        self.logger.info("Checking source image %s", self.source_image_id)
        try:
            ctx.check()
            images = client.describe_images(image_ids=[self.source_image_id])
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to get source image info")

        image = next((item for item in images if item.image_id == self.source_image_id), None)
        if image is None:
            return self.halt(state, PreconditionError(f"No image found with id {self.source_image_id}"))
        if image.state is not ImageState.READY:
            return self.halt(
                state,
                PreconditionError(f"Source image {self.source_image_id} is not ready (state: {image.state.value})"),
            )

        state.put(keys.SOURCE_IMAGE, image)
        generated = state.get(keys.GENERATED_DATA)
        if generated is None:
            generated = {}
            state.put(keys.GENERATED_DATA, generated)
        generated["SourceImageName"] = image.name
        generated["SourceImageId"] = image.image_id
        self.logger.info("Found source image %s (%s)", image.image_id, image.name)
        return StepAction.CONTINUE
