"""Image creation, sharing and propagation to other regions."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from tqdm import tqdm

from ..config.models import ImageSettings, PollingSettings
from ..errors import BuildCancelledError, ImageBakerError, PartialPropagationError, RemoteCallError
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.polling import retry_call, wait_until
from ..pipeline.state import StateBag
from ..pipeline.step import BuildStep, StepAction, best_effort
from ..services.control_plane import ControlPlaneClient, ImageInfo, ImageState


def image_ready(client: ControlPlaneClient, image_id: str, region: str | None = None) -> ImageInfo | None:
    """Probe for :func:`wait_until`: the image once ready, ``None`` while pending."""
    for image in client.describe_images(region=region, image_ids=[image_id]):
        if image.image_id != image_id:
            continue
        if image.state is ImageState.FAILED:
            raise RemoteCallError(f"Image {image_id} entered a failed state")
        if image.state is ImageState.READY:
            return image
    return None


class CreateImageStep(BuildStep):
    """Capture the provisioned instance as an image and wait until it is ready."""

    name = "CreateImage"

    def __init__(self, settings: ImageSettings, polling: PollingSettings | None = None) -> None:
        self.settings = settings
        self.polling = polling or PollingSettings()
        self.image_id: str | None = None
        self.region: str | None = None

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if self.settings.skip_create_image:
            self.logger.info("Skipping image creation")
            return StepAction.CONTINUE

        client: ControlPlaneClient = state.require(keys.CLIENT)
        instance = state.require(keys.INSTANCE)
        image_name = self.settings.image_name or ""
        self.logger.info("Creating image %s from instance %s", image_name, instance.instance_id)
        try:
            ctx.check()
            self.image_id = client.create_image(
                instance_id=instance.instance_id,
                image_name=image_name,
                description=self.settings.image_description,
                force_poweroff=self.settings.force_poweroff,
                sysprep=self.settings.sysprep,
            )
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to create image")

        image_id = self.image_id
        self.region = client.region
        self.logger.info("Waiting for image %s to become ready", image_id)
        try:
            image = wait_until(
                ctx,
                lambda: image_ready(client, image_id),
                interval=self.polling.interval_seconds,
                timeout=self.polling.image_timeout_seconds,
                description=f"image {image_id} to become ready",
            )
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to wait for image ready")

        state.put(keys.IMAGE, image)
        state.put(keys.IMAGES, {client.region: image.image_id})
        self.logger.info("Image %s (%s) is ready", image.image_id, image.name)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        # The image is the build's result; only an interrupted build discards it.
        if not self.image_id or not keys.was_interrupted(state):
            return
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return

        image_id, region = self.image_id, self.region
        self.logger.info("Deleting image %s because the build did not complete", image_id)
        deleted = best_effort(
            self.logger,
            f"delete image {image_id}",
            lambda: retry_call(
                BuildContext(),
                lambda: client.delete_image(image_id, region=region),
                attempts=self.polling.cleanup_attempts,
                interval=self.polling.cleanup_interval_seconds,
                description=f"delete image {image_id}",
            ),
        )
        if deleted:
            self.image_id = None


class ShareImageStep(BuildStep):
    """Share the new image with other accounts."""

    name = "ShareImage"

    def __init__(self, accounts: list[str]) -> None:
        self.accounts = list(accounts)
        self.shared_image_id: str | None = None

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if not self.accounts:
            return StepAction.CONTINUE
        image, present = state.get_ok(keys.IMAGE)
        if not present or image is None:
            return StepAction.CONTINUE

        client: ControlPlaneClient = state.require(keys.CLIENT)
        self.logger.info("Sharing image %s with %s", image.image_id, ", ".join(self.accounts))
        try:
            ctx.check()
            client.modify_image_sharing(image.image_id, self.accounts, permission="SHARE")
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to share image")
        self.shared_image_id = image.image_id
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self.shared_image_id or not keys.was_interrupted(state):
            return
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return
        image_id = self.shared_image_id
        self.logger.info("Cancelling share of image %s", image_id)
        if best_effort(
            self.logger,
            f"cancel share of image {image_id}",
            lambda: client.modify_image_sharing(image_id, self.accounts, permission="CANCEL"),
        ):
            self.shared_image_id = None


class CopyImageStep(BuildStep):
    """Copy the image to additional regions, each attempted independently.

    A failed region does not stop the others. Successful copies are added to
    the region map; failures are recorded together as a partial-propagation
    error that does not halt the build.
    """

    name = "CopyImage"

    def __init__(
        self,
        destination_regions: list[str],
        source_region: str,
        *,
        skip_create_image: bool = False,
        image_name: str | None = None,
        polling: PollingSettings | None = None,
    ) -> None:
        self.source_region = source_region
        self.destination_regions = list(dict.fromkeys(r for r in destination_regions if r != source_region))
        self.skip_create_image = skip_create_image
        self.image_name = image_name
        self.polling = polling or PollingSettings()
        self.copies: dict[str, str] = {}
        self.failed: set[str] = set()
        self._lock = threading.Lock()

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        if self.skip_create_image or not self.destination_regions:
            return StepAction.CONTINUE

        client: ControlPlaneClient = state.require(keys.CLIENT)
        image = state.require(keys.IMAGE)
        self.logger.info("Copying image %s to %s", image.image_id, ", ".join(self.destination_regions))

        succeeded: dict[str, str] = {}
        failures: dict[str, Exception] = {}
        workers = min(self.polling.copy_workers, len(self.destination_regions))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._copy_to_region, ctx, client, image.image_id, region): region
                for region in self.destination_regions
            }
            for future in tqdm(as_completed(futures), total=len(futures), desc="Regions", unit="region", disable=None):
                region = futures[future]
                try:
                    succeeded[region] = future.result()
                except ImageBakerError as exc:
                    self.logger.error("Copy of image %s to %s failed: %s", image.image_id, region, exc)
                    failures[region] = exc

        images = dict(state.get(keys.IMAGES) or {image.region: image.image_id})
        images.update(succeeded)
        state.put(keys.IMAGES, images)
        self.failed = set(failures)

        if ctx.cancelled:
            return self.halt(state, BuildCancelledError(ctx.reason or "Build cancelled"), "Image copy interrupted")
        if failures:
            state.put(keys.PROPAGATION_ERROR, PartialPropagationError(failures))
        self.logger.info("Image %s available in %d region(s)", image.image_id, len(images))
        return StepAction.CONTINUE

    def _copy_to_region(self, ctx: BuildContext, client: ControlPlaneClient, image_id: str, region: str) -> str:
        ctx.check()
        copied_id = client.copy_image(image_id, destination_region=region, image_name=self.image_name)
        with self._lock:
            self.copies[region] = copied_id
        wait_until(
            ctx,
            lambda: image_ready(client, copied_id, region),
            interval=self.polling.interval_seconds,
            timeout=self.polling.copy_timeout_seconds,
            description=f"image {copied_id} in {region} to become ready",
        )
        return copied_id

    def cleanup(self, state: StateBag) -> None:
        # Failed copies are never part of the result; successful ones only go on interruption.
        interrupted = keys.was_interrupted(state)
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return
        for region, image_id in list(self.copies.items()):
            if not interrupted and region not in self.failed:
                continue
            self.logger.info("Deleting copied image %s in %s", image_id, region)
            if best_effort(
                self.logger,
                f"delete image {image_id} in {region}",
                lambda: client.delete_image(image_id, region=region),
            ):
                del self.copies[region]
