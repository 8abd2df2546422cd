"""Acquire-or-create steps for the network, subnet and security group."""
from __future__ import annotations

from abc import abstractmethod

from ..config.models import PollingSettings
from ..errors import ImageBakerError, PreconditionError
from ..pipeline import keys
from ..pipeline.context import BuildContext
from ..pipeline.polling import retry_call
from ..pipeline.state import StateBag, StateKey
from ..pipeline.step import BuildStep, StepAction, best_effort
from ..services.control_plane import ControlPlaneClient, IngressRule


class AcquireOrCreateStep(BuildStep):
    """Reuse a caller-owned resource when an id is given, otherwise create and own one.

    Only a resource created by this step is deleted on cleanup. Deletes are
    retried because a dependent resource removed just before (the instance, a
    subnet) can keep the parent busy for a while.
    """

    resource: str
    state_key: StateKey[str]

    def __init__(self, existing_id: str | None, polling: PollingSettings | None = None) -> None:
        self.existing_id = existing_id
        self.polling = polling or PollingSettings()
        self.created_id: str | None = None

    @abstractmethod
    def _exists(self, client: ControlPlaneClient, resource_id: str, state: StateBag) -> bool:
        """Return True when the caller-supplied resource can be used."""

    @abstractmethod
    def _create(self, client: ControlPlaneClient, state: StateBag) -> str:
        """Create the resource and return its id."""

    @abstractmethod
    def _delete(self, client: ControlPlaneClient, resource_id: str) -> None:
        """Delete a resource this step created."""

    def run(self, ctx: BuildContext, state: StateBag) -> StepAction:
        client: ControlPlaneClient = state.require(keys.CLIENT)

        if self.existing_id:
            self.logger.info("Trying to use existing %s %s", self.resource, self.existing_id)
            try:
                ctx.check()
                usable = self._exists(client, self.existing_id, state)
            except ImageBakerError as exc:
                return self.halt(state, exc, f"Failed to query {self.resource} {self.existing_id}")
            if not usable:
                return self.halt(state, PreconditionError(f"The specified {self.resource} {self.existing_id} does not exist"))
            state.put(self.state_key, self.existing_id)
            return StepAction.CONTINUE

        self.logger.info("Creating %s", self.resource)
        try:
            ctx.check()
            self.created_id = self._create(client, state)
        except ImageBakerError as exc:
            return self.halt(state, exc, f"Failed to create {self.resource}")

        state.put(self.state_key, self.created_id)
        self.logger.info("Created %s %s", self.resource, self.created_id)
        return self._after_create(ctx, client, state)

    def _after_create(self, ctx: BuildContext, client: ControlPlaneClient, state: StateBag) -> StepAction:
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self.created_id:
            return
        client: ControlPlaneClient | None = state.get(keys.CLIENT)
        if client is None:
            return

        resource_id = self.created_id
        self.logger.info("Deleting %s %s", self.resource, resource_id)
        deleted = best_effort(
            self.logger,
            f"delete {self.resource} {resource_id}",
            lambda: retry_call(
                BuildContext(),
                lambda: self._delete(client, resource_id),
                attempts=self.polling.cleanup_attempts,
                interval=self.polling.cleanup_interval_seconds,
                description=f"delete {self.resource} {resource_id}",
            ),
        )
        if deleted:
            self.created_id = None
            state.remove(self.state_key)


class ConfigVpcStep(AcquireOrCreateStep):
    name = "ConfigVpc"
    resource = "vpc"
    state_key = keys.VPC_ID

    def __init__(
        self,
        vpc_id: str | None,
        vpc_name: str,
        cidr_block: str,
        polling: PollingSettings | None = None,
    ) -> None:
        super().__init__(vpc_id, polling)
        self.vpc_name = vpc_name
        self.cidr_block = cidr_block

    def _exists(self, client: ControlPlaneClient, resource_id: str, state: StateBag) -> bool:
        return client.describe_vpc(resource_id) is not None

    def _create(self, client: ControlPlaneClient, state: StateBag) -> str:
        return client.create_vpc(self.vpc_name, self.cidr_block)

    def _delete(self, client: ControlPlaneClient, resource_id: str) -> None:
        client.delete_vpc(resource_id)


class ConfigSubnetStep(AcquireOrCreateStep):
    name = "ConfigSubnet"
    resource = "subnet"
    state_key = keys.SUBNET_ID

    def __init__(
        self,
        subnet_id: str | None,
        subnet_name: str,
        cidr_block: str,
        zone: str,
        polling: PollingSettings | None = None,
        cdc_id: str | None = None,
    ) -> None:
        super().__init__(subnet_id, polling)
        self.subnet_name = subnet_name
        self.cidr_block = cidr_block
        self.zone = zone
        self.cdc_id = cdc_id

    def _exists(self, client: ControlPlaneClient, resource_id: str, state: StateBag) -> bool:
        subnet = client.describe_subnet(resource_id)
        if subnet is None:
            return False
        vpc_id = state.get(keys.VPC_ID)
        if vpc_id and subnet.vpc_id and subnet.vpc_id != vpc_id:
            raise PreconditionError(f"Subnet {resource_id} does not belong to vpc {vpc_id}")
        return True

    def _create(self, client: ControlPlaneClient, state: StateBag) -> str:
        return client.create_subnet(
            vpc_id=state.require(keys.VPC_ID),
            name=self.subnet_name,
            cidr_block=self.cidr_block,
            zone=self.zone,
            cdc_id=self.cdc_id,
        )

    def _delete(self, client: ControlPlaneClient, resource_id: str) -> None:
        client.delete_subnet(resource_id)


class ConfigSecurityGroupStep(AcquireOrCreateStep):
    name = "ConfigSecurityGroup"
    resource = "security group"
    state_key = keys.SECURITY_GROUP_ID

    def __init__(
        self,
        security_group_id: str | None,
        security_group_name: str,
        description: str = "security group for imagebaker",
        polling: PollingSettings | None = None,
    ) -> None:
        super().__init__(security_group_id, polling)
        self.security_group_name = security_group_name
        self.description = description

    def _exists(self, client: ControlPlaneClient, resource_id: str, state: StateBag) -> bool:
        return client.describe_security_group(resource_id) is not None

    def _create(self, client: ControlPlaneClient, state: StateBag) -> str:
        return client.create_security_group(self.security_group_name, self.description)

    def _after_create(self, ctx: BuildContext, client: ControlPlaneClient, state: StateBag) -> StepAction:
        # A fresh group denies everything; the build instance must be reachable.
        try:
            ctx.check()
            client.authorize_security_group_ingress(self.created_id or "", [IngressRule()])
        except ImageBakerError as exc:
            return self.halt(state, exc, "Failed to add ingress rule to security group")
        return StepAction.CONTINUE

    def _delete(self, client: ControlPlaneClient, resource_id: str) -> None:
        client.delete_security_group(resource_id)
