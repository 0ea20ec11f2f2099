"""
Image build pipeline.

Runs the build as a sequence of persisted phases:

1. PROVISIONING            launch the instance, wait for remote desktop
2. AWAITING_CUSTOMIZATION  operator customizes the instance by hand
3. CAPTURING_SPECIALIZED   stop, capture specialized image, restart, start sysprep
4. GENERALIZING            wait for sysprep to shut the instance down
5. CAPTURING_GENERALIZED   capture generalized image
6. IMPORTING               import generalized image into the gallery
7. COMPLETE

Each phase is recorded before the next begins, so an interrupted build
resumes from the last recorded phase. Failures propagate unchanged and
nothing already created is cleaned up; artifacts stay for inspection.
"""

from dataclasses import asdict, dataclass
from typing import Callable, Optional

from image_toolkit import config
from image_toolkit.common.aws_client_factory import CloudSession
from image_toolkit.common.cli_utils import confirm_customization_complete
from image_toolkit.common.condition_poller import ConditionPoller
from image_toolkit.common.credential_utils import GuestCredentials
from image_toolkit.common.exceptions import (
    RemoteCommandError,
    TransientProviderError,
    WorkflowStateError,
)
from image_toolkit.common.waiter_utils import (
    wait_for_endpoint_reachable,
    wait_for_image_available,
    wait_for_import_ready,
    wait_for_instance_status,
)
from image_toolkit.scripts.ec2_operations import (
    Endpoint,
    OsState,
    VMStatus,
    create_instance,
    ensure_instance_absent,
    get_endpoint,
    get_instance_status,
    resolve_subnet,
    save_image,
    start_instance,
    stop_instance,
)
from image_toolkit.scripts.gallery_import import get_import_status, import_image
from image_toolkit.scripts.remote_session import open_secure_session
from image_toolkit.scripts.source_image import (
    CustomImage,
    ImageFamily,
    SourceImageSelector,
    resolve_source_image,
)
from image_toolkit.workflow.state import BuildRecord, BuildState, Phase


@dataclass(frozen=True)
class BuildRequest:  # pylint: disable=too-many-instance-attributes
    """Parameters of one image build."""

    host_name: str
    group: str
    vpc_name: str
    subnet_name: str
    source: SourceImageSelector
    specialized_image_name: str
    generalized_image_name: str
    gallery_image_name: str
    gallery_location: str
    instance_type: str = config.DEFAULT_INSTANCE_TYPE

    def to_dict(self) -> dict:
        data = asdict(self)
        data["source"] = (
            {"image_family": self.source.family}
            if isinstance(self.source, ImageFamily)
            else {"custom_image": self.source.image_name}
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BuildRequest":
        data = dict(data)
        source = data.pop("source")
        if "image_family" in source:
            selector = ImageFamily(source["image_family"])
        else:
            selector = CustomImage(source["custom_image"])
        return cls(source=selector, **data)


class ImagePipeline:
    """Drives a build through its phases using explicitly passed clients."""

    def __init__(
        self,
        session: CloudSession,
        state: BuildState,
        credentials: GuestCredentials,
        poller: Optional[ConditionPoller] = None,
        checkpoint: Callable[..., bool] = confirm_customization_complete,
    ):  # pylint: disable=too-many-arguments,too-many-positional-arguments
        self.session = session
        self.state = state
        self.credentials = credentials
        self.poller = poller or ConditionPoller()
        self.checkpoint = checkpoint

    def provision(self, request: BuildRequest) -> BuildRecord:
        """
        Launch the build instance and wait until remote desktop answers.

        Raises:
            InstanceAlreadyExistsError: If the host already exists in the group
            WorkflowStateError: If the host was already provisioned by an earlier run
        """
        record = self.state.get(request.host_name)
        if record is not None and record.phase is Phase.PROVISIONING and record.instance_id:
            print(f"↻ Resuming provisioning of {request.host_name} ({record.instance_id})")
            instance_id = record.instance_id
        elif (
            record is not None
            and record.reached(Phase.AWAITING_CUSTOMIZATION)
            and record.phase is not Phase.COMPLETE
        ):
            raise WorkflowStateError(
                f"{request.host_name} is already in phase {record.phase.value}; run capture"
            )
        else:
            instance_id = self._launch(request)

        self._wait_for_remote_desktop(instance_id)
        return self.state.update(request.host_name, phase=Phase.AWAITING_CUSTOMIZATION)

    def _launch(self, request: BuildRequest) -> str:
        print("=" * 70)
        print(f"PROVISIONING {request.host_name}")
        print("=" * 70)
        ensure_instance_absent(self.session, request.host_name, request.group)
        subnet_id = resolve_subnet(self.session, request.vpc_name, request.subnet_name)
        image_id = resolve_source_image(self.session, request.source)
        self.state.create(request.host_name, request.group, self.session.region, request.to_dict())
        instance_id = create_instance(
            self.session,
            request.host_name,
            request.group,
            image_id,
            subnet_id,
            request.instance_type,
            self.credentials,
        )
        self.state.update(request.host_name, instance_id=instance_id)
        return instance_id

    def _wait_for_remote_desktop(self, instance_id: str) -> Endpoint:
        wait_for_instance_status(
            self.session, instance_id, VMStatus.READY_ROLE, poller=self.poller
        )
        endpoint = get_endpoint(self.session, instance_id, config.RDP_PORT)
        return wait_for_endpoint_reachable(endpoint, poller=self.poller)

    def capture(self, host_name: str) -> BuildRecord:
        """
        Run every phase from customization through gallery import.

        Raises:
            WorkflowStateError: If the host has not been provisioned
        """
        record = self.state.get(host_name)
        if record is None:
            raise WorkflowStateError(f"No build recorded for {host_name}; run provision first")
        if not record.reached(Phase.AWAITING_CUSTOMIZATION):
            raise WorkflowStateError(
                f"{host_name} is still {record.phase.value}; finish provision first"
            )
        if record.phase is Phase.COMPLETE:
            print(f"✅ Build of {host_name} already complete ({record.gallery_image_id})")
            return record

        request = BuildRequest.from_dict(record.request)
        if record.phase is Phase.AWAITING_CUSTOMIZATION:
            record = self.state.update(host_name, phase=Phase.CAPTURING_SPECIALIZED)
        if record.phase is Phase.CAPTURING_SPECIALIZED:
            record = self._capture_specialized(record, request)
        if record.phase is Phase.GENERALIZING:
            record = self._wait_for_generalization(record)
        if record.phase is Phase.CAPTURING_GENERALIZED:
            record = self._capture_generalized(record, request)
        if record.phase is Phase.IMPORTING:
            record = self._import(record, request)
        print("=" * 70)
        print(f"✓ BUILD COMPLETE: {request.gallery_image_name} ({record.gallery_image_id})")
        print("=" * 70)
        return record

    def _capture_specialized(self, record: BuildRecord, request: BuildRequest) -> BuildRecord:
        instance_id = record.instance_id
        if not record.specialized_image_id:
            stop_instance(self.session, instance_id, keep_allocated=True)
            wait_for_instance_status(
                self.session, instance_id, VMStatus.STOPPED, poller=self.poller
            )
            image_id = save_image(
                self.session,
                instance_id,
                request.specialized_image_name,
                OsState.SPECIALIZED,
                request.group,
            )
            record = self.state.update(record.host_name, specialized_image_id=image_id)
        wait_for_image_available(self.session, record.specialized_image_id, poller=self.poller)

        start_instance(self.session, instance_id)
        wait_for_instance_status(
            self.session, instance_id, VMStatus.READY_ROLE, poller=self.poller
        )
        return self._start_generalization(record.host_name, instance_id)

    def _start_generalization(self, host_name: str, instance_id: str) -> BuildRecord:
        endpoint = get_endpoint(self.session, instance_id, config.SSH_PORT)
        wait_for_endpoint_reachable(endpoint, poller=self.poller)
        with open_secure_session(
            endpoint, self.credentials, config.SKIP_HOST_KEY_VALIDATION
        ) as session:
            # Recorded first: a resume must never restart a guest that sysprep may be running on.
            record = self.state.update(host_name, phase=Phase.GENERALIZING)
            print("🧹 Starting in-guest generalization; the instance shuts down when done")
            try:
                session.run_detached(config.GENERALIZE_COMMAND, config.GENERALIZE_TASK_NAME)
            except RemoteCommandError:
                self.state.update(host_name, phase=Phase.CAPTURING_SPECIALIZED)
                raise
        return record

    def _wait_for_generalization(self, record: BuildRecord) -> BuildRecord:
        wait_for_instance_status(
            self.session,
            record.instance_id,
            VMStatus.STOPPED,
            max_duration=config.GENERALIZE_MAX_WAIT_SECONDS,
            poller=self.poller,
        )
        return self.state.update(record.host_name, phase=Phase.CAPTURING_GENERALIZED)

    def _capture_generalized(self, record: BuildRecord, request: BuildRequest) -> BuildRecord:
        if not record.generalized_image_id:
            image_id = save_image(
                self.session,
                record.instance_id,
                request.generalized_image_name,
                OsState.GENERALIZED,
                request.group,
            )
            record = self.state.update(record.host_name, generalized_image_id=image_id)
        wait_for_image_available(self.session, record.generalized_image_id, poller=self.poller)
        return self.state.update(record.host_name, phase=Phase.IMPORTING)

    def _import(self, record: BuildRecord, request: BuildRequest) -> BuildRecord:
        if not record.gallery_image_id:
            gallery_image_id = import_image(
                self.session,
                request.gallery_image_name,
                request.gallery_location,
                record.generalized_image_id,
            )
            record = self.state.update(record.host_name, gallery_image_id=gallery_image_id)
        wait_for_import_ready(self.session, record.gallery_image_id, poller=self.poller)
        return self.state.update(record.host_name, phase=Phase.COMPLETE)

    def run(self, request: BuildRequest, skip_prompt: bool = False) -> BuildRecord:
        """Provision, pause for customization, then capture."""
        record = self.provision(request)
        endpoint = get_endpoint(self.session, record.instance_id, config.RDP_PORT)
        if not self.checkpoint(request.host_name, endpoint, skip_prompt=skip_prompt):
            print(f"Capture postponed. Run 'capture --host {request.host_name}' when ready.")
            return record
        return self.capture(request.host_name)

    def describe(self, host_name: str) -> Optional[dict]:
        """Recorded state plus live instance and import status."""
        data = self.state.as_dict(host_name)
        if data is None:
            return None
        if data["instance_id"]:
            try:
                status = get_instance_status(self.session, data["instance_id"])
            except TransientProviderError:
                status = VMStatus.UNKNOWN
            data["instance_status"] = status.value
        if data["gallery_image_id"]:
            data["import_status"] = get_import_status(
                self.session, data["gallery_image_id"]
            ).value
        return data
