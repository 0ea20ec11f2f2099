"""Tests for image_toolkit/workflow/pipeline.py"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from image_toolkit import config
from image_toolkit.common.exceptions import (
    InstanceAlreadyExistsError,
    PollTimeoutError,
    RemoteCommandError,
    TransientProviderError,
    WorkflowStateError,
)
from image_toolkit.scripts.ec2_operations import Endpoint, OsState, VMStatus
from image_toolkit.scripts.gallery_import import ImportStatus
from image_toolkit.scripts.source_image import CustomImage, ImageFamily
from image_toolkit.workflow.pipeline import BuildRequest, ImagePipeline
from image_toolkit.workflow.state import BuildState, Phase
from tests.assertions import assert_equal, assert_printed

MODULE = "image_toolkit.workflow.pipeline"


def _request(**overrides):
    values = {
        "host_name": "build-01",
        "group": "images",
        "vpc_name": "build-vpc",
        "subnet_name": "build-subnet",
        "source": ImageFamily("Windows_Server-2022"),
        "specialized_image_name": "app-specialized",
        "generalized_image_name": "app-generalized",
        "gallery_image_name": "app-gallery",
        "gallery_location": "us-west-2",
    }
    values.update(overrides)
    return BuildRequest(**values)


@pytest.fixture(name="state")
def fixture_state(temp_db):
    return BuildState(temp_db)


@pytest.fixture(name="ops")
def fixture_ops():
    """Patch every provider call the pipeline makes and record their order."""
    calls = []
    names = [
        "ensure_instance_absent",
        "resolve_subnet",
        "resolve_source_image",
        "create_instance",
        "wait_for_instance_status",
        "get_endpoint",
        "wait_for_endpoint_reachable",
        "stop_instance",
        "save_image",
        "wait_for_image_available",
        "start_instance",
        "open_secure_session",
        "import_image",
        "wait_for_import_ready",
        "get_instance_status",
        "get_import_status",
    ]
    mocks = {}
    patchers = []
    for name in names:
        mock = MagicMock(name=name)
        mock.side_effect = _recorder(calls, name, mock)
        patchers.append(patch(f"{MODULE}.{name}", mock))
        mocks[name] = mock
    for patcher in patchers:
        patcher.start()

    mocks["resolve_subnet"].return_value = "subnet-9"
    mocks["resolve_source_image"].return_value = "ami-src"
    mocks["create_instance"].return_value = "i-new"
    mocks["get_endpoint"].side_effect = _recorder(
        calls, "get_endpoint", lambda _s, _i, port: Endpoint("54.1.2.3", port)
    )
    mocks["save_image"].side_effect = _recorder(
        calls,
        "save_image",
        lambda _s, _i, _n, os_state, _g: {
            OsState.SPECIALIZED: "ami-spec",
            OsState.GENERALIZED: "ami-gen",
        }[os_state],
    )
    mocks["import_image"].return_value = "wsi-1"
    mocks.update(calls=calls)
    yield mocks
    for patcher in patchers:
        patcher.stop()


def _recorder(calls, name, target):
    def _call(*args, **kwargs):
        calls.append(name)
        if isinstance(target, MagicMock):
            return target.return_value
        return target(*args, **kwargs)

    return _call


def _pipeline(session, state, guest_credentials, checkpoint=None):
    return ImagePipeline(
        session,
        state,
        guest_credentials,
        poller=MagicMock(),
        checkpoint=checkpoint or MagicMock(return_value=True),
    )


class TestBuildRequest:
    """Tests for BuildRequest serialization"""

    @pytest.mark.parametrize("source", [ImageFamily("Windows_Server-2022"), CustomImage("golden")])
    def test_dict_round_trip_keeps_selector_type(self, source):
        request = _request(source=source)

        assert_equal(BuildRequest.from_dict(request.to_dict()), request)

    def test_default_instance_type(self):
        assert_equal(_request().instance_type, config.DEFAULT_INSTANCE_TYPE)


class TestProvision:
    """Tests for ImagePipeline.provision"""

    def test_provision_order(self, session, state, guest_credentials, ops, mock_print):
        """Precondition, network, image, create, then wait for remote desktop."""
        record = _pipeline(session, state, guest_credentials).provision(_request())

        assert_equal(
            ops["calls"],
            [
                "ensure_instance_absent",
                "resolve_subnet",
                "resolve_source_image",
                "create_instance",
                "wait_for_instance_status",
                "get_endpoint",
                "wait_for_endpoint_reachable",
            ],
        )
        assert_equal(record.phase, Phase.AWAITING_CUSTOMIZATION)
        assert_equal(record.instance_id, "i-new")
        assert_equal(ops["wait_for_instance_status"].call_args.args[2], VMStatus.READY_ROLE)
        assert_equal(ops["get_endpoint"].call_args.args[2], config.RDP_PORT)

    def test_existing_host_is_not_recreated(self, session, state, guest_credentials, ops):
        ops["ensure_instance_absent"].side_effect = InstanceAlreadyExistsError(
            "build-01", "images", "i-old"
        )

        with pytest.raises(InstanceAlreadyExistsError):
            _pipeline(session, state, guest_credentials).provision(_request())

        ops["create_instance"].assert_not_called()
        assert state.get("build-01") is None

    def test_resume_skips_launch(self, session, state, guest_credentials, ops, mock_print):
        """An instance recorded by an interrupted provision is waited on, not relaunched."""
        state.create("build-01", "images", "us-east-1", _request().to_dict())
        state.update("build-01", instance_id="i-old")

        record = _pipeline(session, state, guest_credentials).provision(_request())

        ops["create_instance"].assert_not_called()
        ops["ensure_instance_absent"].assert_not_called()
        assert_equal(record.instance_id, "i-old")
        assert_equal(record.phase, Phase.AWAITING_CUSTOMIZATION)

    def test_already_provisioned_rejected(self, session, state, guest_credentials, ops):
        state.create("build-01", "images", "us-east-1", _request().to_dict())
        state.update("build-01", phase=Phase.AWAITING_CUSTOMIZATION, instance_id="i-old")

        with pytest.raises(WorkflowStateError, match="run capture"):
            _pipeline(session, state, guest_credentials).provision(_request())

    def test_remote_desktop_timeout_propagates(
        self, session, state, guest_credentials, ops, mock_print
    ):
        ops["wait_for_endpoint_reachable"].side_effect = PollTimeoutError(
            "endpoint 54.1.2.3:3389", 120, None
        )

        with pytest.raises(PollTimeoutError):
            _pipeline(session, state, guest_credentials).provision(_request())

        assert_equal(state.get("build-01").phase, Phase.PROVISIONING)


class TestCapture:
    """Tests for ImagePipeline.capture"""

    def _provisioned(self, state, phase=Phase.AWAITING_CUSTOMIZATION, **artifacts):
        state.create("build-01", "images", "us-east-1", _request().to_dict())
        return state.update("build-01", phase=phase, instance_id="i-new", **artifacts)

    def test_capture_runs_every_phase_in_order(
        self, session, state, guest_credentials, ops, mock_print
    ):
        self._provisioned(state)
        session_cm = ops["open_secure_session"].return_value
        remote = session_cm.__enter__.return_value

        record = _pipeline(session, state, guest_credentials).capture("build-01")

        assert_equal(
            ops["calls"],
            [
                "stop_instance",
                "wait_for_instance_status",
                "save_image",
                "wait_for_image_available",
                "start_instance",
                "wait_for_instance_status",
                "get_endpoint",
                "wait_for_endpoint_reachable",
                "open_secure_session",
                "wait_for_instance_status",
                "save_image",
                "wait_for_image_available",
                "import_image",
                "wait_for_import_ready",
            ],
        )
        assert_equal(record.phase, Phase.COMPLETE)
        assert_equal(record.specialized_image_id, "ami-spec")
        assert_equal(record.generalized_image_id, "ami-gen")
        assert_equal(record.gallery_image_id, "wsi-1")
        remote.run_detached.assert_called_once_with(
            config.GENERALIZE_COMMAND, config.GENERALIZE_TASK_NAME
        )
        ops["stop_instance"].assert_called_once_with(session, "i-new", keep_allocated=True)
        assert_equal(ops["get_endpoint"].call_args.args[2], config.SSH_PORT)

    def test_generalizing_recorded_before_sysprep_starts(
        self, session, state, guest_credentials, ops, mock_print
    ):
        """An interruption after launch resumes at the stopped wait, not a restart."""
        self._provisioned(state)
        remote = ops["open_secure_session"].return_value.__enter__.return_value
        phases_at_launch = []
        remote.run_detached.side_effect = lambda *_: phases_at_launch.append(
            state.get("build-01").phase
        )
        ops["wait_for_instance_status"].side_effect = [None, None, KeyboardInterrupt]

        with pytest.raises(KeyboardInterrupt):
            _pipeline(session, state, guest_credentials).capture("build-01")

        assert_equal(phases_at_launch, [Phase.GENERALIZING])
        ops["start_instance"].reset_mock()
        ops["wait_for_instance_status"].side_effect = None
        remote.run_detached.reset_mock()

        _pipeline(session, state, guest_credentials).capture("build-01")

        ops["start_instance"].assert_not_called()
        remote.run_detached.assert_not_called()

    def test_failed_sysprep_launch_can_be_retried(
        self, session, state, guest_credentials, ops, mock_print
    ):
        self._provisioned(state)
        remote = ops["open_secure_session"].return_value.__enter__.return_value
        remote.run_detached.side_effect = RemoteCommandError("schtasks", 1, "Access is denied")

        with pytest.raises(RemoteCommandError):
            _pipeline(session, state, guest_credentials).capture("build-01")

        record = state.get("build-01")
        assert_equal(record.phase, Phase.CAPTURING_SPECIALIZED)
        assert_equal(record.specialized_image_id, "ami-spec")

    def test_generalization_wait_uses_long_budget(
        self, session, state, guest_credentials, ops, mock_print
    ):
        self._provisioned(state, phase=Phase.GENERALIZING, specialized_image_id="ami-spec")

        _pipeline(session, state, guest_credentials).capture("build-01")

        first_wait = ops["wait_for_instance_status"].call_args_list[0]
        assert_equal(first_wait.args[2], VMStatus.STOPPED)
        assert_equal(first_wait.kwargs["max_duration"], config.GENERALIZE_MAX_WAIT_SECONDS)
        ops["open_secure_session"].assert_not_called()

    def test_import_uses_generalized_image(
        self, session, state, guest_credentials, ops, mock_print
    ):
        self._provisioned(state)

        _pipeline(session, state, guest_credentials).capture("build-01")

        ops["import_image"].assert_called_once_with(session, "app-gallery", "us-west-2", "ami-gen")

    def test_resume_from_importing_does_not_reimport(
        self, session, state, guest_credentials, ops, mock_print
    ):
        self._provisioned(
            state,
            phase=Phase.IMPORTING,
            specialized_image_id="ami-spec",
            generalized_image_id="ami-gen",
            gallery_image_id="wsi-1",
        )

        record = _pipeline(session, state, guest_credentials).capture("build-01")

        assert_equal(ops["calls"], ["wait_for_import_ready"])
        assert_equal(record.phase, Phase.COMPLETE)

    def test_failure_leaves_phase_for_resume(
        self, session, state, guest_credentials, ops, mock_print
    ):
        """A failed generalized capture resumes at CAPTURING_GENERALIZED."""
        self._provisioned(state)
        ops["wait_for_image_available"].side_effect = [None, RuntimeError("capture failed")]

        with pytest.raises(RuntimeError):
            _pipeline(session, state, guest_credentials).capture("build-01")

        record = state.get("build-01")
        assert_equal(record.phase, Phase.CAPTURING_GENERALIZED)
        assert_equal(record.generalized_image_id, "ami-gen")
        ops["import_image"].assert_not_called()

    def test_capture_without_build(self, session, state, guest_credentials, ops):
        with pytest.raises(WorkflowStateError, match="run provision first"):
            _pipeline(session, state, guest_credentials).capture("build-01")

    def test_capture_before_provision_finished(self, session, state, guest_credentials, ops):
        self._provisioned(state, phase=Phase.PROVISIONING)

        with pytest.raises(WorkflowStateError, match="finish provision first"):
            _pipeline(session, state, guest_credentials).capture("build-01")

    def test_capture_complete_is_noop(self, session, state, guest_credentials, ops, mock_print):
        self._provisioned(state, phase=Phase.COMPLETE, gallery_image_id="wsi-1")

        record = _pipeline(session, state, guest_credentials).capture("build-01")

        assert_equal(ops["calls"], [])
        assert_equal(record.gallery_image_id, "wsi-1")


class TestRun:
    """Tests for ImagePipeline.run"""

    def test_declined_checkpoint_postpones_capture(
        self, session, state, guest_credentials, ops, mock_print
    ):
        checkpoint = MagicMock(return_value=False)

        record = _pipeline(session, state, guest_credentials, checkpoint).run(_request())

        assert_equal(record.phase, Phase.AWAITING_CUSTOMIZATION)
        ops["stop_instance"].assert_not_called()
        checkpoint.assert_called_once_with(
            "build-01", Endpoint("54.1.2.3", config.RDP_PORT), skip_prompt=False
        )
        assert_printed(mock_print, "capture --host build-01")

    def test_confirmed_checkpoint_runs_capture(
        self, session, state, guest_credentials, ops, mock_print
    ):
        record = _pipeline(session, state, guest_credentials).run(_request(), skip_prompt=True)

        assert_equal(record.phase, Phase.COMPLETE)


class TestDescribe:
    """Tests for ImagePipeline.describe"""

    def test_describe_adds_live_status(self, session, state, guest_credentials, ops):
        state.create("build-01", "images", "us-east-1", _request().to_dict())
        state.update("build-01", instance_id="i-new", gallery_image_id="wsi-1")
        ops["get_instance_status"].return_value = VMStatus.STOPPED
        ops["get_import_status"].return_value = ImportStatus.UPLOADING

        data = _pipeline(session, state, guest_credentials).describe("build-01")

        assert_equal(data["instance_status"], "StoppedVM")
        assert_equal(data["import_status"], "Uploading")

    def test_describe_unknown_when_instance_not_listed(self, session, state, guest_credentials, ops):
        state.create("build-01", "images", "us-east-1", _request().to_dict())
        state.update("build-01", instance_id="i-new")
        ops["get_instance_status"].side_effect = TransientProviderError("not listed")

        data = _pipeline(session, state, guest_credentials).describe("build-01")

        assert_equal(data["instance_status"], "Unknown")
        assert "import_status" not in data

    def test_describe_missing(self, session, state, guest_credentials, ops):
        assert _pipeline(session, state, guest_credentials).describe("build-01") is None
