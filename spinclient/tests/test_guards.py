"""Tests for operation latches and session staleness."""

from __future__ import annotations

import pytest

from spinclient.chain.session import Session
from spinclient.core.deployments import DeploymentRegistry
from spinclient.core.types import OperationFamily, OperationState
from spinclient.orchestrator.guards import AlreadyInFlight, OperationFlags, capture, is_stale
from spinclient.tests.conftest import (
    CHAIN_ID,
    CONTRACT,
    OTHER_CHAIN_ID,
    OTHER_USER,
    USER,
    FakeSigner,
)


class TestOperationFlags:
    def test_hold_sets_and_resets(self):
        flags = OperationFlags()
        with flags.hold(OperationFamily.SPIN):
            assert flags.spinning is True
            assert flags.state(OperationFamily.SPIN) == OperationState.IN_FLIGHT
            assert flags.any_set(OperationFamily.REFRESH, OperationFamily.SPIN)
            assert not flags.any_set(OperationFamily.REFRESH, OperationFamily.DECRYPT)
        assert flags.spinning is False

    def test_hold_resets_on_error(self):
        flags = OperationFlags()
        with pytest.raises(RuntimeError):
            with flags.hold(OperationFamily.DECRYPT):
                raise RuntimeError("boom")
        assert flags.decrypting is False

    def test_nested_hold_rejected(self):
        flags = OperationFlags()
        with flags.hold(OperationFamily.REFRESH):
            with pytest.raises(AlreadyInFlight):
                with flags.hold(OperationFamily.REFRESH):
                    pass
            assert flags.refreshing is True
        assert flags.refreshing is False


class TestStaleness:
    @pytest.fixture
    def registry(self) -> DeploymentRegistry:
        return DeploymentRegistry()

    def test_capture(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        assert snap.chain_id == CHAIN_ID
        assert snap.contract_address == CONTRACT
        assert snap.signer_identity == USER

    def test_unchanged_session_is_fresh(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        assert is_stale(snap, session, registry) is False

    def test_network_switch(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        session.switch_chain(OTHER_CHAIN_ID)
        assert is_stale(snap, session, registry) is True

    def test_account_switch(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        session.switch_signer(FakeSigner(OTHER_USER))
        assert is_stale(snap, session, registry) is True

    def test_new_signer_object_same_account(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        session.switch_signer(FakeSigner(USER))
        assert is_stale(snap, session, registry) is False

    def test_signer_disconnect(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        session.switch_signer(None)
        assert is_stale(snap, session, registry) is True

    def test_round_trip_switch_is_fresh(self, session: Session, registry: DeploymentRegistry):
        snap = capture(session, registry)
        session.switch_chain(OTHER_CHAIN_ID)
        session.switch_chain(CHAIN_ID)
        assert is_stale(snap, session, registry) is False
