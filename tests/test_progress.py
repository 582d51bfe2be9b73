"""Deployment progress persistence."""

import pytest

from arca_deploy.infrastructure import SharedInfrastructure
from arca_deploy.progress import DeploymentProgress, JSONFileProgressLedger, ProgressLedgerCorrupted
from arca_deploy.vault import VaultDeployment, VaultDeploymentAddresses


@pytest.fixture()
def shared() -> SharedInfrastructure:
    return SharedInfrastructure(
        registry="0x0000000000000000000000000000000000000001",
        queue_handler_beacon="0x0000000000000000000000000000000000000002",
        fee_manager_beacon="0x0000000000000000000000000000000000000003",
        lb_router="0x0000000000000000000000000000000000000004",
        lb_factory="0x0000000000000000000000000000000000000005",
    )


@pytest.fixture()
def deployment(shared) -> VaultDeployment:
    return VaultDeployment(
        vault_id="a-b",
        addresses=VaultDeploymentAddresses(
            vault="0x0000000000000000000000000000000000000010",
            reward_claimer="0x0000000000000000000000000000000000000011",
            queue_handler="0x0000000000000000000000000000000000000012",
            fee_manager="0x0000000000000000000000000000000000000013",
            registry=shared.registry,
            queue_handler_beacon=shared.queue_handler_beacon,
            fee_manager_beacon=shared.fee_manager_beacon,
        ),
        token_x="0x0000000000000000000000000000000000000020",
        token_y="0x0000000000000000000000000000000000000021",
        lb_pair="0x0000000000000000000000000000000000000030",
    )


def test_load_missing(tmp_path):
    ledger = JSONFileProgressLedger(tmp_path)
    assert ledger.load("localhost") is None


def test_save_and_load(tmp_path, shared, deployment):
    ledger = JSONFileProgressLedger(tmp_path)

    progress = DeploymentProgress.create("localhost")
    progress.shared_infrastructure = shared
    progress.deployed_tokens["A"] = deployment.token_x
    progress.deployed_lb_pairs["a-b"] = deployment.lb_pair
    progress.mark_failed("c-d")
    progress.mark_completed(deployment)
    ledger.save("localhost", progress)

    loaded = ledger.load("localhost")
    assert loaded == progress
    assert loaded.vault_deployments["a-b"].addresses.fee_manager == deployment.addresses.fee_manager

    # File layout other tooling reads
    data = ledger.get_path("localhost").read_text()
    for key in ("sharedInfrastructure", "deployedTokens", "deployedLBPairs", "deployedVaults", "failedVaults"):
        assert f'"{key}"' in data


def test_save_leaves_no_temporary_files(tmp_path):
    ledger = JSONFileProgressLedger(tmp_path)
    progress = DeploymentProgress.create("localhost")
    ledger.save("localhost", progress)
    ledger.save("localhost", progress)

    assert [p.name for p in (tmp_path / "localhost").iterdir()] == ["multi-vault-progress.json"]


def test_corrupted_record(tmp_path):
    ledger = JSONFileProgressLedger(tmp_path)
    path = ledger.get_path("localhost")
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with pytest.raises(ProgressLedgerCorrupted):
        ledger.load("localhost")


def test_completed_and_failed_are_disjoint(deployment):
    progress = DeploymentProgress.create("localhost")
    progress.mark_failed("a-b")
    progress.mark_failed("a-b")
    assert progress.failed_vaults == ["a-b"]

    progress.mark_completed(deployment)
    assert progress.deployed_vaults == ["a-b"]
    assert progress.failed_vaults == []
    assert progress.is_completed("a-b")


def test_timestamp_is_start_time(tmp_path, deployment):
    """Saving more milestones does not move the start time."""
    ledger = JSONFileProgressLedger(tmp_path)
    progress = DeploymentProgress(network="localhost", timestamp=1_700_000_000_000)
    ledger.save("localhost", progress)

    progress.mark_completed(deployment)
    ledger.save("localhost", progress)

    assert ledger.load("localhost").timestamp == 1_700_000_000_000
