import dataclasses
from datetime import datetime, timezone

import pytest

from corekit.env import AppEnv


def make_env():
    return AppEnv(
        env_name="prod",
        ci_pipeline_id="77",
        git_tag="v1",
        git_branch="main",
        git_commit="abcdef0123",
        git_commit_short="abcdef0",
        started_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )


def test_as_fields_maps_every_value():
    fields = make_env().as_fields()
    assert fields == {
        "env_name": "prod",
        "git_branch": "main",
        "git_commit": "abcdef0123",
        "git_commit_short": "abcdef0",
        "git_tag": "v1",
        "ci_pipeline_id": "77",
    }


def test_started_at_kept():
    assert make_env().started_at == datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_default_started_at_is_aware_and_recent():
    before = datetime.now(timezone.utc)
    env = AppEnv()
    after = datetime.now(timezone.utc)
    assert before <= env.started_at <= after
    assert env.as_fields()["env_name"] == ""


def test_frozen():
    env = make_env()
    with pytest.raises(dataclasses.FrozenInstanceError):
        env.env_name = "dev"
    assert env.as_fields()["env_name"] == "prod"
    changed = dataclasses.replace(env, env_name="dev")
    assert changed.as_fields()["env_name"] == "dev"
    assert env.as_fields()["env_name"] == "prod"