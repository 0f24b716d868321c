"""Tests for config."""

import pytest

from config import BakerSettings, Settings


def test_blacklist_addresses(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BAKER_BLACKLIST", " tz1a, tz1b ,,")
    assert BakerSettings().blacklist_addresses == ["tz1a", "tz1b"]


def test_fee_rate_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    from pydantic import ValidationError

    monkeypatch.setenv("BAKER_FEE_RATE", "1.5")
    with pytest.raises(ValidationError):
        BakerSettings()


def test_secret_key_not_in_repr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BAKER_SECRET_KEY", "edsk-very-secret")
    assert "edsk-very-secret" not in repr(BakerSettings())


def test_snapshot_has_no_secrets(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BAKER_SECRET_KEY", "edsk-very-secret")
    monkeypatch.setenv("BAKERPAY_DATA_DIR", str(tmp_path))
    snapshot: dict[str, object] = Settings().snapshot()
    assert "edsk-very-secret" not in str(snapshot)
    assert snapshot["fee_rate"] == 0.05


def test_defaults(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BAKERPAY_DATA_DIR", str(tmp_path))
    settings = Settings()
    assert settings.chain.poll_interval == 30.0
    assert settings.fail_fast is True
    assert settings.baker.wait_for_unfreeze is False
