"""Tests for Settings defaults, environment overrides and enum parsing."""

from __future__ import annotations

import pytest

from src.core.config import Settings
from src.core.enums import YieldProtocol


class TestSettings:

    def test_defaults(self) -> None:
        s = Settings(_env_file=None)
        assert s.default_model == "rl"
        assert s.max_single_allocation_bps == 7000
        assert s.min_diversification == 2
        assert s.materiality_threshold_bps == 500
        assert s.exploration_rate == 0.10
        assert s.vault_api_max_retries == 3

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MATERIALITY_THRESHOLD_BPS", "250")
        monkeypatch.setenv("VAULT_API_URL", "http://vaults.internal:9000")
        s = Settings(_env_file=None)
        assert s.materiality_threshold_bps == 250
        assert s.vault_api_url == "http://vaults.internal:9000"

    def test_cors_origins_parsed(self) -> None:
        s = Settings(_env_file=None, allowed_origins=" http://a.test, ,http://b.test")
        assert s.cors_origins == ["http://a.test", "http://b.test"]


class TestYieldProtocolParse:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("LP", YieldProtocol.LIQUIDITY_PROVISION),
            ("lp", YieldProtocol.LIQUIDITY_PROVISION),
            ("PERPS_HEDGE", YieldProtocol.PERPS_HEDGE),
            ("staking", YieldProtocol.STAKING),
            (YieldProtocol.LENDING, YieldProtocol.LENDING),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert YieldProtocol.parse(raw) is expected

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown yield protocol"):
            YieldProtocol.parse("Bridging")
