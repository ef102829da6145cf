"""
Unit tests for retention configuration and the retention resolver.
"""

from unittest.mock import AsyncMock

import pytest
import yaml

from fuelopsd.storage.archival_models import (
    RetentionPolicy, CollectionRetention, GlobalRetention, RetentionDecision
)
from fuelopsd.storage.retention_config import (
    RetentionResolver,
    StaticRetentionSettings,
    YamlRetentionSettings,
    get_default_config,
    parse_retention_policy,
    write_default_config,
)


def _resolver(collections=None, global_policy=None) -> RetentionResolver:
    policy = RetentionPolicy(
        collections=collections or {},
        global_policy=global_policy or GlobalRetention()
    )
    return RetentionResolver(StaticRetentionSettings(policy))


class TestRetentionResolver:
    """Test retention precedence: per-type, then global, then default."""

    @pytest.mark.asyncio
    async def test_default_when_nothing_configured(self):
        decision = await _resolver().resolve('FuelRecord', 6)
        assert decision == RetentionDecision(months=6, enabled=True)

    @pytest.mark.asyncio
    async def test_per_type_override_wins(self):
        resolver = _resolver(
            collections={'FuelRecord': CollectionRetention(enabled=True, retention_months=3)},
            global_policy=GlobalRetention(archival_enabled=True, archival_months=9)
        )

        assert await resolver.resolve('FuelRecord', 6) == RetentionDecision(3, True)
        assert await resolver.resolve('LPOEntry', 6) == RetentionDecision(9, True)

    @pytest.mark.asyncio
    async def test_per_type_without_months_uses_default(self):
        resolver = _resolver(collections={'FuelRecord': CollectionRetention(enabled=True)})
        assert await resolver.resolve('FuelRecord', 6) == RetentionDecision(6, True)

    @pytest.mark.asyncio
    async def test_per_type_disabled(self):
        resolver = _resolver(
            collections={'DeliveryOrder': CollectionRetention(enabled=False, retention_months=3)}
        )

        decision = await resolver.resolve('DeliveryOrder', 6)

        assert not decision.enabled

    @pytest.mark.asyncio
    async def test_global_disabled(self):
        resolver = _resolver(global_policy=GlobalRetention(archival_enabled=False, archival_months=3))
        assert not (await resolver.resolve('LPOEntry', 6)).enabled

    @pytest.mark.asyncio
    async def test_enabled_override_beats_global_disable(self):
        resolver = _resolver(
            collections={'AuditLog': CollectionRetention(enabled=True, retention_months=24)},
            global_policy=GlobalRetention(archival_enabled=False)
        )
        assert await resolver.resolve('AuditLog', 12) == RetentionDecision(24, True)

    @pytest.mark.asyncio
    async def test_settings_failure_falls_back_to_default(self):
        source = StaticRetentionSettings()
        source.load_policy = AsyncMock(side_effect=ConnectionError("settings store unreachable"))

        decision = await RetentionResolver(source).resolve('FuelRecord', 6)

        assert decision == RetentionDecision(6, True)

    @pytest.mark.asyncio
    async def test_malformed_yaml_falls_back_to_default(self, tmp_path):
        config_path = tmp_path / "retention.yaml"
        config_path.write_text("archival:\n  collections:\n    FuelRecord:\n      retention_months: -1\n")

        decision = await RetentionResolver(YamlRetentionSettings(str(config_path))).resolve('FuelRecord', 6)

        assert decision == RetentionDecision(6, True)


class TestYamlRetentionSettings:
    """Test reading retention policy files."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty_policy(self, tmp_path):
        policy = await YamlRetentionSettings(str(tmp_path / "absent.yaml")).load_policy()
        assert policy == RetentionPolicy()

    @pytest.mark.asyncio
    async def test_reads_default_config(self, tmp_path):
        path = write_default_config(str(tmp_path / "configs" / "retention.yaml"))

        policy = await YamlRetentionSettings(str(path)).load_policy()

        assert policy.global_policy.archival_enabled is True
        assert policy.collections['DeliveryOrder'].enabled is False
        assert policy.collections['AuditLog'].retention_months == 12
        assert policy.collections['FuelRecord'].retention_months == 6

    @pytest.mark.asyncio
    async def test_non_mapping_file_raises(self, tmp_path):
        path = tmp_path / "retention.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            await YamlRetentionSettings(str(path)).load_policy()

    def test_write_default_config_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "retention.yaml"
        write_default_config(str(path))

        with pytest.raises(FileExistsError):
            write_default_config(str(path))

        write_default_config(str(path), overwrite=True)
        assert yaml.safe_load(path.read_text()) == get_default_config()


class TestParseRetentionPolicy:
    """Test validation of the archival section."""

    def test_empty_config(self):
        assert parse_retention_policy(None) == RetentionPolicy()
        assert parse_retention_policy({}) == RetentionPolicy()

    def test_global_and_collections(self):
        policy = parse_retention_policy({
            'archival': {
                'archival_enabled': False,
                'archival_months': 4,
                'collections': {'LPOEntry': {'retention_months': 8}, 'LPOSummary': None}
            }
        })

        assert policy.global_policy == GlobalRetention(archival_enabled=False, archival_months=4)
        assert policy.collections['LPOEntry'] == CollectionRetention(enabled=True, retention_months=8)
        assert policy.collections['LPOSummary'] == CollectionRetention()

    @pytest.mark.parametrize("entry", [
        {'retention_months': 0},
        {'retention_months': 'six'},
        {'retention_months': True},
        {'enabled': 'yes'},
    ])
    def test_invalid_entries(self, entry):
        with pytest.raises(ValueError):
            parse_retention_policy({'archival': {'collections': {'FuelRecord': entry}}})
