# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import pytest
from packaging.version import Version

from pgstats.catalog import DEFAULT_STATISTIC, STATISTICS, available, lookup, resolve
from pgstats.errors import ConfigurationError, UnsupportedStatisticError

EXTENSIONS = {"pg_stat_statements": '"public"', "pg_buffercache": '"monitoring"'}


def test_default_statistic_exists():
    assert DEFAULT_STATISTIC in STATISTICS


def test_available_bounds():
    assert available(Version("14.2"), "14", None)
    assert not available(Version("13.9"), "14", None)
    assert not available(Version("17.0"), None, "17")
    assert available(None, "99", None)


def test_lookup_unknown_kind():
    with pytest.raises(ConfigurationError):
        lookup("nope")


def test_too_old_server_is_rejected():
    with pytest.raises(UnsupportedStatisticError, match="at least 14"):
        resolve("wal", Version("12.4"))


def test_bgwriter_columns_follow_release():
    before = resolve("bgwriter", Version("16.1"))
    after = resolve("bgwriter", Version("17.0"))
    assert "checkpoints_timed" in before.fields
    assert "checkpoints_timed" not in after.fields
    assert "buffers_alloc" in after.fields
    assert "sum(" not in before.text
    assert before.text.endswith("FROM pg_stat_bgwriter")
    assert before.reset_column == "stats_reset"


def test_database_is_aggregated_and_filterable():
    template = resolve("database", Version("16.0"), filtered=True)
    assert template.parameterized
    assert "sum(xact_commit) AS xact_commit" in template.text
    assert "max(stats_reset) AS stats_reset" in template.text
    assert template.text.endswith("WHERE datname = %s")


def test_reset_column_needs_release():
    assert resolve("database", Version("9.0")).reset_column is None


def test_filter_on_unfilterable_kind():
    with pytest.raises(ConfigurationError):
        resolve("archiver", Version("16.0"), filtered=True)


def test_extension_required():
    with pytest.raises(UnsupportedStatisticError, match="pg_stat_statements"):
        resolve("statement", Version("16.0"), {})


def test_extension_schema_substituted():
    template = resolve("statement", Version("16.0"), EXTENSIONS)
    assert 'FROM "public".pg_stat_statements' in template.text
    assert "sum(total_exec_time)" in template.text
    assert "sum(total_time)" not in template.text

    old = resolve("statement", Version("12.0"), EXTENSIONS)
    assert "sum(total_time)" in old.text
    assert "plans" not in old.fields


def test_buffercache_schema_substituted():
    template = resolve("buffercache", Version("16.0"), EXTENSIONS)
    assert 'FROM "monitoring".pg_buffercache' in template.text


def test_groups_restrict_columns():
    template = resolve("database", Version("16.0"), groups=["xacts"])
    assert template.fields == ["xact_commit", "xact_rollback"]


def test_groups_must_match_exactly():
    with pytest.raises(ConfigurationError, match="xact"):
        resolve("database", Version("16.0"), groups=["xact"])


def test_group_missing_on_release():
    with pytest.raises(UnsupportedStatisticError):
        resolve("database", Version("13.0"), groups=["sessions"])


def test_connection_predicates_follow_release():
    recent = resolve("connection", Version("16.0"))
    old = resolve("connection", Version("9.5"))
    assert "backend_type = 'client backend'" in recent.text
    assert "backend_type" not in old.text
    assert "waiting" in old.text
    assert recent.fields.count("active") == 1
    assert old.fields.count("active") == 1


def test_bouncer_pools_use_show():
    template = resolve("pbpools", None)
    assert template.text == "SHOW POOLS"
    assert not template.parameterized
    assert "cl_active" in template.fields


@pytest.mark.parametrize("name", sorted(STATISTICS))
@pytest.mark.parametrize("release", ["9.2", "9.6", "10.0", "13.0", "14.0", "16.0", "17.0", "18.0"])
def test_field_names_are_unique(name, release):
    try:
        template = resolve(name, Version(release), EXTENSIONS)
    except UnsupportedStatisticError:
        return
    assert len(template.fields) == len(set(template.fields))
    assert template.columns
