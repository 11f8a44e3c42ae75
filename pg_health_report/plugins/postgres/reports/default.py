# This file defines the checks and the execution order of the health report.
# Order here is the order of every rendered report. Tags drive the
# "recommended" mode; see pg_health_report.utils.mode_filter.CRITICAL_TAGS.

from pg_health_report.utils.catalogue import Check

CHECKS = [
    # --- Table maintenance ---
    Check(
        id=1,
        title='Bloat Info (Dead Tuple %)',
        query=(
            "SELECT schemaname, relname, n_live_tup, n_dead_tup, n_mod_since_analyze, "
            "round((n_dead_tup::numeric / (n_live_tup + 1)) * 100, 2) AS dead_pct "
            "FROM pg_stat_user_tables ORDER BY dead_pct DESC"
        ),
        tags={'bloat', 'vacuum'},
    ),
    Check(
        id=2,
        title='Unused Indexes',
        query=(
            "SELECT schemaname, relname, indexrelname, idx_scan FROM pg_stat_user_indexes "
            "WHERE idx_scan = 0 AND indexrelid NOT IN "
            "(SELECT conindid FROM pg_constraint WHERE contype IN ('p','u'))"
        ),
        tags={'unused-index', 'index'},
    ),

    # --- Activity ---
    Check(
        id=3,
        title='Long-Running Queries (> 5 min)',
        query=(
            "SELECT pid, usename, now() - query_start AS runtime, state, LEFT(query, 100) AS query "
            "FROM pg_stat_activity "
            "WHERE state <> 'idle' AND now() - query_start > interval '5 minutes' "
            "ORDER BY runtime DESC"
        ),
        tags={'long-running', 'activity'},
    ),
    Check(
        id=4,
        title='Vacuum Stats',
        query=(
            "SELECT relname, n_dead_tup, last_vacuum, last_autovacuum "
            "FROM pg_stat_user_tables ORDER BY n_dead_tup DESC"
        ),
        tags={'vacuum'},
    ),
    Check(
        id=5,
        title='Replication Lag',
        query=(
            "SELECT client_addr, state, pg_size_pretty(pg_wal_lsn_diff(sent_lsn, replay_lsn)) AS lag "
            "FROM pg_stat_replication"
        ),
        tags={'replication-lag', 'replication'},
    ),

    # --- Storage ---
    Check(
        id=6,
        title='DB Sizes',
        query=(
            "SELECT datname, pg_size_pretty(pg_database_size(datname)) AS size "
            "FROM pg_database ORDER BY pg_database_size(datname) DESC"
        ),
        tags={'size'},
    ),
    Check(
        id=7,
        title='Temp File Usage',
        query=(
            "SELECT datname, temp_files, pg_size_pretty(temp_bytes) AS temp_size "
            "FROM pg_stat_database ORDER BY temp_bytes DESC"
        ),
        tags={'temp-files', 'size'},
    ),
    Check(
        id=8,
        title='Connection Stats',
        query=(
            "SELECT usename, state, COUNT(*) AS connections FROM pg_stat_activity "
            "GROUP BY usename, state ORDER BY COUNT(*) DESC"
        ),
        tags={'connections'},
    ),

    # --- Query performance (needs pg_stat_statements) ---
    Check(
        id=9,
        title='Slow Queries (pg_stat_statements)',
        query=(
            r"SELECT regexp_replace(LEFT(query, 100), '[\n\r]+', ' ', 'g') AS query, calls, "
            "round(total_exec_time::numeric, 2) AS total_ms, "
            "round((total_exec_time / NULLIF(calls, 0))::numeric, 2) AS avg_ms, rows "
            "FROM pg_stat_statements "
            "WHERE query NOT ILIKE '%pg_stat_statements%' AND query NOT ILIKE 'COPY %' "
            "AND query NOT ILIKE 'SELECT datname%' "
            "ORDER BY total_exec_time DESC"
        ),
        tags={'slow-query', 'statements'},
    ),
    Check(
        id=10,
        title='Autovacuum & Autoanalyze Activity',
        query=(
            "SELECT relname, n_tup_ins, n_tup_upd, n_tup_del, autovacuum_count, autoanalyze_count "
            "FROM pg_stat_user_tables ORDER BY autovacuum_count DESC"
        ),
        tags={'vacuum'},
    ),
    Check(
        id=11,
        title='Index Usage Efficiency',
        query=(
            "SELECT relname, idx_scan, seq_scan, "
            "ROUND(100.0 * idx_scan / GREATEST(idx_scan + seq_scan, 1), 2) AS index_usage_pct "
            "FROM pg_stat_user_tables ORDER BY index_usage_pct ASC"
        ),
        tags={'index'},
    ),

    # --- Memory ---
    Check(
        id=12,
        title='Buffer Cache Hit Ratio',
        query=(
            "SELECT ROUND(SUM(blks_hit) * 100.0 / GREATEST(SUM(blks_hit + blks_read), 1), 2) AS hit_ratio_pct "
            "FROM pg_stat_database"
        ),
        tags={'cache-hit-ratio', 'memory'},
    ),
    Check(
        id=13,
        title='Memory Configuration Parameters',
        query=(
            "SELECT name, setting, unit FROM pg_settings "
            "WHERE name IN ('work_mem','maintenance_work_mem','shared_buffers','effective_cache_size') "
            "ORDER BY name"
        ),
        tags={'memory', 'configuration'},
    ),
    Check(
        id=14,
        title='Connection Stats by State/User',
        query=(
            "SELECT usename, state, COUNT(*) AS connections FROM pg_stat_activity "
            "GROUP BY usename, state ORDER BY COUNT(*) DESC"
        ),
        tags={'connections'},
    ),

    # --- Integrity ---
    Check(
        id=15,
        title='Oldest Transaction Age (Wraparound Risk)',
        query="SELECT datname, age(datfrozenxid) AS xid_age FROM pg_database ORDER BY xid_age DESC",
        tags={'wraparound-risk'},
    ),
    Check(
        id=16,
        title='Advisory Locks (if used)',
        query=(
            "SELECT pid, locktype, mode, granted, query FROM pg_locks "
            "JOIN pg_stat_activity USING (pid) WHERE locktype = 'advisory'"
        ),
        tags={'locks'},
    ),
    Check(
        id=17,
        title='Tables Without Primary or Foreign Key',
        query=(
            "SELECT schemaname, relname FROM pg_stat_user_tables "
            "WHERE relid NOT IN (SELECT conrelid FROM pg_constraint WHERE contype IN ('p','f')) "
            "ORDER BY schemaname, relname"
        ),
        tags={'missing-key'},
    ),
]
