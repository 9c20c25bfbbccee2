from prometheus_client import CollectorRegistry, Counter, Gauge

registry = CollectorRegistry()

SYNC_COUNTER = Counter('srvs_sync_total', 'Sync attempts by workspace and outcome',
                       ['workspace', 'outcome'], registry=registry)
MERGED_COUNTER = Counter('srvs_respondents_merged_total', 'Respondents added by sync merges',
                         ['workspace'], registry=registry)
AUTO_SYNC_GAUGE = Gauge('srvs_auto_sync_enabled', 'Whether auto-sync is on for a workspace',
                        ['workspace'], registry=registry)
