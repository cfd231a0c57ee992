import logging

# General
LOG_LEVEL = logging.INFO  # DEBUG with --verbose
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(filename)s:%(lineno)d - %(message)s'
VERSION = "0.1.0"

# Config loading
DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "API_CHECK_"

# HTTP server / management API
API_PREFIX = "/api"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000

# Metrics store
METRICS_MAX_ENTRIES = 10000
EVICTION_FRACTION_DIVISOR = 10  # evict max_entries // 10 oldest records on overflow
RPS_WINDOW_SECONDS = 60
DEFAULT_RECENT_SECONDS = 60
DEFAULT_HISTOGRAM_BUCKETS = 10
DEFAULT_TIME_SERIES_POINTS = 50

# Outbound HTTP (proxy and test runner)
OUTBOUND_TIMEOUT_SECONDS = 30.0

# Test runner defaults
TEST_DEFAULT_NUM_CALLS = 10
TEST_DEFAULT_FREQUENCY_MS = 100
TEST_DEFAULT_METHOD = "GET"
