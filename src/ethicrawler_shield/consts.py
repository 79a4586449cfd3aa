PRODUCT_NAME = "Ethicrawler-Shield"
"""Product token sent in the `User-Agent` header of outbound reports"""

VERSION = "1.0.0"

DEFAULT_BACKEND_URL = "https://api.ethicrawler.com"
LOG_REQUEST_ENDPOINT = "/api/v1/log_request"

FIRST_ATTEMPT_TIMEOUT_SECONDS = 2.0
RETRY_TIMEOUT_SECONDS = 10.0
FIRST_ATTEMPT_MAX_REDIRECTS = 1
RETRY_MAX_REDIRECTS = 2

MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 60
"""Backoff unit: retries fire after 1, 2 and 4 units"""

RETRY_RECORD_TTL_SECONDS = 24 * 60 * 60
MAX_RECENT_ERRORS = 10

RETRY_JOB_NAME = "ethicrawler_retry_api_request"
"""Name of the one-shot job registered with the task scheduler"""

RETRY_KEY_PREFIX = "ethicrawler_retry_"

CORRELATION_ID_HEADER = "X-Correlation-Request-ID"
RETRY_COUNT_HEADER = "X-Retry-Count"

DEBUG_QUERY_PARAM = "ethicrawler-debug"

RECENT_ERRORS_KEY = "ethicrawler_recent_errors"
ERROR_STATS_KEY = "ethicrawler_error_stats"
SUCCESS_STATS_KEY = "ethicrawler_success_stats"

POST_RESPONSE_HOOKS_STATE_KEY = "ethicrawler_post_response_hooks"
"""Key under `scope["state"]` holding the per-request hook list"""
