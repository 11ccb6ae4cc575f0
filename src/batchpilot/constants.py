"""Design values shared by the waiter, runner and queue driver."""

DEFAULT_PROMPT_WAIT_SECONDS = 15
DEFAULT_GENERATION_WAIT_SECONDS = 120
DEFAULT_SCRIPT = "gamma"

# ConditionWaiter
ELEMENT_TIMEOUT_MS = 15000
ELEMENT_POLL_MS = 2000
GENERATION_POLL_MS = 2000
GENERATION_INITIAL_DELAY_MS = 5000
GENERATION_SETTLE_MS = 3000
PAGE_READY_TIMEOUT_MS = 30000
PAGE_READY_SETTLE_MS = 2000

# TaskRunner
CLICK_SETTLE_MS = 1500
ENABLED_WAIT_SECONDS = 10
CONTENT_MIN_LENGTH = 10
CONTENT_CHUNK_SIZE = 100
CONTENT_CHUNK_PAUSE_MS = 50
INSERT_VERIFY_DELAY_MS = 2000

# QueueDriver
INTER_ITEM_DELAY_SECONDS = 5.0
STATE_KEY = "batch_state"

DEFAULT_UNIT_LABEL = "Slide"
