"""
Constants for company_identity package.

Centralizes magic numbers and configuration defaults.
"""

# Sentinel company name for rows that could not be identified
UNKNOWN_COMPANY = "Unknown"

# Batching / concurrency defaults for the inference provider
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_CONCURRENT_BATCHES = 6  # Hard ceiling, reflects provider rate limits
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0

# Concurrency tiers by job size: (row count upper bound, in-flight batches)
CONCURRENCY_TIERS = (
    (500, 5),
    (2000, 20),
    (5000, 50),
)

# Confidence thresholds (0.0 - 1.0 scale everywhere)
DEFAULT_CONFIDENCE_THRESHOLD = 0.8  # Deterministic result is final at or above this
MIN_LEARN_CONFIDENCE = 0.8  # Only learn from resolutions at or above this
DEFAULT_LEARNED_RETRY_THRESHOLD = 0.7  # Phase 3 acceptance floor, rejects ambiguous patterns
CONFLICT_OVERRIDE_MARGIN = 0.2  # New company must beat stored confidence by more than this
AMBIGUOUS_PATTERN_CONFIDENCE = 0.5  # Cap applied to conflicting patterns
LEARNED_SUGGESTION_CAP = 0.9
INFERRED_VARIANT_CONFIDENCE = 0.85  # International variant inferred from a sibling row
BATCH_PATTERN_CONFIDENCE_CAP = 0.95

# Deterministic strategy confidences
HIERARCHY_DOMAIN_CONFIDENCE = 0.95
BUNDLE_ID_CONFIDENCE = 0.9
TITLE_KEYWORD_CONFIDENCE = 0.85
GENERIC_DOMAIN_CONFIDENCE = 0.7
DOMAIN_MAPPING_CANONICAL_CONFIDENCE = 0.85
DOMAIN_MAPPING_BASE_CONFIDENCE = 0.8

# Pattern-type discounts applied to learned suggestions
PATTERN_TYPE_DISCOUNTS = {
    "exact": 1.0,
    "canonical": 0.95,
    "base": 0.9,
    "segment": 0.85,
}

# Smart pattern ranking: start at 1.0, lose 0.1 per rank, never below 0.5
SMART_PATTERN_START = 1.0
SMART_PATTERN_STEP = 0.1
SMART_PATTERN_FLOOR = 0.5

# Learned pattern bookkeeping
MAX_PATTERN_SOURCES = 10
RECENCY_HORIZON_DAYS = 365
RECENCY_FLOOR = 0.5

# Words never learned as standalone patterns
GENERIC_PATTERN_WORDS = frozenset(
    {
        "www",
        "com",
        "net",
        "org",
        "inc",
        "corp",
        "llc",
        "ltd",
        "company",
        "group",
        "international",
        "global",
        "services",
        "products",
        "solutions",
        "systems",
        "tech",
        "online",
        "web",
    }
)

# Result cache
DEFAULT_CACHE_TTL_HOURS = 24 * 7  # One week
DEFAULT_MAX_CACHE_ENTRIES = 10_000
CACHE_EVICTION_FRACTION = 0.1

# Cost ceiling (USD) for inference spend per job
DEFAULT_COST_LIMIT = 750.0

# Inference model
DEFAULT_INFERENCE_MODEL = "gpt-4o-mini"
INFERENCE_TEMPERATURE = 0.1
INFERENCE_MAX_TOKENS = 2000

# Snapshot format version for persisted learning state
PATTERN_SNAPSHOT_VERSION = 1
