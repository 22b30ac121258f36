import os

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
DATA_FILE = os.environ.get("GTM_DATA_FILE", os.path.join("data", "siteCounts.json"))
TEST_LEAD_TTL = float(os.environ.get("GTM_TEST_LEAD_TTL", "60"))
RAW_LOG_SIZE = int(os.environ.get("GTM_RAW_LOG_SIZE", "1000"))
ADMIN_TOKEN = os.environ.get("GTM_ADMIN_TOKEN", "")
HEALTH_TIMEOUT = float(os.environ.get("GTM_HEALTH_TIMEOUT", "5"))
LOG_LEVEL = os.environ.get("GTM_LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", "9000"))

# Keywords that mark a lead as test/demo traffic (matched as substrings)
TEST_KEYWORDS = os.environ.get(
    "GTM_TEST_KEYWORDS",
    "test,demo,sample,example,fake,dummy"
).split(",")
TEST_KEYWORDS = tuple(k.strip().lower() for k in TEST_KEYWORDS if k.strip())

# CORS allowlist, "*" lets any microsite post events
CORS_ALLOW_ORIGINS = os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",")
CORS_ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS if o.strip()]
