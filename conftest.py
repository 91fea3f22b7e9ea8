import os
import tempfile

# Settings are cached on first import, so the test environment has to be in
# place before anything under libs/ or services/ is imported.
_test_dir = tempfile.mkdtemp(prefix="marketplace-tests-")

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_test_dir, 'app.db')}"
os.environ["PAYMENT_GATEWAY"] = "fake"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ["SETTLEMENT_BACKOFF_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

from libs.common.config import get_settings  # noqa: E402

get_settings.cache_clear()
