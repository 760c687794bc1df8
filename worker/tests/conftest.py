import sys
from pathlib import Path

import pytest

# Ensure `review_console` is importable when running pytest from the repo or worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from review_console.core.config import Settings  # noqa: E402


@pytest.fixture
def settings():
    return Settings(
        apify_token="test-token",
        run_mode="async",
        poll_interval_seconds=1.5,
        poll_timeout_seconds=90.0,
        location_query="Ireland",
    )
