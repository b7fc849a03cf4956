"""Test package for chatcore unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
