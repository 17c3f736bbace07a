"""
BURN RAIL - Serverless Entry Point

Wraps the FastAPI app for AWS Lambda / Vercel style deployments. Settings
come from the environment when the app starts.
"""

import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from burn_rail.api.server import create_app  # noqa: E402
from burn_rail.config import Settings  # noqa: E402
from burn_rail.logging_config import configure_logging  # noqa: E402

settings = Settings.from_env()
configure_logging(json_logs=True, level=settings.log_level)

# Background jobs need a long-lived process; serverless runs request-only.
app = create_app(background_jobs=False)

handler = Mangum(app, lifespan="auto")
