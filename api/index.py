import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Serverless deployments mount the app under /api
os.environ.setdefault("API_ROOT_PATH", "/api")

from wagering.api import app  # noqa: E402

handler = Mangum(app)
