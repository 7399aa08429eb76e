import sys
from pathlib import Path

# Serverless runtimes start in api/; the sibling packages live one level up.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from web.app import app

# ASGI entrypoint for the cron and SIP routes
handler = app
