from fastapi import FastAPI
from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loyalty.api import app as loyalty_app

# the gateway forwards /api/*; mount the service there instead of
# changing root_path on the app shared with local uvicorn runs
app = FastAPI(title="Loyalty Points API (serverless)")
app.mount("/api", loyalty_app)

handler = Mangum(app)
