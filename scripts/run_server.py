"""Start the call relay server."""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import uvicorn
from dotenv import load_dotenv

from callrelay.config import RelaySettings
from callrelay.logging_config import setup_logging

load_dotenv()

if __name__ == "__main__":
    settings = RelaySettings.from_env()
    setup_logging("server", level=settings.log_level)
    uvicorn.run(
        "callrelay.web.server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload="--reload" in sys.argv,
    )
