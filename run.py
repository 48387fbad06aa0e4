"""
Entry point for the Moveify API
Progression is triggered on demand (POST /api/programs/<id>/progress), never on a timer
"""

import logging
import os

from config import Config
from moveify import create_app

logging.basicConfig(level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    logger.info(f"Starting Moveify API on port {port}")
    app.run(host='0.0.0.0', port=port)
