"""
Centralized path configuration for shipwatch
"""

import os

# The /app/data directory is mounted as a volume when running in a container
DATA_DIR = os.getenv('SHIPWATCH_DATA_DIR', '/app/data')

# For development/testing outside Docker
if not os.path.exists('/app') and 'SHIPWATCH_DATA_DIR' not in os.environ:
    DATA_DIR = './data'

LOG_DIR = os.path.join(DATA_DIR, 'logs')
