"""
API Check - dev HTTP server with request metrics, proxy mode and API testing.
"""

from api_check.config import VERSION as __version__
