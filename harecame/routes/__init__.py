"""
Route blueprints for Harecame.
"""
from .api import api_bp
from .auth import auth_bp
from .analytics import analytics_bp
from .docs import docs_bp
