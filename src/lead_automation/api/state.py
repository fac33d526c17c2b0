"""
Process-wide application state shared by the app and its dependencies
"""
from typing import Any, Dict


app_state: Dict[str, Any] = {}


def get_app_state() -> Dict[str, Any]:
    return app_state
