"""Access decision surface."""
from typing import Any, Dict, Optional

from quota_backend.core.results import as_result
from quota_backend.features.access.service import evaluate_access as _evaluate_access


@as_result
def evaluate_access(email: Optional[str], action: str = "ai_generate") -> Dict[str, Any]:
    return _evaluate_access(email, action).to_dict()
