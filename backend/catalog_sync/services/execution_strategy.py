from enum import Enum
from typing import Optional

from catalog_sync.config import settings


class ExecutionPath(str, Enum):
    direct = "direct"
    bulk = "bulk"


def choose_path(batch_size: int, use_bulk: bool = False, threshold: Optional[int] = None) -> ExecutionPath:
    """Bulk when asked for or when the set is larger than the threshold.

    Create and update sets are decided separately, so one run can use both paths.
    """
    limit = settings.bulk_threshold if threshold is None else threshold
    if batch_size == 0:
        return ExecutionPath.direct
    if use_bulk or batch_size > limit:
        return ExecutionPath.bulk
    return ExecutionPath.direct
