"""
Parallel Processing for the Lunar Enhancement Pipeline

Enhancement runs on different images are independent, so dataset batches are
fanned out over a thread pool. Each run is single-threaded and blocks its
worker until completion; there is no de-duplication of identical requests.
"""

import logging
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class ParallelProcessor:
    """Thread-pool runner for independent per-image jobs"""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or mp.cpu_count()
        logger.info(f"Initialized parallel processor with {self.max_workers} workers")

    def process_batch_parallel(self, items: Sequence[Tuple[Any, Any]],
                               processing_func: Callable, **kwargs) -> List[Any]:
        """Apply processing_func(image, metadata, **kwargs) to each item; results keep input order"""
        if not items:
            return []

        workers = min(self.max_workers, len(items))
        logger.debug(f"Dispatching {len(items)} jobs to {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(processing_func, image, metadata, **kwargs)
                       for image, metadata in items]
            return [future.result() for future in futures]
