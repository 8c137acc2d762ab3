"""
Recursive folder crawl over the Drive API.

Worklist model: discovered folders are queued as (id, name, depth) nodes and
listed by a bounded pool of crawl workers. A folder is registered in the
ContainerRegistry when it is discovered, before it is listed, so a crawl
that fails part-way still yields a usable registry.

Failure handling:
    - a branch whose listing fails is logged and recorded, the crawl goes on
    - a FatalError (bad credentials) or cancellation aborts the whole crawl
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from catalog_sync.drive.client import DriveApiClient
from catalog_sync.schemas.assets import DriveItem
from core.errors.exceptions import FatalError, OperationCancelled
from core.logging.utilities import LoggedClass
from core.resilience.cancellation import CancellationToken
from core.security import sanitize_error_message

# on_log(message, severity) with severity info, success, warning or error
CrawlLogCallback = Callable[[str, str], None]


class ContainerRegistry:
    """Folder id -> display name, filled in discovery order."""

    def __init__(self) -> None:
        self._names: Dict[str, str] = {}

    def register(self, container_id: str, display_name: str) -> None:
        self._names.setdefault(container_id, display_name)

    def display_name(self, container_id: Optional[str], default: Optional[str] = None) -> Optional[str]:
        if container_id is None:
            return default
        return self._names.get(container_id, default)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._names)

    def __contains__(self, container_id: object) -> bool:
        return container_id in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)


@dataclass
class CrawlResult:
    """Accepted image leaves plus the folder registry."""

    assets: List[DriveItem] = field(default_factory=list)
    registry: ContainerRegistry = field(default_factory=ContainerRegistry)
    failed_containers: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_containers)


@dataclass
class _Node:
    container_id: str
    display_name: str
    depth: int


class DirectoryCrawler(LoggedClass):
    """
    Discover every image under a root folder.

    Args:
        client: Drive API client used for listings
        concurrency: Number of crawl workers
        max_depth: Deepest folder level visited (root is 0)
    """

    log_component = "crawler"

    def __init__(self, client: DriveApiClient, concurrency: int = 4, max_depth: int = 32):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.client = client
        self.concurrency = concurrency
        self.max_depth = max_depth
        super().__init__()

    async def crawl(
        self,
        root_id: str,
        root_name: str = "Root",
        token: Optional[CancellationToken] = None,
        on_log: Optional[CrawlLogCallback] = None,
    ) -> CrawlResult:
        """
        Crawl ``root_id`` and everything below it.

        Raises:
            FatalError: Credential or configuration failure on any listing
            OperationCancelled: Token fired during the crawl
        """
        result = CrawlResult()
        result.registry.register(root_id, root_name)

        queue: "asyncio.Queue[_Node]" = asyncio.Queue()
        queue.put_nowait(_Node(root_id, root_name, 0))
        abort = asyncio.Event()
        errors: List[BaseException] = []

        def emit(message: str, severity: str = "info") -> None:
            if on_log is not None:
                on_log(message, severity)

        async def worker() -> None:
            while True:
                node = await queue.get()
                try:
                    if not abort.is_set():
                        await self._visit(node, queue, result, token, emit)
                except (FatalError, OperationCancelled) as e:
                    errors.append(e)
                    abort.set()
                finally:
                    queue.task_done()

        emit(f"Scanning folder tree: {root_name}")
        self._log(logging.INFO, "Crawl started", container_id=root_id, container_name=root_name)

        workers = [asyncio.create_task(worker()) for _ in range(self.concurrency)]
        joiner = asyncio.create_task(queue.join())
        aborter = asyncio.create_task(abort.wait())
        try:
            await asyncio.wait({joiner, aborter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (*workers, joiner, aborter):
                task.cancel()
            await asyncio.gather(*workers, joiner, aborter, return_exceptions=True)

        if errors:
            first = errors[0]
            if isinstance(first, FatalError):
                self._log_exception(first, "Crawl aborted", container_id=root_id)
            raise first

        self._log(
            logging.INFO,
            "Crawl finished",
            container_id=root_id,
            children=len(result.assets),
            records_failed=len(result.failed_containers),
        )
        return result

    async def _visit(
        self,
        node: _Node,
        queue: "asyncio.Queue[_Node]",
        result: CrawlResult,
        token: Optional[CancellationToken],
        emit: Callable[..., None],
    ) -> None:
        if token is not None:
            token.raise_if_cancelled()

        try:
            children = await self.client.list_children(node.container_id, token)
        except (FatalError, OperationCancelled):
            raise
        except Exception as e:
            message = sanitize_error_message(str(e) or type(e).__name__)
            emit(f"Error scanning sub-path {node.display_name}: {message}", "error")
            self._log_exception(
                e,
                "Folder listing failed",
                level=logging.WARNING,
                container_id=node.container_id,
                container_name=node.display_name,
                depth=node.depth,
            )
            result.failed_containers.append(node.container_id)
            return

        for item in children:
            if item.is_folder:
                if item.id in result.registry:
                    continue
                if node.depth + 1 > self.max_depth:
                    emit(f"Skipping {item.name}: deeper than {self.max_depth} levels", "warning")
                    continue
                result.registry.register(item.id, item.name)
                emit(f"Subfolder detected: {item.name}")
                queue.put_nowait(_Node(item.id, item.name, node.depth + 1))
            elif item.is_image:
                result.assets.append(
                    DriveItem(
                        id=item.id,
                        name=item.name,
                        mime_type=item.mime_type,
                        parents=[node.container_id],
                    )
                )
