"""
Trailgate — Static Files Stage
===============================

What:  Serves files from the public directory by URL path
       (/img/favicon.png → public/img/favicon.png).
How:   GET/HEAD only. A path that does not resolve to a regular file inside
       the root, or that names a dotfile, falls through to the next stage.
       A directory path serves its index.html when present.
"""

import logging
import stat
from pathlib import Path
from typing import Optional

import aiofiles.os
from starlette.responses import FileResponse

from trailgate.pipeline.context import RequestContext
from trailgate.pipeline.stage import Continuation, Stage

logger = logging.getLogger(__name__)


class StaticFilesStage(Stage):
    def __init__(self, root: str, index: str = "index.html"):
        self.root = Path(root).resolve()
        self.index = index

    def _candidate(self, url_path: str) -> Optional[Path]:
        relative = url_path.lstrip("/")
        if any(part.startswith(".") for part in Path(relative).parts):
            return None
        if not relative or url_path.endswith("/"):
            relative = f"{relative}{self.index}"
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            return None
        return candidate

    async def __call__(self, ctx: RequestContext, nxt: Continuation) -> None:
        if ctx.method not in ("GET", "HEAD"):
            nxt.proceed()
            return

        candidate = self._candidate(ctx.path)
        if candidate is None:
            nxt.proceed()
            return

        try:
            stat_result = await aiofiles.os.stat(candidate)
        except OSError:
            nxt.proceed()
            return

        if not stat.S_ISREG(stat_result.st_mode):
            nxt.proceed()
            return

        logger.debug("Serving static file %s", candidate)
        nxt.complete(FileResponse(candidate, stat_result=stat_result))
