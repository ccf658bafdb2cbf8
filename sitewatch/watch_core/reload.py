"""Publishes watch-mode build results to the live-reload layer."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

from .collaborators import ReloadServer
from .config import LOGGER, STYLESHEET_EXTS
from .models import BuildRecord, ReloadPayload
from .paths import join_url_parts, normalize_path_prefix, starts_with_subpath


class ReloadBroadcaster:
    def __init__(
        self,
        server: ReloadServer,
        includes_dir: Callable[[], Optional[str]],
        path_prefix: Callable[[], Optional[str]],
        stylesheet_exts: Iterable[str] = STYLESHEET_EXTS,
    ):
        self.server = server
        self._includes_dir = includes_dir
        self._path_prefix = path_prefix
        self.stylesheet_exts = tuple(stylesheet_exts)

    def is_style_only(self, active_queue: List[str]) -> bool:
        # Decided on input paths, not on the extension of the written output
        if not active_queue:
            return False
        includes = self._includes_dir()
        return all(
            p.endswith(self.stylesheet_exts) and not starts_with_subpath(p, includes)
            for p in active_queue
        )

    def build_payload(self, active_queue: List[str], record: BuildRecord) -> ReloadPayload:
        prefix = normalize_path_prefix(self._path_prefix())
        templates = [
            t.with_url_prefix(join_url_parts(prefix, t.output_url) if t.output_url is not None else None)
            for t in record.template_results
        ]
        return ReloadPayload(
            changed_files=list(active_queue),
            subtype="css" if self.is_style_only(active_queue) else None,
            templates=templates,
        )

    async def publish(self, active_queue: List[str], record: BuildRecord) -> Optional[ReloadPayload]:
        if record.error is not None:
            await self.server.send_error({"error": record.error})
            return None
        payload = self.build_payload(active_queue, record)
        LOGGER.debug(
            "publishing reload",
            extra={"files": len(payload.changed_files), "subtype": payload.subtype},
        )
        await self.server.reload(payload.to_dict())
        return payload


__all__ = ["ReloadBroadcaster"]
