"""Preparation stage: obtain component binaries."""

from __future__ import annotations

import logging

from limeos_imagegen.components import ComponentFetcher, ComponentFetchError, create_http_client
from limeos_imagegen.errors import StageError
from limeos_imagegen.fsops import FilesystemError, make_dirs, remove_tree
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.pipeline.stages import PREPARATION

logger = logging.getLogger(__name__)


def run_preparation_stage(ctx: BuildContext) -> None:
    """Fetch every component into ``build/components``.

    Raises:
        StageError: If a required component cannot be obtained.
    """
    components_dir = ctx.layout.components_dir
    try:
        remove_tree(components_dir)
        make_dirs(components_dir)
    except FilesystemError as e:
        raise stage_fs_error(PREPARATION, e) from e

    if ctx.client is not None:
        fetcher = ComponentFetcher(ctx.client, ctx.settings, components_dir)
        _fetch(ctx, fetcher)
    else:
        with create_http_client(ctx.settings) as client:
            _fetch(ctx, ComponentFetcher(client, ctx.settings, components_dir))

    logger.info(
        "Prepared %d of %d component(s)", len(ctx.components), len(ctx.component_specs)
    )


def _fetch(ctx: BuildContext, fetcher: ComponentFetcher) -> None:
    try:
        ctx.components = fetcher.fetch_all(ctx.component_specs, ctx.config.version)
    except ComponentFetchError as e:
        raise StageError(PREPARATION, str(e), code=e.code) from e


__all__ = ["run_preparation_stage"]
