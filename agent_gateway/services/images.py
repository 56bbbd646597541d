"""Staging of prompt images as temporary files owned by a session.

Images arrive as ``data:<mime>;base64,<payload>`` URLs. Each one is written to
``<cwd>/.tmp/images/<timestamp>/image_<n>.<ext>`` and the prompt gets a note
listing the paths so the engine can read them. The files and their directory
become the session's auxiliary resources and are removed when the run ends.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
from uuid import uuid4

from agent_gateway.models import ImageAttachment

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)


@dataclass
class StagedImages:
    prompt: str
    paths: List[Path] = field(default_factory=list)
    temp_dir: Optional[Path] = None

    @property
    def aux_resources(self) -> List[Path]:
        # Files first, then the directory that holds them
        resources = list(self.paths)
        if self.temp_dir is not None:
            resources.append(self.temp_dir)
        return resources


def stage_images(prompt: str, images: Sequence[ImageAttachment], cwd: str) -> StagedImages:
    """Write ``images`` under ``cwd`` and return the prompt with a path note.

    Invalid entries are skipped. A failure to create the staging directory
    leaves the prompt unchanged.
    """
    if not images:
        return StagedImages(prompt=prompt)

    temp_dir = Path(cwd) / ".tmp" / "images" / f"{int(time.time() * 1000)}-{uuid4().hex[:6]}"
    staged = StagedImages(prompt=prompt, temp_dir=temp_dir)
    try:
        temp_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("[Images] Cannot create %s: %s", temp_dir, e)
        staged.temp_dir = None
        return staged

    for index, image in enumerate(images):
        match = _DATA_URL.match(image.data or "")
        if not match:
            logger.warning("[Images] Skipping image %d: not a base64 data URL", index)
            continue
        mime_type, payload = match.groups()
        extension = mime_type.split("/")[-1] or "png"
        try:
            raw = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            logger.warning("[Images] Skipping image %d: %s", index, e)
            continue
        path = temp_dir / f"image_{index}.{extension}"
        try:
            path.write_bytes(raw)
        except OSError as e:
            logger.error("[Images] Failed to write %s: %s", path, e)
            continue
        staged.paths.append(path)

    if staged.paths and prompt and prompt.strip():
        listing = "\n".join(f"{i + 1}. {p}" for i, p in enumerate(staged.paths))
        staged.prompt = f"{prompt}\n\n[Images provided at the following paths:]\n{listing}"
    logger.info("[Images] Staged %d image(s) in %s", len(staged.paths), temp_dir)
    return staged


def release_aux_resources(resources: Iterable[Path]) -> None:
    """Delete temporary files and directories; failures are logged only."""
    for resource in resources:
        path = Path(resource)
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("[Images] Failed to remove %s: %s", path, e)
