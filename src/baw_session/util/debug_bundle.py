from __future__ import annotations

import json
import logging
import time
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from ..models import AcquisitionResult


logger = logging.getLogger(__name__)


def save_failure_artifacts(result: AcquisitionResult, *, debug_dir: str, name_prefix: str = "") -> list[Path]:
    """
    Write the failure screenshot (if any) and a JSON dump of the result/diagnostics under `debug_dir`.

    Best-effort: returns whatever paths were written.
    """
    out_dir = Path(debug_dir)
    stamp = time.strftime("%Y%m%d_%H%M%S")
    kind = (result.error_kind.value if result.error_kind else "ok").lower()
    prefix = name_prefix or f"acquire_{kind}_{stamp}"

    written: list[Path] = []
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        if result.screenshot:
            png = out_dir / f"{prefix}.png"
            png.write_bytes(result.screenshot)
            written.append(png)
        js = out_dir / f"{prefix}.json"
        js.write_text(
            json.dumps(result.model_dump(mode="json", exclude={"screenshot"}), indent=2),
            encoding="utf-8",
        )
        written.append(js)
    except Exception:
        logger.debug("Failed to save failure artifacts.", exc_info=True)
    return written


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    extra_paths: Optional[Iterable[str]] = None,
) -> Path:
    """
    Create a shareable zip containing debug artifacts + logs.

    Intentionally excludes secrets (.env, config.yaml).
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    out_path = out_root / f"debug_bundle_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> None:
        try:
            if file_path.exists() and file_path.is_file():
                z.write(file_path, arcname=arcname)
        except Exception:
            # a file vanishing mid-bundle is not worth failing over
            return

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        _add_file(z, log, arcname=log.name)

        if dbg.exists() and dbg.is_dir():
            for p in sorted(dbg.rglob("*")):
                if not p.is_file():
                    continue
                rel = p.relative_to(dbg)
                _add_file(z, p, arcname=str(Path("debug") / rel))

        for raw in extra_paths or ():
            p = Path(raw)
            if p.is_file():
                _add_file(z, p, arcname=str(Path("extra") / p.name))

    return out_path
