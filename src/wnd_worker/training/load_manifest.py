"""Signature manifest written after the load phase.

A restarted worker rebuilds its shards from the raw input, so the manifest
does not store records. It stores the counts the previous load produced
under the same sharding signature, and a reload that yields different counts
means shard reconstruction was not reproducible.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from wnd_worker.training.load_metrics import LoadSummary


MANIFEST_SCHEMA_VERSION = 1


class LoadManifestError(RuntimeError):
    pass


class ShardReconstructionMismatch(RuntimeError):
    pass


def manifest_path(manifest_dir: Path, worker_index: int) -> Path:
    return manifest_dir / f"load_manifest_worker{worker_index}.json"


def write_load_manifest(path: Path, signature: dict[str, object], summary: LoadSummary, stores: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "signature": signature,
        "summary": summary.as_dict(),
        "stores": stores,
    }
    staged = path.with_name(path.name + ".tmp")
    staged.write_text(json.dumps(document, indent=2), encoding="utf-8")
    staged.replace(path)


def read_load_manifest(path: Path) -> dict[str, object]:
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise LoadManifestError(f"Unreadable load manifest {path}: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("summary"), dict):
        raise LoadManifestError(f"Invalid load manifest {path}: expected object with a summary.")
    version = document.get("schema_version")
    if version != MANIFEST_SCHEMA_VERSION:
        raise LoadManifestError(f"Load manifest {path} has schema_version={version!r}, expected {MANIFEST_SCHEMA_VERSION}.")
    return document


def _discard(reason: str, *, resume_mode: str, logger: logging.Logger) -> None:
    if resume_mode == "strict":
        raise LoadManifestError(reason)
    logger.warning("phase=load_manifest_discarded action=overwrite reason=%s", reason)


def load_previous_manifest(
    *,
    path: Path,
    expected_signature: dict[str, object],
    resume_mode: str,
    logger: logging.Logger,
) -> dict[str, object] | None:
    """Previous manifest for this signature, or None when there is nothing trustworthy to compare against.

    Strict mode turns an unreadable or foreign manifest into ``LoadManifestError``.
    """
    if resume_mode == "fresh" or not path.exists():
        return None
    try:
        document = read_load_manifest(path)
    except LoadManifestError as exc:
        _discard(str(exc), resume_mode=resume_mode, logger=logger)
        return None
    if document.get("signature") != expected_signature:
        _discard(f"Load manifest signature mismatch. path={path}", resume_mode=resume_mode, logger=logger)
        return None
    return document


def verify_reconstruction(
    previous: dict[str, object] | None,
    summary: LoadSummary,
    *,
    resume_mode: str,
    logger: logging.Logger,
) -> bool:
    """Compare a fresh load against the previous one; True when they agree or there is nothing to compare."""
    if previous is None:
        return True
    before = previous.get("summary")
    now = summary.as_dict()
    if before == now:
        logger.info("phase=shard_reconstruction_verified read_count=%d", summary.read_count)
        return True
    changed = sorted(key for key in now if not isinstance(before, dict) or before.get(key) != now[key])
    message = f"Shard reconstruction differs from previous load in {changed}: previous={before!r} current={now!r}"
    if resume_mode == "strict":
        raise ShardReconstructionMismatch(message)
    logger.warning("phase=shard_reconstruction_mismatch reason=%s", message)
    return False
