"""Write a SEPA batch file and assign its reference to the included fees.

The file and the batch references succeed or fail together:
- the XML is written first; if that fails, no fee is touched;
- the references are assigned in one transaction which is only committed
  after the file exists; if assignment or commit fails, the file is
  removed again.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from lidgeld.sepa.batch import SepaBatch

if TYPE_CHECKING:
    from lidgeld.database.repository import Repository

logger = logging.getLogger(__name__)


def write_batch_file(batch: SepaBatch, out_dir: Path) -> Path:
    """Write {batch_ref}.xml into out_dir and return its path.

    Raises:
        FileExistsError: If a file for this batch reference already exists.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / batch.file_name
    tmp = path.with_name(path.name + ".part")
    if path.exists():
        raise FileExistsError(f"Batch file already exists: {path}")
    try:
        tmp.write_text(batch.xml, encoding="utf-8")
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    return path


def export_batch(batch: SepaBatch, out_dir: Path, repo: Repository) -> Path:
    """Write the batch file, then commit the batch reference on its fees.

    Raises:
        OSError: If the file could not be written (nothing assigned).
        StaleBatchError: If a fee is no longer an open, unbatched SEPA fee
            (file removed, nothing assigned).
    """
    path = write_batch_file(batch, out_dir)
    fee_ids = [f.id for f in batch.fees]
    try:
        repo.begin_batch_assignment(fee_ids, batch.batch_ref)
        repo.commit()
    except Exception:
        repo.rollback()
        logger.error("Assigning %s failed, removing %s", batch.batch_ref, path.name)
        path.unlink(missing_ok=True)
        raise
    logger.info(
        "Exported %s: %d fee(s), %.2f EUR, collection on %s",
        path.name, batch.count, batch.total_amount, batch.execution_date,
    )
    return path
