from __future__ import annotations

import zipfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from storefront.config import settings


def make_backup(
    db_path: Optional[str] = None,
    export_dir: Optional[str] = None,
    backup_dir: Optional[str] = None,
) -> str:
    """
    Makes a ZIP: shop database + saved order PDFs.
    Returns the path to the zip.
    """
    db = Path(db_path or settings.db_path)
    exports = Path(export_dir or settings.export_dir)
    backups = Path(backup_dir or settings.backup_dir)
    backups.mkdir(parents=True, exist_ok=True)

    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    zip_path = backups / f"backup_{ts}.zip"

    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if db.exists():
            z.write(db, arcname=f"db/{db.name}")

        if exports.exists():
            for p in exports.glob("*.pdf"):
                z.write(p, arcname=f"orders/{p.name}")

    return str(zip_path)
