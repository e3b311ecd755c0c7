"""Report file naming, writing and reading"""

import csv
import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from ..core.models import ReportFile
from ..utils.logger import setup_logger

T = TypeVar("T")

REPORT_PREFIX = "azure-audit"


class ReportWriter:
    """Write typed records as CSV or JSON reports

    Reports are named ``azure-audit-<report_date>-<view>[-<side>].<ext>`` in
    the output directory. ``overrides`` pins the file for a view to an
    explicit path (module commands with ``--output``); side views of an
    overridden view are written beside it as ``<stem>-<side>.<ext>``.
    """

    def __init__(
        self,
        output_dir: str,
        report_date: str,
        output_format: str = "csv",
        overrides: Optional[Mapping[str, str]] = None,
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.output_dir = Path(output_dir)
        self.report_date = report_date
        self.output_format = output_format
        self.overrides = {view: Path(path) for view, path in (overrides or {}).items()}

    @property
    def extension(self) -> str:
        return f".{self.output_format}"

    @property
    def base_name(self) -> str:
        return f"{REPORT_PREFIX}-{self.report_date}"

    def path_for(self, view: str, side: Optional[str] = None, extension: Optional[str] = None) -> Path:
        ext = extension or self.extension
        if view in self.overrides:
            primary = self.overrides[view]
            if side is None and extension is None:
                return primary
            suffix = f"-{side}" if side else ""
            return primary.with_name(f"{primary.stem}{suffix}{ext}")

        suffix = f"-{side}" if side else ""
        return self.output_dir / f"{self.base_name}-{view}{suffix}{ext}"

    def write(
        self,
        path: Path,
        headers: Sequence[str],
        rows: Iterable[Mapping[str, Any]],
        view: str = "",
    ) -> ReportFile:
        """Write rows with a fixed header; returns the file and its data row count"""
        path.parent.mkdir(parents=True, exist_ok=True)
        rows = list(rows)

        if path.suffix.lower() == ".json":
            with open(path, 'w', encoding='utf-8') as f:
                json.dump([{h: row.get(h, "") for h in headers} for row in rows], f, indent=2, default=str)
        else:
            with open(path, 'w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=list(headers), quoting=csv.QUOTE_MINIMAL, extrasaction='ignore')
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)

        self.logger.info(f"Wrote {len(rows)} records to {path}")
        return ReportFile(path=str(path), record_count=len(rows), view=view)

    def write_records(
        self,
        view: str,
        record_type: Any,
        records: Iterable[Any],
        side: Optional[str] = None,
    ) -> ReportFile:
        """Write records of a type exposing CSV_HEADERS and to_row(); empty reports keep the header"""
        name = f"{view}-{side}" if side else view
        return self.write(
            self.path_for(view, side), record_type.CSV_HEADERS, (r.to_row() for r in records), view=name
        )

    def write_text(self, path: Path, content: str, view: str = "") -> ReportFile:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        self.logger.info(f"Wrote {path}")
        return ReportFile(path=str(path), record_count=0, view=view)


def read_rows(path: Path) -> List[Dict[str, str]]:
    """Read a CSV or JSON report back into dictionaries keyed by header"""
    if path.suffix.lower() == ".json":
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return [{k: "" if v is None else str(v) for k, v in row.items()} for row in data]

    with open(path, 'r', newline='', encoding='utf-8') as f:
        return [dict(row) for row in csv.DictReader(f)]


def read_records(path: Path, factory: Callable[[Dict[str, str]], T]) -> List[T]:
    return [factory(row) for row in read_rows(path)]
