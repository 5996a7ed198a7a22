import csv
import io
import json
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from dalil_tables.Logger.table_logger import get_standard_logger
from dalil_tables.Models.TableModels import ReconstructedTable
from dalil_tables.Exceptions.custom_exceptions import (
    handle_export, log_method_entry_exit, ExceptionSeverity
)

SUPPORTED_EXPORT_FORMATS = ["csv", "json", "xlsx"]


class TableExportService:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(TableExportService, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = get_standard_logger("TableExportService")
            self._initialized = True

    def to_rows(self, table: ReconstructedTable) -> List[List[str]]:
        """Header row plus body rows, spanned columns padded with empty strings"""
        width = len(table.headers)
        rows = [list(table.headers)]
        for row in table.rows:
            values = []
            for cell in row:
                if cell.col_span <= 0:
                    continue
                values.append(cell.text)
                values.extend([""] * (cell.col_span - 1))
            if len(values) < width:
                values.extend([""] * (width - len(values)))
            rows.append(values)
        return rows

    @log_method_entry_exit
    @handle_export(severity=ExceptionSeverity.MEDIUM)
    def export_csv(self, table: ReconstructedTable) -> str:
        """Render a table as CSV text"""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        rows = self.to_rows(table)
        writer.writerows(rows)
        self.logger.info(f"Exported {table.id} as CSV ({len(rows)} rows)")
        return buffer.getvalue()

    @log_method_entry_exit
    @handle_export(severity=ExceptionSeverity.MEDIUM)
    def export_json(self, table: ReconstructedTable) -> Dict[str, Any]:
        """Structured export: position, span, content and confidence for every cell"""
        data = [
            {
                "position": {"row": row_index, "col": col_index},
                "span": {"rows": cell.row_span, "cols": cell.col_span},
                "content": cell.text,
                "confidence": cell.confidence,
            }
            for row_index, row in enumerate(table.rows)
            for col_index, cell in enumerate(row)
            if cell.col_span > 0
        ]
        return {
            "id": table.id,
            "metadata": table.metadata.to_dict(),
            "structure": {
                "headers": list(table.headers),
                "row_count": table.row_count,
                "column_count": table.column_count,
                "confidence": table.confidence,
                "bounding_box": table.bounding_box.to_dict(),
            },
            "data": data,
        }

    def export_json_text(self, table: ReconstructedTable) -> str:
        return json.dumps(self.export_json(table), ensure_ascii=False, indent=2)

    @handle_export(severity=ExceptionSeverity.MEDIUM)
    def to_dataframe(self, table: ReconstructedTable) -> pd.DataFrame:
        rows = self.to_rows(table)
        header = [str(h).strip() for h in rows[0]]
        return pd.DataFrame(rows[1:], columns=header)

    @log_method_entry_exit
    @handle_export(severity=ExceptionSeverity.MEDIUM)
    def export_excel(self, tables: Sequence[ReconstructedTable], destination: Optional[Any] = None) -> Optional[bytes]:
        """Write one sheet per table; returns the workbook bytes when no destination is given"""
        target = destination if destination is not None else io.BytesIO()
        with pd.ExcelWriter(target, engine="openpyxl") as writer:
            if not tables:
                pd.DataFrame().to_excel(writer, sheet_name="empty", index=False)
            for index, table in enumerate(tables):
                sheet = (table.id or f"table_{index}")[:31]
                self.to_dataframe(table).to_excel(writer, sheet_name=sheet, index=False)
        self.logger.info(f"Exported {len(tables)} tables to Excel")
        if destination is None:
            return target.getvalue()
        return None
