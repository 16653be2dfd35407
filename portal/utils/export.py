import csv
import io
from typing import List

from fastapi import Response
from fastapi.responses import JSONResponse


def export_response(data: List[dict], filename: str, format: str, key: str) -> Response:
    """Downloadable CSV or JSON body for an export endpoint."""
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    if format == "csv":
        output = io.StringIO()
        if data:
            writer = csv.DictWriter(output, fieldnames=data[0].keys())
            writer.writeheader()
            writer.writerows(data)
        return Response(content=output.getvalue(), media_type="text/csv", headers=headers)

    return JSONResponse(content={key: data, "count": len(data)}, headers=headers)
