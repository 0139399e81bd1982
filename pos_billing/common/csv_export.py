"""
Utilidades de exportación CSV

Convierte listas de diccionarios en contenido CSV.
"""

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List


def build_csv(data: List[Dict[str, Any]], headers: Dict[str, str]) -> str:
    """
    Generar el contenido CSV

    Args:
        data: Filas como diccionarios
        headers: Mapeo campo -> encabezado visible (define el orden de columnas)
    """
    output = io.StringIO()
    fieldnames = list(headers.keys())
    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore", lineterminator="\n")

    writer.writerow(headers)
    for row in data:
        writer.writerow({key: format_csv_value(row.get(key)) for key in fieldnames})

    content = output.getvalue()
    output.close()
    return content


def format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    elif isinstance(value, Decimal):
        return f"{value:.2f}"
    elif isinstance(value, (date, datetime)):
        return value.isoformat()
    elif isinstance(value, bool):
        return "Sí" if value else "No"
    return str(value)
