# shopfloor/reports.py
import csv

import pandas as pd

from shopfloor.utils import format_local

COLUNAS = [
    "Operator Username",
    "Order Number",
    "Production Sheet Number",
    "Product ID",
    "Phase ID",
    "Start Time (local)",
    "End Time (local)",
    "Total (setup+production) min",
    "Setup Time (min)",
    "Production Time (min)",
    "Quantity Done",
    "Find Material Time (min)",
]


def _minutos(segundos) -> str:
    if segundos is None or pd.isna(segundos) or not segundos:
        return ""
    return f"{segundos / 60:.1f}"


def _total_minutos(linha) -> str:
    setup = linha.get("setup_time")
    producao = linha.get("production_time")
    setup = 0 if setup is None or pd.isna(setup) else setup
    producao = 0 if producao is None or pd.isna(producao) else producao
    if setup or producao:
        return f"{(setup + producao) / 60:.1f}"
    inicio, fim = linha.get("start_time"), linha.get("end_time")
    if inicio is None or fim is None or pd.isna(inicio) or pd.isna(fim):
        return ""
    return f"{(fim - inicio).total_seconds() / 60:.1f}"


def daily_report_frame(logs: pd.DataFrame) -> pd.DataFrame:
    """Uma linha por registro de fase, nas colunas da planilha do chão de fábrica."""
    if logs is None or logs.empty:
        return pd.DataFrame(columns=COLUNAS)

    logs = logs.copy()
    for col in ("start_time", "end_time"):
        logs[col] = pd.to_datetime(logs[col])

    linhas = []
    for _, linha in logs.iterrows():
        quantidade = linha.get("quantity_done")
        linhas.append([
            linha.get("operator_id") or "",
            linha.get("order_number") or "",
            linha.get("sheet_number") or "",
            linha.get("product_id") or "",
            linha.get("phase_id") or "",
            format_local(linha.get("start_time")),
            format_local(linha.get("end_time")),
            _total_minutos(linha),
            _minutos(linha.get("setup_time")),
            _minutos(linha.get("production_time")),
            "" if quantidade is None or pd.isna(quantidade) else int(quantidade),
            _minutos(linha.get("find_material_time")),
        ])
    return pd.DataFrame(linhas, columns=COLUNAS)


def daily_report_csv(logs: pd.DataFrame) -> str:
    """CSV com ';' e BOM UTF-8, para o Excel abrir acentos e grego direito."""
    frame = daily_report_frame(logs)
    corpo = frame.to_csv(sep=";", index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return "\ufeff" + corpo
