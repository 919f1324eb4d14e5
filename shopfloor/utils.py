# shopfloor/utils.py
from datetime import date, datetime, timezone

from shopfloor.errors import ValidationError


def utcnow() -> datetime:
    """Agora em UTC, sem tzinfo (mesmo formato gravado no banco)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_day(texto: str) -> date:
    try:
        return datetime.strptime(texto, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {texto} (use YYYY-MM-DD).")


def format_duration(segundos) -> str:
    """Ex: 3725 -> '1 h 2 min 5 s'."""
    if segundos is None:
        return "--"
    total = int(segundos)
    horas = total // 3600
    minutos = (total % 3600) // 60
    seg = total % 60
    texto = ""
    if horas > 0:
        texto += f"{horas} h "
    texto += f"{minutos} min {seg} s"
    return texto


def format_local(ts) -> str:
    """Formato das planilhas do chão de fábrica: DD-MM-YY HH:mm."""
    if ts is None or ts != ts:  # NaT/NaN do pandas
        return ""
    return ts.strftime("%d-%m-%y %H:%M")

