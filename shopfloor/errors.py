# shopfloor/errors.py


class ShopFloorError(Exception):
    """Base de todos os erros do motor de fases."""
    http_status = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        d = {"error": self.message, "kind": type(self).__name__}
        d.update(self.details)
        return d


class ValidationError(ShopFloorError):
    """Entrada inválida do operador. Mostrada direto, sem retry."""
    http_status = 400


class NotFoundError(ShopFloorError):
    http_status = 404


class ConflictError(ShopFloorError):
    """
    Operador já tem sessão aberta, quantidade a montante esgotada ou
    sessão presa em outra folha. Vira diálogo de resolução na interface.
    """
    http_status = 409

    def __init__(self, message, open_record=None, **details):
        super().__init__(message, **details)
        self.open_record = open_record

    def to_dict(self):
        d = super().to_dict()
        if self.open_record is not None:
            d["openRecord"] = self.open_record.to_dict()
        return d


class TransientError(ShopFloorError):
    """Falha do banco/rede. Estado local volta ao último estado bom; pode repetir."""
    http_status = 503


class BestEffortError(ShopFloorError):
    """Falha de notificação/poll do painel. Só log, nunca bloqueia a ação."""
